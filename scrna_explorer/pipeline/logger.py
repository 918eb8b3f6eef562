"""Structured logging for pipeline execution."""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from ..io.logging import get_timestamped_log_path, log_json


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name for console output."""

    def __init__(self, fmt: str, datefmt: str, colors: dict):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colors = colors

    def format(self, record):
        # Color a copy so file handlers sharing the record see the plain name
        record = logging.makeLogRecord(record.__dict__)
        color = self.colors.get(record.levelname, self.colors["RESET"])
        record.levelname = f"{color}{record.levelname}{self.colors['RESET']}"
        return super().format(record)


class PipelineLogger:
    """Console and file logging for a pipeline run.

    Handlers are attached to the ``scrna_explorer`` package logger, so every
    engine's module logger reports through them. Stage events are also
    appended as JSON lines to ``events.jsonl`` when a log directory is set.

    Parameters
    ----------
    log_dir : str, optional
        Directory for the run log and event file. Console only if None.
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_name : str
        Logger name. Default: "scrna_explorer"
    color : bool
        Color console level names

    Example
    -------
    >>> logger = PipelineLogger("output/logs", log_level="INFO")
    >>> logger.setup()
    >>> logger.log_stage_start("qc", "Cell QC")
    >>> logger.log_stage_complete("qc", 3.2)
    """

    COLORS = {
        "DEBUG": "\033[0;36m",  # Cyan
        "INFO": "\033[0;34m",  # Blue
        "WARNING": "\033[1;33m",  # Yellow
        "ERROR": "\033[0;31m",  # Red
        "CRITICAL": "\033[1;31m",  # Bold Red
        "RESET": "\033[0m",
    }

    def __init__(
        self,
        log_dir: Optional[str] = None,
        log_level: str = "INFO",
        log_name: str = "scrna_explorer",
        color: bool = True,
    ):
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.log_file: Optional[Path] = None
        self.events_file: Optional[Path] = None
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.log_file = get_timestamped_log_path(self.log_dir / "pipeline.log")
            self.events_file = self.log_dir / "events.jsonl"

        self.log_level = getattr(logging, log_level.upper())
        self.color = color
        self.logger = logging.getLogger(log_name)
        self.logger.setLevel(self.log_level)

    def setup(self) -> None:
        """Replace the logger's handlers with console (and file) handlers.

        Records stop propagating to the root logger, so a root handler from
        ``logging.basicConfig`` does not print them a second time.
        """
        self.logger.propagate = False
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(self._get_console_formatter())
        self.logger.addHandler(console_handler)

        if self.log_file is not None:
            file_handler = logging.FileHandler(self.log_file, mode="w")
            file_handler.setLevel(self.log_level)
            file_handler.setFormatter(self._get_file_formatter())
            self.logger.addHandler(file_handler)

    def _get_file_formatter(self) -> logging.Formatter:
        return logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def _get_console_formatter(self) -> logging.Formatter:
        fmt = "%(asctime)s - %(levelname)s - %(message)s"
        if not self.color:
            return logging.Formatter(fmt=fmt, datefmt="%H:%M:%S")
        return ColoredFormatter(fmt=fmt, datefmt="%H:%M:%S", colors=self.COLORS)

    def _event(self, event: str, stage_id: str, **fields: Any) -> None:
        if self.events_file is None:
            return
        record: Dict[str, Any] = {"event": event, "stage": stage_id}
        record.update(fields)
        log_json(self.events_file, record)

    def log_stage_start(self, stage_id: str, stage_name: str) -> None:
        """Log the start of a pipeline stage."""
        separator = "=" * 60
        self.logger.info(separator)
        self.logger.info("Stage %s: %s", stage_id, stage_name)
        self.logger.info(separator)
        self._event("start", stage_id, name=stage_name)

    def log_stage_complete(self, stage_id: str, duration: float) -> None:
        """Log successful completion of a stage."""
        self.logger.info("Stage %s completed in %s", stage_id, self.format_duration(duration))
        self._event("complete", stage_id, seconds=round(duration, 3))

    def log_stage_recovered(self, stage_id: str, error: Any) -> None:
        """Log a recoverable stage failure; the run continues."""
        self.logger.warning("Stage %s failed, continuing without it: %s", stage_id, error)
        self._event("recovered", stage_id, error=getattr(error, "to_dict", lambda: str(error))())

    def log_stage_error(self, stage_id: str, error: Any) -> None:
        """Log a fatal stage error."""
        self.logger.error("Stage %s failed: %s", stage_id, error)
        self._event("error", stage_id, error=getattr(error, "to_dict", lambda: str(error))())

    def log_stage_skipped(self, stage_id: str, reason: str) -> None:
        self.logger.info("Stage %s skipped: %s", stage_id, reason)
        self._event("skipped", stage_id, reason=reason)

    @staticmethod
    def format_duration(seconds: float) -> str:
        """Format duration in seconds, e.g. "45.2s", "1m 23s", "2h 15m"."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            mins = int(seconds // 60)
            secs = int(seconds % 60)
            return f"{mins}m {secs}s"
        else:
            hours = int(seconds // 3600)
            mins = int((seconds % 3600) // 60)
            return f"{hours}h {mins}m"
