"""Logging utilities for scRNA-Explorer.

Provides timestamped log paths, JSON-lines stage events and the JSON run
manifest.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

PathLike = Union[str, Path]


def get_timestamped_log_path(log_path: PathLike) -> Path:
    """Generate a timestamped log path from the base log path.

    Example: run.log -> run_20261018_080530.log

    Parameters
    ----------
    log_path : PathLike
        Base log file path.

    Returns
    -------
    Path
        Timestamped log path.
    """
    log_path = Path(log_path)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suffix = log_path.suffix or ".log"
    return log_path.parent / f"{log_path.stem}_{timestamp}{suffix}"


def _prepare_log_destination(log_path: PathLike) -> Path:
    """Ensure log destination directory exists."""
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def log_json(log_path: PathLike, record: Dict[str, Any]) -> None:
    """Append a JSON line to log_path (one record per stage event)."""
    path = _prepare_log_destination(log_path)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, default=str))
        handle.write("\n")


def write_run_manifest(
    path: PathLike,
    session,
    config: Optional[Dict[str, Any]] = None,
    failures: Optional[Dict[str, Any]] = None,
    *,
    logger: Optional[logging.Logger] = None,
) -> Path:
    """Write a JSON manifest describing one pipeline run.

    Parameters
    ----------
    path : PathLike
        Manifest path.
    session : AnalysisSession
        Final snapshot of the run.
    config : dict, optional
        Configuration used (``AnalysisConfig.to_dict()``).
    failures : dict, optional
        Stage id -> error dict for recoverable failures.
    logger : logging.Logger, optional
        If provided, the manifest is also logged at DEBUG level.

    Returns
    -------
    Path
        The manifest path.
    """
    record = {
        "generated": datetime.now().isoformat(timespec="seconds"),
        "session": session.summary(),
        "config": config or {},
        "failures": failures or {},
    }
    text = json.dumps(record, indent=2, default=str)

    out = _prepare_log_destination(path)
    out.write_text(text, encoding="utf-8")
    if logger is not None:
        logger.debug("Run manifest:\n%s", text)
    return out
