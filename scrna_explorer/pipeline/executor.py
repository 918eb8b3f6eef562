"""In-process pipeline execution over session snapshots."""

import time
from collections import deque
from typing import Any, Callable, Dict, List, Optional

from ..core.session import AnalysisSession
from ..errors import ScrnaExplorerError, StageOrderError
from .logger import PipelineLogger
from .stage import Stage


class SessionPipeline:
    """Runs registered stages in dependency order, threading the session.

    Each stage receives the latest snapshot and returns a new one; every
    snapshot is kept in ``snapshots``. A fatal error aborts the run. A
    non-fatal error from a recoverable stage is stored in ``failures`` and
    the next stage receives the snapshot from before the failed stage.

    Parameters
    ----------
    logger : PipelineLogger, optional
        Logger instance; a console-only logger is created if None

    Example
    -------
    >>> pipeline = SessionPipeline()
    >>> pipeline.register_stage("ingest", lambda s, source, **_: loader.ingest(source))
    >>> pipeline.register_stage("qc", lambda s, **_: CellQC().run(s), depends_on=["ingest"])
    >>> session = pipeline.run(source="data/matrix_dir")
    """

    def __init__(self, logger: Optional[PipelineLogger] = None):
        self.logger = logger or PipelineLogger()
        self.stages: Dict[str, Stage] = {}
        self.completed_stages: List[str] = []
        self.snapshots: Dict[str, AnalysisSession] = {}
        self.failures: Dict[str, Dict[str, Any]] = {}

    def register_stage(
        self,
        stage_id: str,
        func: Callable[..., AnalysisSession],
        depends_on: Optional[List[str]] = None,
        name: Optional[str] = None,
        recoverable: bool = False,
    ) -> Stage:
        """Register a stage function.

        Parameters
        ----------
        stage_id : str
            Stage identifier
        func : Callable
            ``func(session, **kwargs) -> AnalysisSession``
        depends_on : List[str], optional
            List of stage IDs this stage depends on
        name : str, optional
            Human-readable stage name
        recoverable : bool
            Continue the run on a non-fatal error from this stage

        Returns
        -------
        Stage
            The registered stage
        """
        if stage_id in self.stages:
            raise ValueError(f"Stage already registered: {stage_id}")
        stage = Stage(
            stage_id=stage_id,
            name=name or stage_id,
            func=func,
            depends_on=list(depends_on or []),
            recoverable=recoverable,
        )
        self.stages[stage_id] = stage
        return stage

    def _get_execution_order(self) -> List[str]:
        """Compute stage execution order via topological sort."""
        for stage_id, stage in self.stages.items():
            unknown = [dep for dep in stage.depends_on if dep not in self.stages]
            if unknown:
                raise StageOrderError(
                    f"Stage '{stage_id}' depends on unregistered stages",
                    expected=list(self.stages),
                    found=unknown,
                )

        in_degree = {stage_id: len(stage.depends_on) for stage_id, stage in self.stages.items()}
        queue = deque([sid for sid, degree in in_degree.items() if degree == 0])
        order = []

        while queue:
            stage_id = queue.popleft()
            order.append(stage_id)

            for other_id, other_stage in self.stages.items():
                if stage_id in other_stage.depends_on:
                    in_degree[other_id] -= 1
                    if in_degree[other_id] == 0:
                        queue.append(other_id)

        if len(order) != len(self.stages):
            cyclic = sorted(set(self.stages) - set(order))
            raise StageOrderError("Circular dependency detected", found=cyclic)

        return order

    @property
    def execution_order(self) -> List[str]:
        return self._get_execution_order()

    def run(
        self,
        session: Optional[AnalysisSession] = None,
        **kwargs: Any,
    ) -> AnalysisSession:
        """Execute all registered stages in order.

        Parameters
        ----------
        session : AnalysisSession, optional
            Snapshot to start from. Stages it already contains are skipped.
        **kwargs
            Passed to every stage function (e.g. ``source=path``), together
            with ``failures`` (the recoverable failures so far)

        Returns
        -------
        AnalysisSession
            Final snapshot

        Raises
        ------
        ScrnaExplorerError
            First fatal stage error
        """
        order = self._get_execution_order()
        self.completed_stages = []
        self.snapshots = {}
        self.failures = {}

        for stage_id in order:
            stage = self.stages[stage_id]
            if session is not None and session.has(stage_id):
                self.logger.log_stage_skipped(stage_id, "already in the starting snapshot")
                continue

            self.logger.log_stage_start(stage_id, stage.name)
            start_time = time.time()
            try:
                next_session = stage.func(session, failures=self.failures, **kwargs)
            except ScrnaExplorerError as e:
                if stage.recoverable and not e.fatal:
                    self.logger.log_stage_recovered(stage_id, e)
                    self.failures[stage_id] = e.to_dict()
                    continue
                self.logger.log_stage_error(stage_id, e)
                raise
            except Exception as e:
                self.logger.log_stage_error(stage_id, e)
                raise

            session = next_session
            self.snapshots[stage_id] = session
            self.completed_stages.append(stage_id)
            self.logger.log_stage_complete(stage_id, time.time() - start_time)

        return session
