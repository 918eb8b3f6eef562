"""Stage representation for pipeline execution."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List


@dataclass
class Stage:
    """One pipeline step: a function from session snapshot to session snapshot.

    Attributes
    ----------
    stage_id : str
        Short identifier (e.g., "qc", "cluster")
    name : str
        Human-readable stage name
    func : Callable
        ``func(session, **kwargs) -> AnalysisSession``. The first stage
        receives ``session=None`` and builds the initial snapshot.
    depends_on : List[str]
        Stage ids that must run before this one
    recoverable : bool
        If True, a non-fatal error (e.g. ``EnrichmentError``) is recorded and
        the run continues with the previous snapshot

    Example
    -------
    >>> stage = Stage("qc", "Cell QC", CellQC().run, depends_on=["ingest"])
    """

    stage_id: str
    name: str
    func: Callable[..., Any]
    depends_on: List[str] = field(default_factory=list)
    recoverable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert stage to dictionary for logging."""
        return {
            "stage_id": self.stage_id,
            "name": self.name,
            "func": getattr(self.func, "__qualname__", repr(self.func)),
            "depends_on": list(self.depends_on),
            "recoverable": self.recoverable,
        }
