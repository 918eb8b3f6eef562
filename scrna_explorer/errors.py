"""
Analysis errors with actionable diagnostics.

Each error carries a machine-readable code plus expected/found values and a
suggestion, so the CLI and the report render failures the same way.

Error Codes:
    E100_INGESTION: Matrix directory missing or inconsistent
    E200_QC: Degenerate input after filtering (e.g. zero cells retained)
    E300_CLUSTERING: PCA / neighbor graph / community detection failed
    E400_ANNOTATION: Cell-type mapping does not cover every cluster
    E500_ENRICHMENT: Enrichment lookup failed or was given no genes
    E600_STAGE_ORDER: A stage ran before one of its prerequisites
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ScrnaExplorerError(Exception):
    """Base class for analysis errors.

    Parameters
    ----------
    message : str
        Human-readable error description
    expected : Any, optional
        What the stage expected to find
    found : Any, optional
        What was actually found
    suggestion : str
        Actionable suggestion for fixing the error
    context : Dict[str, Any], optional
        Additional context for debugging
    """

    error_code = "E000_UNKNOWN"
    fatal = True

    def __init__(
        self,
        message: str,
        expected: Any = None,
        found: Any = None,
        suggestion: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.expected = expected
        self.found = found
        self.suggestion = suggestion
        self.context = context or {}

    def __str__(self) -> str:
        """Format error as human-readable multi-line string."""
        parts = [f"[{self.error_code}] {self.message}"]
        if self.expected is not None:
            parts.append(f"  Expected: {self.expected}")
        if self.found is not None:
            parts.append(f"  Found: {self.found}")
        if self.suggestion:
            parts.append(f"  Suggestion: {self.suggestion}")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "expected": str(self.expected) if self.expected is not None else None,
            "found": str(self.found) if self.found is not None else None,
            "suggestion": self.suggestion,
            "context": self.context,
        }


class IngestionError(ScrnaExplorerError):
    """Raised when the input matrix directory is missing or malformed."""

    error_code = "E100_INGESTION"


class QCError(ScrnaExplorerError):
    """Raised when QC or normalization leaves nothing to analyse."""

    error_code = "E200_QC"


class ClusteringError(ScrnaExplorerError):
    """Raised when dimensionality reduction or clustering fails numerically.

    Not retried; parameters have to be adjusted by hand.
    """

    error_code = "E300_CLUSTERING"


class AnnotationError(ScrnaExplorerError):
    """Raised when the cell-type mapping is not total over the clusters."""

    error_code = "E400_ANNOTATION"


class EnrichmentError(ScrnaExplorerError):
    """Raised when an enrichment lookup fails or receives an empty gene list.

    Recoverable: the pipeline records the failure and keeps going.
    """

    error_code = "E500_ENRICHMENT"
    fatal = False


class StageOrderError(ScrnaExplorerError):
    """Raised when a stage runs before one of its prerequisites."""

    error_code = "E600_STAGE_ORDER"
