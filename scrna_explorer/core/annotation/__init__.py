"""Annotation module for manual cluster -> cell-type assignment.

The cell-type table is injected by the analyst (see
``scrna_explorer.config.CellTypeMap``) and must cover every cluster.
"""

from .engine import AnnotationEngine, AnnotationResult

__all__ = [
    "AnnotationEngine",
    "AnnotationResult",
]
