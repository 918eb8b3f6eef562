"""Run configuration: the master analysis config and the cell-type table."""

from .analysis import AnalysisConfig
from .cell_types import CellTypeMap

__all__ = [
    "AnalysisConfig",
    "CellTypeMap",
]
