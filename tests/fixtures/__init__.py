"""Test fixtures and mock data generators."""

from .mock_adata import (
    MT_GENES,
    create_synthetic_adata,
    create_synthetic_counts,
    majority_cell_type_map,
    write_10x_dir,
)
from .mock_enrichr import (
    TOP_TERMS,
    FakeEnrichrSession,
    FakeResponse,
    enrichr_rows,
)

__all__ = [
    "MT_GENES",
    "create_synthetic_adata",
    "create_synthetic_counts",
    "majority_cell_type_map",
    "write_10x_dir",
    "TOP_TERMS",
    "FakeEnrichrSession",
    "FakeResponse",
    "enrichr_rows",
]
