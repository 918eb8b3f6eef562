"""scRNA-Explorer: staged single-cell RNA-seq exploratory analysis.

This package provides tools for:
- Loading 10x-style count matrices into AnnData
- Threshold-based cell QC, log-normalization and HVG selection
- PCA, kNN graph, Leiden clustering and UMAP display embeddings
- Wilcoxon marker discovery with Bonferroni correction
- Manual cluster -> cell-type annotation from an analyst-supplied table
- Enrichr gene-set enrichment lookups
- A static HTML report of every stage

Each stage takes an immutable ``AnalysisSession`` snapshot and returns a new
one, so re-running a stage never disturbs the snapshots it was built from.

Example usage:
    >>> from scrna_explorer.config import AnalysisConfig, CellTypeMap
    >>> from scrna_explorer.pipeline import build_default_pipeline
    >>>
    >>> config = AnalysisConfig.from_yaml("configs/analysis.yaml")
    >>> cell_types = CellTypeMap.from_yaml("configs/e18_heart_cell_types.yaml")
    >>> pipeline = build_default_pipeline(config, cell_types)
    >>> session = pipeline.run("data/filtered_feature_bc_matrix")
"""

__version__ = "1.0.0"

from .errors import (
    AnnotationError,
    ClusteringError,
    EnrichmentError,
    IngestionError,
    QCError,
    ScrnaExplorerError,
    StageOrderError,
)

__all__ = [
    "__version__",
    "ScrnaExplorerError",
    "IngestionError",
    "QCError",
    "ClusteringError",
    "AnnotationError",
    "EnrichmentError",
    "StageOrderError",
]
