"""Preprocessing module for ingestion, quality control and normalization.

Pipeline Stages
---------------
- ingest: 10x-style matrix directory -> AnnData with raw-count layer
- qc: Threshold-based cell filtering (total counts, detected genes, mt %)
- normalize: log1p library-size normalization, HVG selection, scaling

Example Usage
-------------
>>> from scrna_explorer.core.preprocessing import (
...     DataLoader, CellQC, Normalizer, PreprocessingConfig,
... )
>>> cfg = PreprocessingConfig.default()
>>> session = DataLoader(cfg.loader).ingest("data/filtered_feature_bc_matrix")
>>> session = CellQC(cfg.qc).run(session)
>>> session = Normalizer(cfg.normalization).run(session)
"""

__version__ = "1.0.0"

# Configuration classes
from .config import (
    LoaderConfig,
    QCConfig,
    NormalizationConfig,
    PreprocessingConfig,
)

# Ingestion
from .loader import (
    DataLoader,
    LoadResult,
    LAYOUT_FILES,
)

# Cell QC
from .qc import (
    CellQC,
    QCResult,
    REASON_COLUMNS,
    METRIC_COLUMNS,
)

# Normalization
from .normalization import (
    Normalizer,
    NormalizationResult,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "LoaderConfig",
    "QCConfig",
    "NormalizationConfig",
    "PreprocessingConfig",
    # Ingestion
    "DataLoader",
    "LoadResult",
    "LAYOUT_FILES",
    # QC
    "CellQC",
    "QCResult",
    "REASON_COLUMNS",
    "METRIC_COLUMNS",
    # Normalization
    "Normalizer",
    "NormalizationResult",
]
