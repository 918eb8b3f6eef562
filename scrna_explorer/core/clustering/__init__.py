"""Clustering module for cell population identification.

Provides PCA, Leiden clustering on a kNN graph, UMAP display embeddings,
and one-vs-rest marker discovery.

Pipeline Stages
---------------
- reduce: PCA on the scaled HVG matrix (30 components by default)
- cluster: kNN graph, Leiden at resolution 0.5, UMAP
- markers: Wilcoxon one-vs-rest with Bonferroni correction, filtered to
  positive markers with min.pct 0.25 and log2FC 0.5

Example Usage
-------------
>>> from scrna_explorer.core.clustering import (
...     ClusteringEngine, MarkerFinder, ClusterAnalysisConfig,
... )
>>> config = ClusterAnalysisConfig()
>>> engine = ClusteringEngine(config)
>>> session = engine.cluster(engine.reduce(session))
>>> # Find markers
>>> session = MarkerFinder(config).run(session)
>>> session.markers.significant().head()
"""

__version__ = "1.0.0"

# Configuration classes
from .config import (
    ClusteringConfig,
    MarkerConfig,
    ClusterAnalysisConfig,
)

# Clustering engine
from .engine import (
    ClusteringEngine,
    ClusteringResult,
    ReductionResult,
    same_partition,
)

# Marker discovery
from .de import (
    MarkerFinder,
    MarkerResult,
    MARKER_TABLE_COLUMNS,
    cluster_sort_key,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "ClusteringConfig",
    "MarkerConfig",
    "ClusterAnalysisConfig",
    # Engine
    "ClusteringEngine",
    "ClusteringResult",
    "ReductionResult",
    "same_partition",
    # Markers
    "MarkerFinder",
    "MarkerResult",
    "MARKER_TABLE_COLUMNS",
    "cluster_sort_key",
]
