"""Configuration classes for clustering module.

Covers PCA, the neighbor graph, Leiden clustering, UMAP and marker
discovery. Defaults reproduce the E18 mouse heart analysis.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

# Backends accepted by scanpy.tl.leiden
LEIDEN_FLAVORS = {"igraph", "leidenalg"}


@dataclass
class ClusteringConfig:
    """Configuration for PCA, neighbor graph and Leiden clustering.

    Attributes
    ----------
    n_pcs : int
        Number of principal components (picked from the elbow plot)
    neighbors_k : int
        k for the neighborhood graph
    resolution : float
        Leiden resolution for clustering
    random_seed : int
        Seed for PCA, Leiden and UMAP
    cluster_key : str
        Column in adata.obs that receives cluster labels
    compute_umap : bool
        Compute UMAP embeddings for visualization
    umap_min_dist : float
        UMAP min_dist
    n_iterations : int
        Leiden iterations (negative runs until convergence)
    leiden_flavor : str
        Leiden backend: "igraph" (igraph.Graph.community_leiden) or
        "leidenalg"
    """

    n_pcs: int = 30
    neighbors_k: int = 20
    resolution: float = 0.5
    random_seed: int = 0
    cluster_key: str = "leiden"
    compute_umap: bool = True
    umap_min_dist: float = 0.3
    n_iterations: int = 2
    leiden_flavor: str = "igraph"


@dataclass
class MarkerConfig:
    """Configuration for one-vs-rest marker discovery.

    Attributes
    ----------
    method : str
        Test used by ``scanpy.tl.rank_genes_groups`` (wilcoxon, t-test, ...)
    corr_method : str
        Multiple-testing correction ("bonferroni" or "benjamini-hochberg")
    tie_correct : bool
        Apply tie correction for Wilcoxon test
    min_pct : float
        Minimum fraction of in-cluster cells expressing the gene
    min_logfc : float
        Minimum log2 fold change (positive markers only)
    max_pval_adj : float
        Adjusted p-value cutoff (exclusive) for a significant marker
    use_raw : bool
        Test on the full log-normalized matrix in ``adata.raw`` instead of
        the scaled HVG matrix
    n_top : int
        Markers per cluster shown in plots and the cluster summary
    """

    method: str = "wilcoxon"
    corr_method: str = "bonferroni"
    tie_correct: bool = True
    min_pct: float = 0.25
    min_logfc: float = 0.5
    max_pval_adj: float = 0.05
    use_raw: bool = True
    n_top: int = 5


@dataclass
class ClusterAnalysisConfig:
    """Master configuration for clustering and marker discovery.

    Attributes
    ----------
    clustering : ClusteringConfig
        PCA / graph / Leiden / UMAP configuration
    markers : MarkerConfig
        Marker discovery configuration
    """

    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    markers: MarkerConfig = field(default_factory=MarkerConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterAnalysisConfig":
        """Build configuration from a (possibly partial) dictionary."""
        return cls(
            clustering=ClusteringConfig(**data.get("clustering", {})),
            markers=MarkerConfig(**data.get("markers", {})),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "ClusterAnalysisConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "ClusterAnalysisConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "clustering": {
                "n_pcs": self.clustering.n_pcs,
                "neighbors_k": self.clustering.neighbors_k,
                "resolution": self.clustering.resolution,
                "random_seed": self.clustering.random_seed,
                "cluster_key": self.clustering.cluster_key,
                "compute_umap": self.clustering.compute_umap,
                "umap_min_dist": self.clustering.umap_min_dist,
                "n_iterations": self.clustering.n_iterations,
                "leiden_flavor": self.clustering.leiden_flavor,
            },
            "markers": {
                "method": self.markers.method,
                "corr_method": self.markers.corr_method,
                "tie_correct": self.markers.tie_correct,
                "min_pct": self.markers.min_pct,
                "min_logfc": self.markers.min_logfc,
                "max_pval_adj": self.markers.max_pval_adj,
                "use_raw": self.markers.use_raw,
                "n_top": self.markers.n_top,
            },
        }
