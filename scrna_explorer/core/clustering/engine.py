"""Dimensionality reduction and graph clustering.

Provides PCA over the scaled HVG matrix, then kNN graph -> Leiden -> UMAP.
All randomized steps take the configured seed so a rerun on the same input
reproduces the same partition.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging

import numpy as np
import pandas as pd
from scipy.sparse.linalg import ArpackError, ArpackNoConvergence

from ...errors import ClusteringError
from ..session import AdataKey, AnalysisSession
from .config import ClusterAnalysisConfig


# Numerical failures surfaced as ClusteringError
NUMERICAL_ERRORS = (
    ArpackError,
    ArpackNoConvergence,
    np.linalg.LinAlgError,
    ValueError,
    FloatingPointError,
)


@dataclass
class ReductionResult:
    """Result from PCA.

    Attributes
    ----------
    n_pcs : int
        Components computed (requested value capped by matrix shape)
    variance_ratio : List[float]
        Explained variance ratio per component (elbow plot input)
    random_seed : int
        Seed used for the solver
    """

    n_pcs: int = 0
    variance_ratio: List[float] = field(default_factory=list)
    random_seed: int = 0

    @property
    def cumulative_variance(self) -> float:
        return float(np.sum(self.variance_ratio))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "n_pcs": self.n_pcs,
            "cumulative_variance": round(self.cumulative_variance, 4),
            "random_seed": self.random_seed,
        }


@dataclass
class ClusteringResult:
    """Result from clustering operation.

    Attributes
    ----------
    n_clusters : int
        Number of clusters found
    cluster_key : str
        Key in adata.obs containing cluster assignments
    cluster_sizes : Dict[str, int]
        Map of cluster ID to cell count (largest cluster is "0")
    resolution : float
        Leiden resolution used
    neighbors_k : int
        k used for the neighbor graph
    n_pcs : int
        Principal components used for the graph
    random_seed : int
        Seed used for Leiden and UMAP
    has_umap : bool
        Whether ``X_umap`` was computed
    """

    n_clusters: int = 0
    cluster_key: str = "leiden"
    cluster_sizes: Dict[str, int] = field(default_factory=dict)
    resolution: float = 0.0
    neighbors_k: int = 0
    n_pcs: int = 0
    random_seed: int = 0
    has_umap: bool = False

    @property
    def cluster_ids(self) -> List[str]:
        return list(self.cluster_sizes.keys())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "n_clusters": self.n_clusters,
            "cluster_key": self.cluster_key,
            "cluster_sizes": dict(self.cluster_sizes),
            "resolution": self.resolution,
            "neighbors_k": self.neighbors_k,
            "n_pcs": self.n_pcs,
            "random_seed": self.random_seed,
            "has_umap": self.has_umap,
        }

    def sizes_frame(self) -> pd.DataFrame:
        """Cluster sizes as a table."""
        return pd.DataFrame(
            {"cluster": list(self.cluster_sizes), "n_cells": list(self.cluster_sizes.values())}
        )


def same_partition(labels_a: Any, labels_b: Any) -> bool:
    """Check whether two label vectors describe the same partition.

    Labels may differ by a permutation of cluster names.

    Parameters
    ----------
    labels_a, labels_b : array-like
        Cluster labels for the same cells, in the same order

    Returns
    -------
    bool
        True if there is a one-to-one mapping between the two label sets
    """
    a = pd.Series(np.asarray(labels_a, dtype=str))
    b = pd.Series(np.asarray(labels_b, dtype=str))
    if len(a) != len(b):
        return False
    table = pd.crosstab(a, b)
    return bool(
        ((table > 0).sum(axis=1) == 1).all() and ((table > 0).sum(axis=0) == 1).all()
    )


class ClusteringEngine:
    """PCA, neighbor graph, Leiden clustering and UMAP.

    Parameters
    ----------
    config : ClusterAnalysisConfig, optional
        Clustering configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from scrna_explorer.core.clustering import ClusteringEngine
    >>> engine = ClusteringEngine()
    >>> session = engine.reduce(session)
    >>> session = engine.cluster(session)
    >>> session.clustering.n_clusters
    """

    def __init__(
        self,
        config: Optional[ClusterAnalysisConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClusterAnalysisConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy
            import igraph
        except ImportError:
            raise RuntimeError(
                "Clustering requires scanpy and igraph. "
                "Install with: pip install scanpy igraph leidenalg"
            )

    def _use_pcs(self, adata: Any, n_pcs: int) -> int:
        """Cap the component count by the matrix shape."""
        return min(n_pcs, max(adata.n_vars - 1, 1), max(adata.n_obs - 1, 1))

    def run_pca(
        self,
        adata: Any,  # AnnData
        n_pcs: Optional[int] = None,
        random_seed: Optional[int] = None,
    ) -> ReductionResult:
        """Run PCA on the scaled matrix in ``adata.X``.

        Parameters
        ----------
        adata : AnnData
            Scaled HVG AnnData (modified in place: ``obsm['X_pca']``)
        n_pcs : int, optional
            Number of components. Uses config default if None.
        random_seed : int, optional
            Solver seed. Uses config default if None.

        Returns
        -------
        ReductionResult
            Components used and explained variance ratios

        Raises
        ------
        ClusteringError
            If the solver fails to converge
        """
        import scanpy as sc

        cfg = self.config.clustering
        n_pcs = n_pcs if n_pcs is not None else cfg.n_pcs
        random_seed = random_seed if random_seed is not None else cfg.random_seed

        use_pcs = self._use_pcs(adata, n_pcs)
        if use_pcs < n_pcs:
            self.logger.warning(
                "Requested %d PCs but matrix is %d x %d; using %d",
                n_pcs,
                adata.n_obs,
                adata.n_vars,
                use_pcs,
            )

        try:
            sc.tl.pca(adata, n_comps=use_pcs, svd_solver="arpack", random_state=random_seed)
        except NUMERICAL_ERRORS as e:
            raise ClusteringError(
                "PCA failed",
                found=f"{adata.n_obs} cells x {adata.n_vars} genes, n_comps={use_pcs}",
                suggestion="Check the scaled matrix or lower n_pcs",
                context={"error": str(e)},
            ) from e

        result = ReductionResult(
            n_pcs=use_pcs,
            variance_ratio=[float(v) for v in adata.uns["pca"]["variance_ratio"]],
            random_seed=random_seed,
        )
        self.logger.info(
            "PCA: %d components explain %.1f%% of variance",
            use_pcs,
            100 * result.cumulative_variance,
        )
        return result

    def run_clustering(
        self,
        adata: Any,  # AnnData
        cluster_key: Optional[str] = None,
        n_pcs: Optional[int] = None,
        neighbors_k: Optional[int] = None,
        resolution: Optional[float] = None,
        random_seed: Optional[int] = None,
        compute_umap: Optional[bool] = None,
    ) -> ClusteringResult:
        """Run neighbors -> Leiden -> UMAP on an AnnData with PCA.

        Parameters
        ----------
        adata : AnnData
            AnnData with ``obsm['X_pca']`` (modified in place)
        cluster_key : str, optional
            Key in adata.obs to store cluster assignments
        n_pcs : int, optional
            Number of principal components. Uses config default if None.
        neighbors_k : int, optional
            k for neighborhood graph. Uses config default if None.
        resolution : float, optional
            Leiden resolution. Uses config default if None.
        random_seed : int, optional
            Random seed for reproducibility. Uses config default if None.
        compute_umap : bool, optional
            Compute UMAP embeddings. Uses config default if None.

        Returns
        -------
        ClusteringResult
            Clustering result with cluster statistics

        Raises
        ------
        ClusteringError
            If PCA is missing or graph construction / Leiden fails
        """
        import scanpy as sc

        # Use config defaults where not specified
        cfg = self.config.clustering
        cluster_key = cluster_key if cluster_key is not None else cfg.cluster_key
        n_pcs = n_pcs if n_pcs is not None else cfg.n_pcs
        neighbors_k = neighbors_k if neighbors_k is not None else cfg.neighbors_k
        resolution = resolution if resolution is not None else cfg.resolution
        random_seed = random_seed if random_seed is not None else cfg.random_seed
        compute_umap = compute_umap if compute_umap is not None else cfg.compute_umap

        if "X_pca" not in adata.obsm:
            raise ClusteringError(
                "PCA embedding missing",
                expected="adata.obsm['X_pca']",
                found=list(adata.obsm.keys()),
                suggestion="Run the reduce stage first",
            )

        use_pcs = min(n_pcs, adata.obsm["X_pca"].shape[1])
        k = min(neighbors_k, adata.n_obs - 1)

        self.logger.info(
            "Running clustering: n_pcs=%d, neighbors_k=%d, resolution=%.3f, seed=%d, flavor=%s",
            use_pcs,
            k,
            resolution,
            random_seed,
            cfg.leiden_flavor,
        )

        try:
            sc.pp.neighbors(
                adata, n_neighbors=k, n_pcs=use_pcs, use_rep="X_pca", random_state=random_seed
            )
            sc.tl.leiden(
                adata,
                resolution=resolution,
                random_state=random_seed,
                key_added=cluster_key,
                flavor=cfg.leiden_flavor,
                n_iterations=cfg.n_iterations,
                directed=False,
            )
            if compute_umap:
                sc.tl.umap(adata, min_dist=cfg.umap_min_dist, random_state=random_seed)
        except NUMERICAL_ERRORS as e:
            raise ClusteringError(
                "Graph clustering failed",
                found=f"{adata.n_obs} cells, k={k}, n_pcs={use_pcs}",
                suggestion="Adjust neighbors_k, n_pcs or resolution and rerun",
                context={"error": str(e)},
            ) from e

        adata.obs[cluster_key] = self.relabel_by_size(adata.obs[cluster_key])

        result = ClusteringResult(
            cluster_key=cluster_key,
            resolution=resolution,
            neighbors_k=k,
            n_pcs=use_pcs,
            random_seed=random_seed,
            has_umap="X_umap" in adata.obsm,
        )
        counts = adata.obs[cluster_key].value_counts()
        result.cluster_sizes = {
            str(c): int(counts[c]) for c in adata.obs[cluster_key].cat.categories
        }
        result.n_clusters = len(result.cluster_sizes)

        self.logger.info("Computed Leiden clustering with %d clusters", result.n_clusters)
        return result

    @staticmethod
    def reduction_keys() -> Tuple[AdataKey, ...]:
        """AnnData entries written by ``sc.tl.pca``."""
        return (("obsm", "X_pca"), ("varm", "PCs"), ("uns", "pca"))

    @staticmethod
    def clustering_keys(cluster_key: str, with_umap: bool = True) -> Tuple[AdataKey, ...]:
        """AnnData entries written by neighbors, Leiden and (optionally) UMAP."""
        keys = (
            ("obs", cluster_key),
            ("obsp", "distances"),
            ("obsp", "connectivities"),
            ("uns", "neighbors"),
            ("uns", cluster_key),
            ("uns", f"{cluster_key}_colors"),
        )
        if with_umap:
            keys += (("obsm", "X_umap"), ("uns", "umap"))
        return keys

    @staticmethod
    def relabel_by_size(labels: pd.Series) -> pd.Categorical:
        """Rename clusters "0", "1", ... from largest to smallest.

        Ties are broken by the original label so the result is deterministic.
        """
        counts = labels.astype(str).value_counts()
        ordered = sorted(counts.index, key=lambda c: (-counts[c], c))
        mapping = {old: str(i) for i, old in enumerate(ordered)}
        new = labels.astype(str).map(mapping)
        return pd.Categorical(new, categories=[str(i) for i in range(len(ordered))])

    def reduce(self, session: AnalysisSession) -> AnalysisSession:
        """Run PCA on a normalized snapshot and return the next snapshot."""
        session.require("normalize", for_stage="reduce")
        adata = session.working_copy()
        result = self.run_pca(adata)
        return session.advance("reduce", adata, result, keys=self.reduction_keys())

    def cluster(self, session: AnalysisSession) -> AnalysisSession:
        """Cluster a reduced snapshot and return the next snapshot."""
        session.require("reduce", for_stage="cluster")
        adata = session.working_copy()
        result = self.run_clustering(adata)
        keys = self.clustering_keys(result.cluster_key, result.has_umap)
        return session.advance("cluster", adata, result, keys=keys)
