"""Marker discovery for clustering module.

One-vs-rest differential expression per cluster (Wilcoxon rank-sum by
default) with Bonferroni correction, filtered to positive markers that
pass the min.pct and log fold-change thresholds.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging
import time

import numpy as np
import pandas as pd

from ...errors import StageOrderError
from ..session import AnalysisSession
from .config import ClusterAnalysisConfig


# rank_genes_groups_df column -> marker table column
MARKER_COLUMNS = {
    "names": "gene",
    "scores": "score",
    "logfoldchanges": "logfoldchange",
    "pvals": "pval",
    "pvals_adj": "pval_adj",
    "pct_nz_group": "pct_in",
    "pct_nz_reference": "pct_out",
}

MARKER_TABLE_COLUMNS = [
    "cluster",
    "gene",
    "logfoldchange",
    "pval",
    "pval_adj",
    "pct_in",
    "pct_out",
    "score",
]


def cluster_sort_key(cluster: str) -> tuple:
    """Sort numeric cluster ids numerically, others alphabetically after."""
    cluster = str(cluster)
    return (0, int(cluster), "") if cluster.isdigit() else (1, 0, cluster)


@dataclass
class MarkerResult:
    """Result from marker discovery.

    Attributes
    ----------
    table : pd.DataFrame
        Markers passing min_pct and min_logfc, all clusters combined
        (columns: ``MARKER_TABLE_COLUMNS``)
    clusters : List[str]
        Clusters that were tested
    method : str
        Statistical test used
    corr_method : str
        Multiple-testing correction used
    n_genes_tested : int
        Genes tested per cluster
    min_pct : float
        Minimum in-cluster expression fraction applied
    min_logfc : float
        Minimum log2 fold change applied
    max_pval_adj : float
        Adjusted p-value cutoff for ``significant()``
    elapsed_seconds : float
        Time taken for the test
    """

    table: pd.DataFrame = field(
        default_factory=lambda: pd.DataFrame(columns=MARKER_TABLE_COLUMNS)
    )
    clusters: List[str] = field(default_factory=list)
    method: str = "wilcoxon"
    corr_method: str = "bonferroni"
    n_genes_tested: int = 0
    min_pct: float = 0.25
    min_logfc: float = 0.5
    max_pval_adj: float = 0.05
    elapsed_seconds: float = 0.0

    def significant(self) -> pd.DataFrame:
        """Markers with adjusted p-value below the cutoff."""
        return self.table[self.table["pval_adj"] < self.max_pval_adj].reset_index(drop=True)

    def for_cluster(self, cluster: str, significant_only: bool = True) -> pd.DataFrame:
        """Marker rows for one cluster, best first."""
        table = self.significant() if significant_only else self.table
        return table[table["cluster"] == str(cluster)].reset_index(drop=True)

    def genes_for(self, clusters: Any, significant_only: bool = True) -> List[str]:
        """Unique marker genes for one cluster id or a collection of them."""
        if isinstance(clusters, str):
            clusters = [clusters]
        wanted = {str(c) for c in clusters}
        table = self.significant() if significant_only else self.table
        genes = table.loc[table["cluster"].isin(wanted), "gene"]
        return list(dict.fromkeys(genes.astype(str)))

    def top_markers(self, n: int = 5, significant_only: bool = True) -> Dict[str, List[str]]:
        """Top ``n`` marker genes per cluster."""
        table = self.significant() if significant_only else self.table
        return {
            cluster: table.loc[table["cluster"] == cluster, "gene"].head(n).tolist()
            for cluster in self.clusters
        }

    def clusters_without_markers(self) -> List[str]:
        """Clusters with no significant marker."""
        found = set(self.significant()["cluster"])
        return [c for c in self.clusters if c not in found]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        significant = self.significant()
        return {
            "method": self.method,
            "corr_method": self.corr_method,
            "n_genes_tested": self.n_genes_tested,
            "n_markers": int(len(self.table)),
            "n_significant": int(len(significant)),
            "significant_per_cluster": {
                c: int((significant["cluster"] == c).sum()) for c in self.clusters
            },
            "thresholds": {
                "min_pct": self.min_pct,
                "min_logfc": self.min_logfc,
                "max_pval_adj": self.max_pval_adj,
            },
        }


class MarkerFinder:
    """One-vs-rest marker discovery.

    Parameters
    ----------
    config : ClusterAnalysisConfig, optional
        Clustering configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from scrna_explorer.core.clustering import MarkerFinder
    >>> finder = MarkerFinder()
    >>> session = finder.run(session)
    >>> session.markers.top_markers(5)
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
        except ImportError:
            raise RuntimeError(
                "Marker discovery requires scanpy. Install with: pip install scanpy"
            )

    def rank_genes(
        self,
        adata: Any,  # AnnData
        cluster_key: str,
        groups: Optional[Sequence[str]] = None,
        key_added: str = "rank_genes_groups",
    ) -> pd.DataFrame:
        """Run the one-vs-rest test and return the unfiltered long table.

        Parameters
        ----------
        adata : AnnData
            Clustered AnnData (results stored in ``adata.uns[key_added]``)
        cluster_key : str
            Column name in adata.obs with cluster labels
        groups : Sequence[str], optional
            Restrict testing to these clusters (each still against all others)
        key_added : str
            Key to store results in adata.uns

        Returns
        -------
        pd.DataFrame
            One row per (cluster, gene), columns ``MARKER_TABLE_COLUMNS``
        """
        import scanpy as sc

        cfg = self.config.markers
        use_raw = cfg.use_raw and adata.raw is not None
        if cfg.use_raw and adata.raw is None:
            self.logger.warning("adata.raw not set; testing on adata.X instead")

        labels = adata.obs[cluster_key].astype(str)
        tested = sorted(
            set(groups) if groups is not None else set(labels.unique()), key=cluster_sort_key
        )
        self.logger.info(
            "Computing markers (method=%s, correction=%s, use_raw=%s) for %d clusters",
            cfg.method,
            cfg.corr_method,
            use_raw,
            len(tested),
        )

        sc.tl.rank_genes_groups(
            adata,
            groupby=cluster_key,
            groups=list(tested) if groups is not None else "all",
            reference="rest",
            method=cfg.method,
            corr_method=cfg.corr_method,
            tie_correct=cfg.tie_correct,
            use_raw=use_raw,
            pts=True,
            key_added=key_added,
        )

        frames = []
        for cluster in tested:
            df = sc.get.rank_genes_groups_df(adata, group=cluster, key=key_added)
            df = df.dropna(subset=["names"]).rename(columns=MARKER_COLUMNS)
            df["cluster"] = str(cluster)
            frames.append(df)

        table = pd.concat(frames, ignore_index=True)
        for col in MARKER_TABLE_COLUMNS:
            if col not in table.columns:
                table[col] = np.nan
        table["gene"] = table["gene"].astype(str)
        return table[MARKER_TABLE_COLUMNS]

    def filter_markers(self, table: pd.DataFrame) -> pd.DataFrame:
        """Keep positive markers passing min_pct and min_logfc, best first."""
        cfg = self.config.markers
        keep = (
            (table["pct_in"] >= cfg.min_pct)
            & (table["logfoldchange"] >= cfg.min_logfc)
            & (table["logfoldchange"] > 0)
        )
        filtered = table[keep].copy()
        order = {
            c: i for i, c in enumerate(sorted(filtered["cluster"].unique(), key=cluster_sort_key))
        }
        filtered["_order"] = filtered["cluster"].map(order)
        filtered = filtered.sort_values(
            ["_order", "pval_adj", "logfoldchange"], ascending=[True, True, False]
        )
        return filtered.drop(columns="_order").reset_index(drop=True)

    def find_markers(
        self,
        adata: Any,  # AnnData
        cluster_key: str,
        groups: Optional[Sequence[str]] = None,
    ) -> MarkerResult:
        """Find filtered markers for every cluster (or only ``groups``).

        Parameters
        ----------
        adata : AnnData
            Clustered AnnData
        cluster_key : str
            Column name in adata.obs with cluster labels
        groups : Sequence[str], optional
            Only these clusters; all clusters if None

        Returns
        -------
        MarkerResult
            Filtered marker table and summary
        """
        cfg = self.config.markers
        if cluster_key not in adata.obs:
            raise StageOrderError(
                f"Cluster column '{cluster_key}' not found",
                suggestion="Run the cluster stage first",
            )
        if adata.obs[cluster_key].nunique() < 2:
            self.logger.warning("Fewer than 2 clusters; one-vs-rest testing is undefined")
            return MarkerResult(
                clusters=[str(c) for c in adata.obs[cluster_key].unique()],
                method=cfg.method,
                corr_method=cfg.corr_method,
                min_pct=cfg.min_pct,
                min_logfc=cfg.min_logfc,
                max_pval_adj=cfg.max_pval_adj,
            )

        start = time.time()
        raw_table = self.rank_genes(adata, cluster_key, groups=groups)
        elapsed = time.time() - start

        result = MarkerResult(
            table=self.filter_markers(raw_table),
            clusters=sorted(raw_table["cluster"].unique(), key=cluster_sort_key),
            method=cfg.method,
            corr_method=cfg.corr_method,
            n_genes_tested=int(raw_table.groupby("cluster").size().max()),
            min_pct=cfg.min_pct,
            min_logfc=cfg.min_logfc,
            max_pval_adj=cfg.max_pval_adj,
            elapsed_seconds=elapsed,
        )

        self.logger.info(
            "%s markers completed in %.1f seconds: %d pass filters, %d significant",
            cfg.method,
            elapsed,
            len(result.table),
            len(result.significant()),
        )
        empty = result.clusters_without_markers()
        if empty:
            self.logger.warning("No significant markers for clusters: %s", ", ".join(empty))
        return result

    def run(self, session: AnalysisSession) -> AnalysisSession:
        """Find markers for all clusters and return the next snapshot."""
        session.require("cluster", for_stage="markers")
        adata = session.working_copy()
        result = self.find_markers(adata, session.clustering.cluster_key)
        return session.advance("markers", adata, result, keys=[("uns", "rank_genes_groups")])

    def find_cluster_markers(self, session: AnalysisSession, cluster: str) -> MarkerResult:
        """Markers for a single cluster against all other cells.

        Does not produce a new snapshot; the session is left untouched.
        """
        session.require("cluster", for_stage="markers")
        adata = session.working_copy()
        return self.find_markers(adata, session.clustering.cluster_key, groups=[str(cluster)])
