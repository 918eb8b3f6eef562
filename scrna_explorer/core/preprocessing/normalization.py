"""Normalization and feature selection.

Library-size normalization with log1p, highly variable gene selection and
per-gene scaling to zero mean / unit variance.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import QCError, StageOrderError
from ..session import AnalysisSession
from .config import NormalizationConfig


# Flavors that rank genes on raw counts rather than log data
COUNT_FLAVORS = ("seurat_v3", "seurat_v3_paper")


@dataclass
class NormalizationResult:
    """Result from normalization and HVG selection.

    Attributes
    ----------
    n_genes_in : int
        Genes before HVG subsetting
    n_hvg : int
        Highly variable genes kept
    hvg_genes : List[str]
        Names of the highly variable genes, by rank
    flavor : str
        HVG flavor used
    target_sum : float
        Library size after normalization
    scale_clip : float, optional
        Clip value used when scaling
    max_abs_mean : float
        Largest |mean| over scaled genes (should be ~0)
    mean_variance : float
        Mean variance over scaled genes (should be ~1 without clipping)
    gene_stats : pd.DataFrame
        Per-gene HVG statistics for all input genes (for the HVG plot)
    """

    n_genes_in: int = 0
    n_hvg: int = 0
    hvg_genes: List[str] = field(default_factory=list)
    flavor: str = ""
    target_sum: float = 0.0
    scale_clip: Optional[float] = None
    max_abs_mean: float = 0.0
    mean_variance: float = 0.0
    gene_stats: Optional[pd.DataFrame] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "n_genes_in": self.n_genes_in,
            "n_hvg": self.n_hvg,
            "flavor": self.flavor,
            "target_sum": self.target_sum,
            "scale_clip": self.scale_clip,
            "max_abs_mean": round(self.max_abs_mean, 6),
            "mean_variance": round(self.mean_variance, 6),
        }


class Normalizer:
    """Log-normalization, HVG selection and scaling.

    Parameters
    ----------
    config : NormalizationConfig, optional
        Normalization configuration
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.
    counts_layer : str
        Layer holding raw counts (needed by the seurat_v3 flavor)

    Example
    -------
    >>> from scrna_explorer.core.preprocessing import Normalizer, NormalizationConfig
    >>> normalizer = Normalizer(NormalizationConfig(n_top_genes=2000))
    >>> session = normalizer.run(session)
    >>> session.normalization.n_hvg
    """

    def __init__(
        self,
        config: Optional[NormalizationConfig] = None,
        logger: Optional[logging.Logger] = None,
        counts_layer: str = "counts",
    ):
        self.config = config or NormalizationConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.counts_layer = counts_layer

    def log_normalize(self, adata: Any) -> None:
        """Scale each cell to ``target_sum`` counts and apply log1p, in place."""
        import scanpy as sc

        sc.pp.normalize_total(adata, target_sum=self.config.target_sum)
        sc.pp.log1p(adata)
        adata.layers[self.config.lognorm_layer] = adata.X.copy()

    def select_hvgs(self, adata: Any) -> List[str]:
        """Flag highly variable genes in ``adata.var`` and return them by rank.

        Parameters
        ----------
        adata : AnnData
            Log-normalized AnnData (raw counts in ``counts_layer``)

        Returns
        -------
        List[str]
            Highly variable gene names, most variable first
        """
        import scanpy as sc

        cfg = self.config
        n_top = min(cfg.n_top_genes, adata.n_vars)
        if n_top < cfg.n_top_genes:
            self.logger.info(
                "Requested %d HVGs but only %d genes available", cfg.n_top_genes, n_top
            )

        if cfg.hvg_flavor in COUNT_FLAVORS:
            if self.counts_layer not in adata.layers:
                raise QCError(
                    f"HVG flavor '{cfg.hvg_flavor}' needs raw counts",
                    expected=f"adata.layers['{self.counts_layer}']",
                    found=list(adata.layers.keys()),
                )
            sc.pp.highly_variable_genes(
                adata, flavor=cfg.hvg_flavor, n_top_genes=n_top, layer=self.counts_layer
            )
            order = adata.var["highly_variable_rank"].sort_values(na_position="last").index
        else:
            sc.pp.highly_variable_genes(adata, flavor=cfg.hvg_flavor, n_top_genes=n_top)
            order = adata.var["dispersions_norm"].sort_values(ascending=False).index

        hvg_mask = adata.var["highly_variable"]
        return [g for g in order if hvg_mask[g]]

    def scale(self, adata: Any) -> Tuple[float, float]:
        """Scale genes to zero mean / unit variance with clipping, in place.

        Returns
        -------
        Tuple[float, float]
            (max |mean|, mean variance) over genes after scaling
        """
        import scanpy as sc

        sc.pp.scale(adata, zero_center=True, max_value=self.config.scale_clip)
        values = adata.X.toarray() if sparse.issparse(adata.X) else np.asarray(adata.X)
        means = values.mean(axis=0)
        variances = values.var(axis=0, ddof=1) if adata.n_obs > 1 else np.zeros(adata.n_vars)
        return float(np.abs(means).max()), float(variances.mean())

    def normalize(self, adata: Any) -> Tuple[Any, NormalizationResult]:
        """Run log-normalization, HVG selection and scaling.

        The full log-normalized matrix is kept in ``adata.raw`` for marker
        testing; the returned AnnData holds only the scaled HVGs.

        Parameters
        ----------
        adata : AnnData
            QC-filtered raw-count AnnData (modified in place)

        Returns
        -------
        Tuple[AnnData, NormalizationResult]
            HVG-subset scaled AnnData and the normalization summary

        Raises
        ------
        QCError
            If the input has no cells or no variable genes
        """
        cfg = self.config
        if adata.n_obs < 2 or adata.n_vars == 0:
            raise QCError(
                "Too few cells or genes to normalize",
                expected=">= 2 cells and >= 1 gene",
                found=f"{adata.n_obs} cells x {adata.n_vars} genes",
            )

        result = NormalizationResult(
            n_genes_in=int(adata.n_vars),
            flavor=cfg.hvg_flavor,
            target_sum=cfg.target_sum,
            scale_clip=cfg.scale_clip,
        )

        self.log_normalize(adata)
        hvgs = self.select_hvgs(adata)
        if not hvgs:
            raise QCError(
                "No highly variable genes selected",
                suggestion="Check that the matrix is not constant after QC",
            )

        stat_cols = [
            c
            for c in ("means", "variances", "variances_norm", "dispersions", "dispersions_norm",
                      "highly_variable_rank", "highly_variable")
            if c in adata.var.columns
        ]
        result.gene_stats = adata.var[stat_cols].copy()

        adata.raw = adata
        adata = adata[:, hvgs].copy()
        result.max_abs_mean, result.mean_variance = self.scale(adata)
        result.n_hvg = len(hvgs)
        result.hvg_genes = hvgs

        self.logger.info(
            "Normalized to %.0f counts/cell, kept %d/%d HVGs (%s), scaled with clip=%s",
            cfg.target_sum,
            result.n_hvg,
            result.n_genes_in,
            cfg.hvg_flavor,
            cfg.scale_clip,
        )
        return adata, result

    def run(self, session: AnalysisSession) -> AnalysisSession:
        """Normalize a QC'd snapshot and return the next snapshot."""
        session.require("qc", for_stage="normalize")
        if session.has("normalize"):
            raise StageOrderError(
                "Snapshot is already normalized and scaled",
                suggestion="Re-run normalization from the QC snapshot instead",
            )
        adata, result = self.normalize(session.working_copy())
        return session.advance("normalize", adata, result)
