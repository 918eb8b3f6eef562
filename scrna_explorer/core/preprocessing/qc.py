"""Threshold-based cell quality control.

Computes per-cell total counts, detected genes and mitochondrial percentage,
then keeps only cells strictly below all three configured thresholds.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging

import numpy as np
import pandas as pd

from ...errors import QCError, StageOrderError
from ..session import AnalysisSession
from .config import QCConfig


# Reason columns for tracking removal causes
REASON_COLUMNS = [
    "high_counts",
    "high_genes",
    "high_mt",
]

# Per-cell metric columns written to adata.obs
METRIC_COLUMNS = [
    "total_counts",
    "n_genes_by_counts",
    "pct_counts_mt",
]


@dataclass
class QCResult:
    """Result from QC filtering.

    Attributes
    ----------
    cells_total : int
        Total cells before filtering
    cells_removed : int
        Number of cells removed
    cells_retained : int
        Number of cells kept
    removal_fraction : float
        Fraction of cells removed
    genes_removed : int
        Genes dropped by the optional ``min_cells`` filter
    n_mt_genes : int
        Genes flagged as mitochondrial
    thresholds : Dict[str, float]
        Thresholds applied
    reason_counts : Dict[str, int]
        Counts per removal reason (a cell can have several)
    removal_records : List[Dict]
        One record per removed cell with its metrics and reasons
    metrics_before : pd.DataFrame
        Per-cell metrics for all cells, kept for the QC plots
    """

    cells_total: int = 0
    cells_removed: int = 0
    cells_retained: int = 0
    removal_fraction: float = 0.0
    genes_removed: int = 0
    n_mt_genes: int = 0
    thresholds: Dict[str, float] = field(default_factory=dict)
    reason_counts: Dict[str, int] = field(default_factory=dict)
    removal_records: List[Dict[str, Any]] = field(default_factory=list)
    metrics_before: Optional[pd.DataFrame] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        result = {
            "cells_total": self.cells_total,
            "cells_removed": self.cells_removed,
            "cells_retained": self.cells_retained,
            "removal_fraction": round(self.removal_fraction, 4),
            "genes_removed": self.genes_removed,
            "n_mt_genes": self.n_mt_genes,
        }
        for reason in REASON_COLUMNS:
            result[f"removed_{reason}"] = self.reason_counts.get(reason, 0)
        return result

    def removal_frame(self) -> pd.DataFrame:
        """Removed cells as a table (cell_id, metrics, reasons)."""
        columns = ["cell_id"] + METRIC_COLUMNS + ["reasons"]
        if not self.removal_records:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame(self.removal_records, columns=columns)

    def summary_frame(self) -> pd.DataFrame:
        """One-row summary table for CSV export."""
        return pd.DataFrame([{**self.to_dict(), **self.thresholds}])


class CellQC:
    """Threshold-based cell QC filter.

    Parameters
    ----------
    config : QCConfig, optional
        QC configuration
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from scrna_explorer.core.preprocessing import CellQC, QCConfig
    >>> qc = CellQC(QCConfig(max_pct_mt=10))
    >>> session = qc.run(session)
    >>> session.qc.cells_retained
    """

    def __init__(
        self,
        config: Optional[QCConfig] = None,
        logger: Optional[logging.Logger] = None,
        counts_layer: str = "counts",
    ):
        self.config = config or QCConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.counts_layer = counts_layer

        errors = self.config.validate()
        if errors:
            raise ValueError("Invalid QC configuration: " + "; ".join(errors))

    def compute_metrics(self, adata: Any) -> pd.DataFrame:
        """Add per-cell QC metrics to ``adata.obs`` and the ``mt`` flag to ``adata.var``.

        Parameters
        ----------
        adata : AnnData
            Raw-count AnnData (modified in place)

        Returns
        -------
        pd.DataFrame
            The three metric columns, indexed by cell
        """
        import scanpy as sc

        adata.var["mt"] = adata.var_names.str.startswith(self.config.mt_prefix)
        n_mt = int(adata.var["mt"].sum())
        if n_mt == 0:
            self.logger.warning(
                "No genes match mitochondrial prefix '%s'; pct_counts_mt will be 0",
                self.config.mt_prefix,
            )

        layer = self.counts_layer if self.counts_layer in adata.layers else None
        sc.pp.calculate_qc_metrics(
            adata,
            qc_vars=["mt"],
            layer=layer,
            percent_top=None,
            log1p=False,
            inplace=True,
        )
        # Empty barcodes give 0/0
        adata.obs["pct_counts_mt"] = adata.obs["pct_counts_mt"].fillna(0.0)
        return adata.obs[METRIC_COLUMNS].copy()

    def flag_cells(self, metrics: pd.DataFrame) -> pd.DataFrame:
        """Evaluate each removal reason per cell.

        Returns
        -------
        pd.DataFrame
            Boolean frame with one column per entry of ``REASON_COLUMNS``
        """
        cfg = self.config
        return pd.DataFrame(
            {
                "high_counts": metrics["total_counts"] >= cfg.max_total_counts,
                "high_genes": metrics["n_genes_by_counts"] >= cfg.max_genes_by_counts,
                "high_mt": metrics["pct_counts_mt"] >= cfg.max_pct_mt,
            },
            index=metrics.index,
        )

    def filter_cells(self, adata: Any) -> Tuple[Any, QCResult]:
        """Compute metrics and drop failing cells.

        Parameters
        ----------
        adata : AnnData
            Raw-count AnnData (metrics are written to it in place)

        Returns
        -------
        Tuple[AnnData, QCResult]
            Filtered copy and the filtering summary

        Raises
        ------
        QCError
            If no cell passes all thresholds
        """
        import scanpy as sc

        cfg = self.config
        result = QCResult(
            thresholds={
                "max_total_counts": cfg.max_total_counts,
                "max_genes_by_counts": cfg.max_genes_by_counts,
                "max_pct_mt": cfg.max_pct_mt,
            }
        )

        metrics = self.compute_metrics(adata)
        flags = self.flag_cells(metrics)
        remove = flags.any(axis=1).to_numpy()

        result.cells_total = int(adata.n_obs)
        result.cells_removed = int(remove.sum())
        result.cells_retained = result.cells_total - result.cells_removed
        result.removal_fraction = (
            result.cells_removed / result.cells_total if result.cells_total else 0.0
        )
        result.n_mt_genes = int(adata.var["mt"].sum())
        result.reason_counts = {r: int(flags[r].sum()) for r in REASON_COLUMNS}
        result.metrics_before = metrics

        for cell_id in metrics.index[remove]:
            row = metrics.loc[cell_id]
            record = {"cell_id": str(cell_id)}
            record.update({col: float(row[col]) for col in METRIC_COLUMNS})
            record["reasons"] = ";".join(r for r in REASON_COLUMNS if flags.at[cell_id, r])
            result.removal_records.append(record)

        self.logger.info(
            "QC: %d/%d cells removed (counts=%d, genes=%d, mt=%d)",
            result.cells_removed,
            result.cells_total,
            result.reason_counts["high_counts"],
            result.reason_counts["high_genes"],
            result.reason_counts["high_mt"],
        )

        if result.cells_retained == 0:
            raise QCError(
                "No cells passed QC",
                expected="at least one cell below all thresholds",
                found=result.reason_counts,
                suggestion="Inspect the QC violin plots and relax the thresholds",
                context=result.to_dict(),
            )

        filtered = adata[~remove].copy()

        if cfg.min_cells > 0:
            n_before = filtered.n_vars
            sc.pp.filter_genes(filtered, min_cells=cfg.min_cells)
            result.genes_removed = n_before - filtered.n_vars
            self.logger.info(
                "Removed %d genes detected in < %d cells", result.genes_removed, cfg.min_cells
            )

        return filtered, result

    def run(self, session: AnalysisSession) -> AnalysisSession:
        """Apply QC to a session snapshot and return the next snapshot."""
        session.require("ingest", for_stage="qc")
        if session.has("qc"):
            raise StageOrderError(
                "QC already applied to this snapshot",
                suggestion="Re-run QC from the ingested snapshot instead",
            )
        filtered, result = self.filter_cells(session.working_copy())
        return session.advance("qc", filtered, result)
