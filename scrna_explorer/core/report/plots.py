"""Report figures for each pipeline stage.

Every function reads results off a session snapshot (or a result object),
writes one PNG and returns its path. Nothing here modifies the session.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union
import logging

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from ..preprocessing.qc import METRIC_COLUMNS, REASON_COLUMNS
from .style import (
    LIBRARY_COLORS,
    MISSING_COLOR,
    QC_REASON_COLORS,
    categorical_palette,
    create_figure,
    save_figure,
    set_publication_style,
    truncate_labels,
)

logger = logging.getLogger(__name__)

METRIC_LABELS = {
    "total_counts": "Total UMI counts",
    "n_genes_by_counts": "Detected genes",
    "pct_counts_mt": "Mitochondrial %",
}


def _qc_status(qc_result) -> pd.Series:
    """Per-cell QC status: 'kept' or the first failing reason."""
    metrics = qc_result.metrics_before
    status = pd.Series("kept", index=metrics.index, dtype=object)
    for record in qc_result.removal_records:
        status[record["cell_id"]] = record["reasons"].split(";")[0]
    return status


def plot_qc_violins(
    qc_result,
    output_path: Union[str, Path],
    dpi: int = 150,
) -> Path:
    """Violins of the three QC metrics before filtering, with thresholds.

    Parameters
    ----------
    qc_result : QCResult
        QC result holding ``metrics_before`` and ``thresholds``
    output_path : Path
        Destination PNG
    dpi : int
        Resolution

    Returns
    -------
    Path
        Saved figure path
    """
    metrics = qc_result.metrics_before
    limits = [
        qc_result.thresholds.get("max_total_counts"),
        qc_result.thresholds.get("max_genes_by_counts"),
        qc_result.thresholds.get("max_pct_mt"),
    ]

    fig, axes = create_figure(1, 3, figsize=(12, 4))
    for ax, col, limit in zip(axes[0], METRIC_COLUMNS, limits):
        sns.violinplot(y=metrics[col], ax=ax, color="#85c1e9", inner=None, cut=0)
        sns.stripplot(y=metrics[col], ax=ax, color="#2c3e50", size=1.5, alpha=0.4, jitter=0.3)
        if limit is not None:
            ax.axhline(limit, color=QC_REASON_COLORS["high_counts"], linestyle="--", linewidth=1)
        ax.set_ylabel(METRIC_LABELS[col])
        ax.set_title(METRIC_LABELS[col])

    fig.suptitle(f"QC metrics before filtering (n={len(metrics):,} cells)")
    return save_figure(fig, output_path, dpi=dpi)


def plot_qc_scatter(
    qc_result,
    output_path: Union[str, Path],
    dpi: int = 150,
) -> Path:
    """Counts vs detected genes and counts vs mito %, colored by QC status."""
    metrics = qc_result.metrics_before.copy()
    metrics["status"] = _qc_status(qc_result)
    order = ["kept"] + [r for r in REASON_COLUMNS if (metrics["status"] == r).any()]

    fig, axes = create_figure(1, 2, figsize=(11, 4.5))
    pairs = [("total_counts", "n_genes_by_counts"), ("total_counts", "pct_counts_mt")]
    for ax, (x, y) in zip(axes[0], pairs):
        sns.scatterplot(
            data=metrics,
            x=x,
            y=y,
            hue="status",
            hue_order=order,
            palette=QC_REASON_COLORS,
            s=8,
            linewidth=0,
            ax=ax,
        )
        ax.axvline(qc_result.thresholds["max_total_counts"], color="#7f8c8d", linestyle="--", linewidth=1)
        limit_key = "max_genes_by_counts" if y == "n_genes_by_counts" else "max_pct_mt"
        ax.axhline(qc_result.thresholds[limit_key], color="#7f8c8d", linestyle="--", linewidth=1)
        ax.set_xlabel(METRIC_LABELS[x])
        ax.set_ylabel(METRIC_LABELS[y])

    fig.suptitle(
        f"QC: {qc_result.cells_removed:,} of {qc_result.cells_total:,} cells removed"
    )
    return save_figure(fig, output_path, dpi=dpi)


def plot_hvg(
    normalization_result,
    output_path: Union[str, Path],
    dpi: int = 150,
) -> Optional[Path]:
    """Mean vs normalized variance with highly variable genes highlighted."""
    stats = normalization_result.gene_stats
    if stats is None or stats.empty:
        return None

    y_col = next(
        (c for c in ("variances_norm", "dispersions_norm", "variances") if c in stats.columns),
        None,
    )
    if y_col is None or "means" not in stats.columns:
        logger.warning("HVG plot skipped: no variance statistics")
        return None

    hvg = stats.index.isin(normalization_result.hvg_genes)
    fig, axes = create_figure(1, 1, figsize=(6, 4.5))
    ax = axes[0][0]
    ax.scatter(stats["means"][~hvg], stats[y_col][~hvg], s=4, c="#bdc3c7", label="other")
    ax.scatter(stats["means"][hvg], stats[y_col][hvg], s=6, c="#c0392b", label="highly variable")
    ax.set_xscale("log")
    ax.set_xlabel("Mean count")
    ax.set_ylabel(y_col.replace("_", " "))
    ax.set_title(
        f"{normalization_result.n_hvg:,} highly variable genes ({normalization_result.flavor})"
    )
    ax.legend(loc="upper right")
    return save_figure(fig, output_path, dpi=dpi)


def plot_pca_elbow(
    reduction_result,
    output_path: Union[str, Path],
    dpi: int = 150,
) -> Path:
    """Variance ratio per principal component with cumulative overlay."""
    ratios = np.asarray(reduction_result.variance_ratio, dtype=float)
    pcs = np.arange(1, len(ratios) + 1)

    fig, axes = create_figure(1, 1, figsize=(7, 4))
    ax = axes[0][0]
    ax.plot(pcs, ratios, marker="o", markersize=4, color="#2c3e50")
    ax.set_xlabel("Principal component")
    ax.set_ylabel("Variance ratio")
    ax.set_title(f"PCA elbow ({len(ratios)} PCs used)")

    twin = ax.twinx()
    twin.plot(pcs, np.cumsum(ratios), color="#e67e22", linestyle="--", linewidth=1)
    twin.set_ylabel("Cumulative", color="#e67e22")
    twin.grid(False)
    return save_figure(fig, output_path, dpi=dpi)


def _embedding(adata) -> tuple:
    """UMAP coordinates if present, else the first two PCs."""
    if "X_umap" in adata.obsm:
        return adata.obsm["X_umap"][:, :2], ("UMAP1", "UMAP2")
    return adata.obsm["X_pca"][:, :2], ("PC1", "PC2")


def plot_embedding(
    adata,
    color_key: str,
    output_path: Union[str, Path],
    colors: Optional[Dict[str, str]] = None,
    title: Optional[str] = None,
    dpi: int = 150,
) -> Path:
    """Scatter of the 2-D embedding colored by a categorical obs column.

    Parameters
    ----------
    adata : AnnData
        Clustered data with ``X_umap`` (or ``X_pca``) in ``obsm``
    color_key : str
        Categorical column in ``adata.obs``
    output_path : Path
        Destination PNG
    colors : Dict[str, str], optional
        Fixed colors for some categories
    title : str, optional
        Axis title
    dpi : int
        Resolution

    Returns
    -------
    Path
        Saved figure path
    """
    coords, (xlabel, ylabel) = _embedding(adata)
    labels = adata.obs[color_key].astype(str).to_numpy()
    categories = list(dict.fromkeys(
        adata.obs[color_key].cat.categories.astype(str)
        if hasattr(adata.obs[color_key], "cat")
        else sorted(set(labels))
    ))
    palette = categorical_palette(categories, colors)

    fig, axes = create_figure(1, 1, figsize=(7, 6))
    ax = axes[0][0]
    for category in categories:
        mask = labels == category
        if not mask.any():
            continue
        ax.scatter(
            coords[mask, 0],
            coords[mask, 1],
            s=6,
            c=palette[category],
            label=f"{category} ({int(mask.sum()):,})",
            linewidths=0,
        )
        center = np.median(coords[mask], axis=0)
        ax.text(center[0], center[1], category, fontsize=8, weight="bold", ha="center")

    ax.set_xlabel(xlabel)
    ax.set_ylabel(ylabel)
    ax.set_xticks([])
    ax.set_yticks([])
    ax.set_title(title or color_key)
    ax.legend(loc="center left", bbox_to_anchor=(1.0, 0.5), markerscale=2, frameon=False)
    return save_figure(fig, output_path, dpi=dpi)


def plot_marker_dotplot(
    adata,
    top_markers: Dict[str, List[str]],
    groupby: str,
    output_path: Union[str, Path],
    dpi: int = 150,
) -> Optional[Path]:
    """Scanpy dot plot of the top markers per cluster."""
    import scanpy as sc

    var_names = {c: genes for c, genes in top_markers.items() if genes}
    if not var_names:
        return None

    set_publication_style()
    dot = sc.pl.dotplot(
        adata,
        var_names=var_names,
        groupby=groupby,
        use_raw=adata.raw is not None,
        standard_scale="var",
        show=False,
        return_fig=True,
    )
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    dot.savefig(output_path, dpi=dpi)
    plt.close("all")
    return output_path


def plot_marker_violins(
    adata,
    genes: Sequence[str],
    groupby: str,
    output_path: Union[str, Path],
    dpi: int = 150,
    ncols: int = 3,
) -> Optional[Path]:
    """Violin grid of log-normalized expression per cluster, one panel per gene."""
    source = adata.raw if adata.raw is not None else adata
    genes = [g for g in dict.fromkeys(genes) if g in source.var_names]
    if not genes:
        return None

    groups = adata.obs[groupby].astype(str).to_numpy()
    order = list(adata.obs[groupby].cat.categories.astype(str)) if hasattr(
        adata.obs[groupby], "cat"
    ) else sorted(set(groups))
    palette = categorical_palette(order)

    nrows = int(np.ceil(len(genes) / ncols))
    ncols = min(ncols, len(genes))
    fig, axes = create_figure(nrows, ncols, figsize=(4 * ncols, 3 * nrows))
    flat = axes.ravel()
    for ax, gene in zip(flat, genes):
        values = source[:, gene].X
        values = np.asarray(values.todense() if hasattr(values, "todense") else values).ravel()
        frame = pd.DataFrame({"cluster": groups, "expression": values})
        sns.violinplot(
            data=frame,
            x="cluster",
            y="expression",
            hue="cluster",
            order=order,
            hue_order=order,
            palette=palette,
            inner=None,
            cut=0,
            density_norm="width",
            legend=False,
            ax=ax,
        )
        ax.set_title(gene)
        ax.set_xlabel("")
        ax.set_ylabel("log expression")
    for ax in flat[len(genes):]:
        ax.set_visible(False)

    return save_figure(fig, output_path, dpi=dpi)


def plot_enrichment(
    enrichment_result,
    output_path: Union[str, Path],
    dpi: int = 150,
) -> Path:
    """Horizontal bars of -log10 adjusted p per top term, one panel per library.

    Libraries without a result get an empty panel labelled as missing.
    """
    libraries = list(enrichment_result.libraries)
    fig, axes = create_figure(len(libraries), 1, figsize=(9, 2.6 * len(libraries)))

    for ax, library in zip(axes[:, 0], libraries):
        table = enrichment_result.tables.get(library)
        if table is None or table.empty:
            reason = enrichment_result.failed.get(library, "no terms returned")
            ax.text(
                0.5, 0.5, f"Missing result: {reason}",
                ha="center", va="center", color="#7f8c8d", transform=ax.transAxes,
            )
            ax.set_xticks([])
            ax.set_yticks([])
            ax.set_facecolor("#fafafa")
            ax.set_title(library, color=MISSING_COLOR)
            continue

        scores = -np.log10(np.clip(table["pval_adj"].astype(float).to_numpy(), 1e-300, 1.0))
        terms = truncate_labels([str(t) for t in table["term"]])
        positions = np.arange(len(terms))[::-1]
        ax.barh(positions, scores, color=LIBRARY_COLORS.get(library, "#34495e"))
        ax.set_yticks(positions)
        ax.set_yticklabels(terms)
        ax.set_xlabel("-log10 adjusted p")
        ax.set_title(library)

    title = "Enrichment"
    if enrichment_result.cell_type:
        title += f": {enrichment_result.cell_type} markers"
    fig.suptitle(title)
    return save_figure(fig, output_path, dpi=dpi)
