"""
Static HTML report.

Renders every completed stage of a session into one self-contained page:
figures written next to the page, summary tables, and a short fixed
interpretation per section. Stages that did not run, and enrichment
libraries that returned nothing, are shown as missing results.
"""

from __future__ import annotations

import html
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from ...io.logging import write_run_manifest
from ...io.tables import ensure_output_dir, export_session_tables
from ..session import AnalysisSession
from . import plots
from .config import ReportConfig


REPORT_CSS = """
<style>
    body {
        font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
        background-color: #f5f5f5;
        margin: 0;
        padding: 20px;
        color: #333;
    }
    .header {
        text-align: center;
        padding: 20px;
        background: linear-gradient(135deg, #c0392b 0%, #8e44ad 100%);
        color: white;
        border-radius: 10px;
        margin-bottom: 20px;
    }
    .header h1 { margin: 0; font-size: 1.9em; }
    .header p { margin: 10px 0 0 0; opacity: 0.9; }
    .summary-stats {
        display: flex;
        justify-content: center;
        gap: 20px;
        flex-wrap: wrap;
        margin-top: 15px;
    }
    .stat-box {
        background: rgba(255,255,255,0.2);
        padding: 10px 20px;
        border-radius: 5px;
        text-align: center;
    }
    .stat-box .value { font-size: 1.5em; font-weight: bold; }
    .stat-box .label { font-size: 0.9em; opacity: 0.8; }
    .section {
        background: white;
        border-radius: 10px;
        box-shadow: 0 2px 10px rgba(0,0,0,0.1);
        padding: 15px 25px;
        margin-bottom: 20px;
    }
    .section h2 {
        margin-top: 0;
        font-size: 1.3em;
        border-bottom: 1px solid #eee;
        padding-bottom: 6px;
    }
    .interpretation {
        background: #f8f9fa;
        border-left: 3px solid #8e44ad;
        padding: 8px 12px;
        font-size: 0.92em;
    }
    .figure { text-align: center; margin: 12px 0; }
    .figure img { max-width: 100%; }
    .missing {
        background: #fff3e0;
        border-left: 3px solid #ff9800;
        color: #e65100;
        padding: 8px 12px;
        margin: 8px 0;
        font-size: 0.9em;
    }
    .failure {
        background: #ffebee;
        border-left: 3px solid #c62828;
        color: #c62828;
        padding: 8px 12px;
        margin: 8px 0;
    }
    table.data {
        width: 100%;
        border-collapse: collapse;
        font-size: 0.85em;
        margin: 10px 0;
    }
    table.data th, table.data td {
        padding: 6px 8px;
        text-align: left;
        border-bottom: 1px solid #eee;
    }
    table.data th { background: #f9f9f9; font-weight: 600; }
    table.data tr:hover { background: #f5f5f5; }
    .note { color: #666; font-size: 0.85em; }
</style>
"""

# Fixed interpretive text per section
INTERPRETATION = {
    "qc": (
        "Cells above any threshold (total UMI counts, detected genes, or "
        "mitochondrial fraction) are removed. Very high counts or gene numbers "
        "usually indicate doublets; a high mitochondrial fraction indicates "
        "damaged or dying cells. Check that the thresholds cut the tails of the "
        "distributions rather than the bulk."
    ),
    "normalize": (
        "Counts are scaled to a common library size and log-transformed. "
        "Highly variable genes are chosen on raw counts with a "
        "variance-stabilizing model, then scaled to unit variance with clipping "
        "so that a few extreme values cannot dominate the principal components."
    ),
    "reduce": (
        "The elbow plot shows how much variance each principal component "
        "explains. The components before the curve flattens carry most of the "
        "biological signal; clustering uses the configured number of components."
    ),
    "cluster": (
        "Cells are grouped by community detection on a k-nearest-neighbour graph "
        "built in PCA space. The 2-D embedding is for display only; distances in "
        "it should not be over-interpreted. Cluster ids are ordered by size."
    ),
    "markers": (
        "Markers are genes more highly expressed in a cluster than in all other "
        "cells (Wilcoxon rank-sum, Bonferroni-adjusted). Only genes expressed in "
        "at least the minimum fraction of the cluster with a positive log "
        "fold-change above the cutoff are kept."
    ),
    "annotate": (
        "Cell types are assigned by hand from the marker genes of each cluster. "
        "Several clusters may share a cell type."
    ),
    "enrich": (
        "The significant markers of one cell type are compared against curated "
        "gene-set libraries. Terms are ranked by adjusted p-value; a top term "
        "consistent with the assigned cell type supports the annotation."
    ),
}


def _escape(value: Any) -> str:
    return html.escape(str(value))


def _table_html(df: pd.DataFrame, max_rows: int, float_format: str = "{:.3g}") -> str:
    """Render a DataFrame as an HTML table, truncated to ``max_rows``."""
    if df is None or df.empty:
        return '<p class="note">No rows.</p>'

    shown = df.head(max_rows)
    header = "".join(f"<th>{_escape(c)}</th>" for c in shown.columns)
    rows = []
    for _, row in shown.iterrows():
        cells = []
        for value in row:
            if isinstance(value, float):
                value = float_format.format(value)
            elif isinstance(value, (list, tuple)):
                value = ", ".join(str(v) for v in value)
            cells.append(f"<td>{_escape(value)}</td>")
        rows.append(f"<tr>{''.join(cells)}</tr>")

    note = ""
    if len(df) > max_rows:
        note = f'<p class="note">Showing {max_rows} of {len(df):,} rows; see the CSV export.</p>'
    return f'<table class="data"><tr>{header}</tr>{"".join(rows)}</table>{note}'


def _figure_html(path: Optional[Path], report_dir: Path, caption: str = "") -> str:
    if path is None:
        return f'<div class="missing">Missing figure: {_escape(caption)}</div>'
    rel = Path(path).relative_to(report_dir).as_posix()
    return (
        f'<div class="figure"><img src="{_escape(rel)}" alt="{_escape(caption)}">'
        f'<p class="note">{_escape(caption)}</p></div>'
    )


def _missing_html(text: str) -> str:
    return f'<div class="missing">{_escape(text)}</div>'


class ReportBuilder:
    """Renders a session into a static HTML report.

    Parameters
    ----------
    config : ReportConfig, optional
        Report configuration
    colors : Dict[str, str], optional
        Fixed cell-type colors (e.g. ``CellTypeMap.colors``)
    run_config : Dict[str, Any], optional
        Analysis configuration written to the run manifest
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> builder = ReportBuilder(ReportConfig(dpi=100))
    >>> session = builder.run(session, "out/report")
    >>> session.report_path
    """

    def __init__(
        self,
        config: Optional[ReportConfig] = None,
        colors: Optional[Dict[str, str]] = None,
        run_config: Optional[Dict[str, Any]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ReportConfig()
        self.colors = colors or {}
        self.run_config = run_config or {}
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _header(self, session: AnalysisSession) -> str:
        stats = []
        if session.load is not None:
            stats.append((f"{session.load.n_cells:,}", "Cells loaded"))
        if session.qc is not None:
            stats.append((f"{session.qc.cells_retained:,}", "Cells after QC"))
        if session.normalization is not None:
            stats.append((f"{session.normalization.n_hvg:,}", "Variable genes"))
        if session.clustering is not None:
            stats.append((str(session.clustering.n_clusters), "Clusters"))
        if session.annotation is not None:
            stats.append((str(len(session.annotation.cell_type_counts)), "Cell types"))

        boxes = "".join(
            f'<div class="stat-box"><div class="value">{v}</div>'
            f'<div class="label">{label}</div></div>'
            for v, label in stats
        )
        return f"""
        <div class="header">
            <h1>{_escape(self.config.title)}</h1>
            <p>Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}</p>
            <div class="summary-stats">{boxes}</div>
        </div>
        """

    def _failures(self, failures: Dict[str, Dict[str, Any]]) -> str:
        if not failures:
            return ""
        items = "".join(
            f"<li><strong>{_escape(stage)}</strong>: [{_escape(err.get('error_code', ''))}] "
            f"{_escape(err.get('message', ''))}</li>"
            for stage, err in failures.items()
        )
        return f'<div class="section failure"><h2>Failed steps</h2><ul>{items}</ul></div>'

    def _section(self, stage_id: str, title: str, body: str) -> str:
        text = INTERPRETATION.get(stage_id, "")
        interp = f'<p class="interpretation">{_escape(text)}</p>' if text else ""
        return f'<div class="section" id="{stage_id}"><h2>{_escape(title)}</h2>{interp}{body}</div>'

    def _qc_section(self, session: AnalysisSession, fig_dir: Path, report_dir: Path) -> str:
        qc = session.qc
        if qc is None:
            return self._section("qc", "Quality control", _missing_html("QC did not run."))
        dpi = self.config.dpi
        body = [
            _figure_html(plots.plot_qc_violins(qc, fig_dir / "qc_violins.png", dpi), report_dir,
                         "QC metric distributions before filtering"),
            _figure_html(plots.plot_qc_scatter(qc, fig_dir / "qc_scatter.png", dpi), report_dir,
                         "Cells colored by QC outcome"),
            _table_html(qc.summary_frame(), 1),
        ]
        return self._section("qc", "Quality control", "".join(body))

    def _normalize_section(self, session: AnalysisSession, fig_dir: Path, report_dir: Path) -> str:
        norm = session.normalization
        if norm is None:
            return self._section("normalize", "Normalization", _missing_html("Normalization did not run."))
        path = plots.plot_hvg(norm, fig_dir / "hvg.png", self.config.dpi)
        body = (
            _figure_html(path, report_dir, "Highly variable genes")
            + f'<p class="note">{norm.n_hvg:,} of {norm.n_genes_in:,} genes kept; '
            f"target sum {norm.target_sum:g}; clip {norm.scale_clip}.</p>"
        )
        return self._section("normalize", "Normalization and variable genes", body)

    def _reduce_section(self, session: AnalysisSession, fig_dir: Path, report_dir: Path) -> str:
        red = session.reduction
        if red is None:
            return self._section("reduce", "Principal components", _missing_html("PCA did not run."))
        path = plots.plot_pca_elbow(red, fig_dir / "pca_elbow.png", self.config.dpi)
        body = (
            _figure_html(path, report_dir, "PCA elbow plot")
            + f'<p class="note">{red.n_pcs} PCs explain {red.cumulative_variance:.1%} of the '
            f"variance of the scaled variable genes.</p>"
        )
        return self._section("reduce", "Principal components", body)

    def _cluster_section(self, session: AnalysisSession, fig_dir: Path, report_dir: Path) -> str:
        cl = session.clustering
        if cl is None:
            return self._section("cluster", "Clustering", _missing_html("Clustering did not run."))
        from ..annotation import AnnotationEngine

        dpi = self.config.dpi
        body = [
            _figure_html(
                plots.plot_embedding(
                    session.adata, cl.cluster_key, fig_dir / "embedding_clusters.png",
                    title=f"Clusters (resolution {cl.resolution})", dpi=dpi,
                ),
                report_dir,
                "Cells colored by cluster",
            )
        ]
        if session.annotation is not None:
            body.append(f'<p class="interpretation">{_escape(INTERPRETATION["annotate"])}</p>')
            body.append(_figure_html(
                plots.plot_embedding(
                    session.adata, session.annotation.label_col, fig_dir / "embedding_cell_types.png",
                    colors=self.colors, title="Cell types", dpi=dpi,
                ),
                report_dir,
                "Cells colored by assigned cell type",
            ))
        body.append(_table_html(
            AnnotationEngine.cluster_summary(session, n_top=self.config.n_dotplot_genes),
            self.config.max_table_rows,
        ))
        return self._section("cluster", "Clustering and annotation", "".join(body))

    def _marker_section(self, session: AnalysisSession, fig_dir: Path, report_dir: Path) -> str:
        mk = session.markers
        if mk is None:
            return self._section("markers", "Marker genes", _missing_html("Marker discovery did not run."))
        cfg = self.config
        key = session.clustering.cluster_key
        body = []

        dotplot = plots.plot_marker_dotplot(
            session.adata, mk.top_markers(cfg.n_dotplot_genes), key, fig_dir / "marker_dotplot.png", cfg.dpi
        )
        body.append(_figure_html(dotplot, report_dir, "Top markers per cluster"))

        violin_genes: List[str] = []
        for genes in mk.top_markers(cfg.n_violin_genes).values():
            violin_genes.extend(genes)
        violins = plots.plot_marker_violins(
            session.adata, violin_genes, key, fig_dir / "marker_violins.png", cfg.dpi
        )
        body.append(_figure_html(violins, report_dir, "Expression of top markers by cluster"))

        empty = mk.clusters_without_markers()
        if empty:
            body.append(_missing_html(
                f"No significant markers for cluster(s): {', '.join(empty)}"
            ))
        body.append(_table_html(mk.significant(), cfg.max_table_rows))
        return self._section("markers", "Marker genes", "".join(body))

    def _enrich_section(
        self,
        session: AnalysisSession,
        failures: Dict[str, Dict[str, Any]],
        fig_dir: Path,
        report_dir: Path,
    ) -> str:
        en = session.enrichment
        if en is None:
            err = failures.get("enrich")
            reason = err.get("message", "") if err else "enrichment did not run"
            return self._section("enrich", "Gene-set enrichment", _missing_html(f"Missing result: {reason}"))

        body = []
        heading = f"{en.cell_type} (clusters {', '.join(en.clusters)})" if en.cell_type else "submitted genes"
        body.append(f'<p class="note">{len(en.genes)} marker genes of {_escape(heading)} submitted.</p>')
        body.append(_figure_html(
            plots.plot_enrichment(en, fig_dir / "enrichment.png", self.config.dpi),
            report_dir,
            "Top terms per library",
        ))
        for library in en.libraries:
            body.append(f"<h3>{_escape(library)}</h3>")
            if library in en.failed:
                body.append(_missing_html(f"Missing result: {en.failed[library]}"))
                continue
            table = en.tables.get(library)
            body.append(_table_html(
                table[["rank", "term", "pval_adj", "combined_score", "n_overlap"]] if table is not None else None,
                en.top_n,
            ))
        return self._section("enrich", "Gene-set enrichment", "".join(body))

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(
        self,
        session: AnalysisSession,
        output_dir: Union[str, Path],
        failures: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> Path:
        """Write figures, tables and ``report.html`` to ``output_dir``.

        Parameters
        ----------
        session : AnalysisSession
            Snapshot to render; any stage may be missing
        output_dir : Path
            Report directory
        failures : Dict[str, Dict[str, Any]], optional
            Stage id -> error dict for recoverable failures

        Returns
        -------
        Path
            Path to ``report.html``
        """
        failures = failures or {}
        report_dir = ensure_output_dir(output_dir)
        fig_dir = ensure_output_dir(report_dir / self.config.figures_dir)

        sections = [
            self._qc_section(session, fig_dir, report_dir),
            self._normalize_section(session, fig_dir, report_dir),
            self._reduce_section(session, fig_dir, report_dir),
            self._cluster_section(session, fig_dir, report_dir),
            self._marker_section(session, fig_dir, report_dir),
            self._enrich_section(session, failures, fig_dir, report_dir),
        ]

        document = f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{_escape(self.config.title)}</title>
    {REPORT_CSS}
</head>
<body>
    {self._header(session)}
    {self._failures(failures)}
    {"".join(sections)}
</body>
</html>
"""
        output_path = report_dir / "report.html"
        output_path.write_text(document, encoding="utf-8")

        if self.config.export_tables:
            export_session_tables(session, report_dir / "tables")
            write_run_manifest(
                report_dir / "run_manifest.json",
                session,
                config=self.run_config,
                failures=failures,
                logger=self.logger,
            )

        self.logger.info("Report written: %s", output_path)
        return output_path

    def run(
        self,
        session: AnalysisSession,
        output_dir: Union[str, Path],
        failures: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> AnalysisSession:
        """Render the report and return the next snapshot."""
        session.require("ingest", for_stage="report")
        path = self.build(session, output_dir, failures)
        return session.advance("report", None, path)
