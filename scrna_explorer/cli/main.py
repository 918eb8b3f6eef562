"""Command-line interface for scRNA-Explorer.

Provides CLI commands for the full pipeline and for its individual steps.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("scrna_explorer")


def _load_config(config: Optional[str]):
    from scrna_explorer.config import AnalysisConfig

    return AnalysisConfig.from_yaml(Path(config)) if config else AnalysisConfig.default()


def _fail(error: Exception) -> None:
    """Print an analysis error and exit non-zero."""
    click.echo(str(error), err=True)
    sys.exit(1)


@click.group()
@click.version_option(version="1.0.0", prog_name="scrna-explorer")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """scRNA-Explorer: exploratory single-cell RNA-seq analysis.

    Loads a 10x count matrix, filters cells, normalizes, clusters, finds
    marker genes, applies a manual cell-type table, queries Enrichr and
    renders a static HTML report.

    Examples:

        # Full pipeline
        scrna-explorer run -i filtered_feature_bc_matrix/ -t cell_types.yaml -o out/

        # QC only, to choose thresholds
        scrna-explorer qc -i filtered_feature_bc_matrix/ -o qc/

        # Cluster and inspect markers before writing the cell-type table
        scrna-explorer cluster -i filtered_feature_bc_matrix/ -o clustered/

        # Enrichment for a gene list
        scrna-explorer enrich -g genes.txt -o enrich/
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="10x matrix directory or .h5ad file")
@click.option("--out", "-o", "output_path", type=click.Path(),
              help="Output directory (default: output_dir from config)")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Analysis configuration file (YAML)")
@click.option("--cell-types", "-t", type=click.Path(exists=True),
              help="Cluster -> cell-type table (YAML); overrides the config")
@click.option("--seed", type=int, help="Random seed for PCA, Leiden and UMAP")
@click.option("--resolution", type=float, help="Leiden resolution")
@click.option("--no-report", is_flag=True, help="Skip the HTML report")
@click.pass_context
def run(
    ctx: click.Context,
    input_path: str,
    output_path: Optional[str],
    config: Optional[str],
    cell_types: Optional[str],
    seed: Optional[int],
    resolution: Optional[float],
    no_report: bool,
) -> None:
    """Run the full pipeline: ingest through report."""
    from scrna_explorer.config import CellTypeMap
    from scrna_explorer.errors import ScrnaExplorerError
    from scrna_explorer.pipeline import PipelineLogger, build_default_pipeline

    cfg = _load_config(config)
    if seed is not None:
        cfg.analysis.clustering.random_seed = seed
    if resolution is not None:
        cfg.analysis.clustering.resolution = resolution
    out_dir = Path(output_path or cfg.output_dir)

    level = "DEBUG" if ctx.obj["debug"] else ("INFO" if ctx.obj["verbose"] else cfg.log_level)
    pipeline_logger = PipelineLogger(str(out_dir / "logs"), log_level=level)
    pipeline_logger.setup()

    try:
        table = CellTypeMap.from_yaml(Path(cell_types)) if cell_types else None
        pipeline = build_default_pipeline(
            cfg, table, output_dir=out_dir, logger=pipeline_logger, include_report=not no_report
        )
        session = pipeline.run(source=input_path)
    except (ScrnaExplorerError, ValueError) as e:
        _fail(e)
        return

    click.echo(f"Pipeline completed: {', '.join(session.completed_stages)}")
    click.echo(f"Clusters: {session.clustering.n_clusters}")
    for stage_id, error in pipeline.failures.items():
        click.echo(f"Missing result for {stage_id}: {error['message']}", err=True)
    if session.report_path is not None:
        click.echo(f"Report: {session.report_path}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="10x matrix directory or .h5ad file")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Analysis configuration file (YAML)")
@click.pass_context
def qc(ctx: click.Context, input_path: str, output_path: str, config: Optional[str]) -> None:
    """Load the matrix, apply cell QC and write QC tables and plots."""
    logger = ctx.obj["logger"]

    from scrna_explorer.core.preprocessing import CellQC, DataLoader
    from scrna_explorer.core.report import plot_qc_scatter, plot_qc_violins
    from scrna_explorer.errors import ScrnaExplorerError
    from scrna_explorer.io import export_session_tables

    cfg = _load_config(config)
    pre = cfg.preprocessing
    out_dir = Path(output_path)

    try:
        session = DataLoader(pre.loader, logger).ingest(input_path)
        session = CellQC(pre.qc, logger, counts_layer=pre.loader.counts_layer).run(session)
    except (ScrnaExplorerError, ValueError) as e:
        _fail(e)
        return

    export_session_tables(session, out_dir)
    plot_qc_violins(session.qc, out_dir / "qc_violins.png", dpi=cfg.report.dpi)
    plot_qc_scatter(session.qc, out_dir / "qc_scatter.png", dpi=cfg.report.dpi)

    result = session.qc
    click.echo(
        f"QC complete: {result.cells_retained}/{result.cells_total} cells retained "
        f"({result.removal_fraction:.1%} removed)"
    )
    for reason, count in result.reason_counts.items():
        click.echo(f"  {reason}: {count}")
    click.echo(f"Output saved to: {out_dir}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="10x matrix directory or .h5ad file")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Analysis configuration file (YAML)")
@click.option("--resolution", type=float, help="Leiden resolution")
@click.option("--n-pcs", type=int, help="Number of principal components")
@click.option("--seed", type=int, help="Random seed")
@click.option("--markers/--no-markers", default=True, help="Also find marker genes")
@click.pass_context
def cluster(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    resolution: Optional[float],
    n_pcs: Optional[int],
    seed: Optional[int],
    markers: bool,
) -> None:
    """Run ingest through clustering and write clustered.h5ad.

    Use the cluster sizes and marker table to write the cell-type table
    for ``run``.
    """
    from scrna_explorer.errors import ScrnaExplorerError
    from scrna_explorer.io import export_session_tables
    from scrna_explorer.pipeline import build_default_pipeline

    cfg = _load_config(config)
    clustering = cfg.analysis.clustering
    if resolution is not None:
        clustering.resolution = resolution
    if n_pcs is not None:
        clustering.n_pcs = n_pcs
    if seed is not None:
        clustering.random_seed = seed

    out_dir = Path(output_path)
    out_dir.mkdir(parents=True, exist_ok=True)

    try:
        pipeline = build_default_pipeline(cfg, until="markers" if markers else "cluster")
        session = pipeline.run(source=input_path)
    except (ScrnaExplorerError, ValueError) as e:
        _fail(e)
        return

    output_file = out_dir / "clustered.h5ad"
    session.adata.write_h5ad(output_file)
    export_session_tables(session, out_dir)

    click.echo(f"Clustering complete: {session.clustering.n_clusters} clusters")
    for cluster_id, size in session.clustering.cluster_sizes.items():
        click.echo(f"  {cluster_id}: {size} cells")
    click.echo(f"Output saved to: {output_file}")


@cli.command()
@click.option("--genes", "-g", "genes_path", required=True, type=click.Path(exists=True),
              help="Gene list file (one symbol per line)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Analysis configuration file (YAML)")
@click.option("--library", "-l", "libraries", multiple=True,
              help="Enrichr library (repeatable; default: configured libraries)")
@click.option("--top-n", type=int, help="Terms kept per library")
@click.pass_context
def enrich(
    ctx: click.Context,
    genes_path: str,
    output_path: str,
    config: Optional[str],
    libraries: Tuple[str, ...],
    top_n: Optional[int],
) -> None:
    """Query Enrichr for a gene list and write the top terms."""
    logger = ctx.obj["logger"]

    from scrna_explorer.core.enrichment import EnrichmentEngine
    from scrna_explorer.core.report import plot_enrichment
    from scrna_explorer.errors import EnrichmentError
    from scrna_explorer.io import read_gene_list, write_dataframe

    cfg = _load_config(config)
    if top_n is not None:
        cfg.enrichment.top_n = top_n

    genes = read_gene_list(genes_path)
    engine = EnrichmentEngine(cfg.enrichment, logger=logger)
    try:
        result = engine.run(genes, libraries=list(libraries) or None)
    except EnrichmentError as e:
        _fail(e)
        return

    out_dir = Path(output_path)
    write_dataframe(result.combined(), out_dir / "enrichment_top_terms.csv")
    plot_enrichment(result, out_dir / "enrichment.png", dpi=cfg.report.dpi)

    click.echo(f"Enrichment for {len(result.genes)} genes:")
    for library in result.libraries:
        if library in result.failed:
            click.echo(f"  {library}: missing ({result.failed[library]})", err=True)
        else:
            click.echo(f"  {library}: {result.top_term(library)}")
    click.echo(f"Output saved to: {out_dir}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
