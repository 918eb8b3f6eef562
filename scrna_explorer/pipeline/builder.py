"""Default nine-stage pipeline wiring."""

from pathlib import Path
from typing import Optional, Union

import requests

from ..config.analysis import AnalysisConfig
from ..config.cell_types import CellTypeMap
from ..core.annotation import AnnotationEngine
from ..core.clustering import ClusteringEngine, MarkerFinder
from ..core.enrichment import EnrichmentEngine, EnrichrClient
from ..core.preprocessing import CellQC, DataLoader, Normalizer
from ..core.report import ReportBuilder
from ..core.session import STAGE_ORDER
from .executor import SessionPipeline
from .logger import PipelineLogger


def build_default_pipeline(
    config: Optional[AnalysisConfig] = None,
    cell_type_map: Optional[CellTypeMap] = None,
    *,
    output_dir: Optional[Union[str, Path]] = None,
    enrichr_session: Optional[requests.Session] = None,
    logger: Optional[PipelineLogger] = None,
    include_report: bool = True,
    until: Optional[str] = None,
) -> SessionPipeline:
    """Wire ingest -> qc -> normalize -> reduce -> cluster -> markers ->
    annotate -> enrich -> report.

    Parameters
    ----------
    config : AnalysisConfig, optional
        Stage settings; defaults if None
    cell_type_map : CellTypeMap, optional
        Cluster -> cell-type table. Loaded from ``config.cell_types_path`` if
        None; the annotate stage fails with ``AnnotationError`` if neither
        is available.
    output_dir : Path, optional
        Report directory root. Uses ``config.output_dir`` if None.
    enrichr_session : requests.Session, optional
        HTTP session for Enrichr (inject a fake one in tests)
    logger : PipelineLogger, optional
        Pipeline logger
    include_report : bool
        Register the report stage
    until : str, optional
        Last stage to register (e.g. "cluster" for an unannotated run)

    Returns
    -------
    SessionPipeline
        Pipeline to run with ``pipeline.run(source=path)``
    """
    config = config or AnalysisConfig.default()
    config.validate()
    if cell_type_map is None and config.cell_types_path:
        cell_type_map = CellTypeMap.from_yaml(config.cell_types_path)
    output_dir = Path(output_dir or config.output_dir)

    pre = config.preprocessing
    counts_layer = pre.loader.counts_layer
    loader = DataLoader(pre.loader)
    qc = CellQC(pre.qc, counts_layer=counts_layer)
    normalizer = Normalizer(pre.normalization, counts_layer=counts_layer)
    clustering = ClusteringEngine(config.analysis)
    markers = MarkerFinder(config.analysis)
    annotator = AnnotationEngine(label_col=config.label_col)
    enrichment = EnrichmentEngine(
        config.enrichment, client=EnrichrClient(config.enrichment, session=enrichr_session)
    )

    def _ingest(session, source=None, **_):
        if source is None:
            raise ValueError("pipeline.run() needs source=<matrix directory or .h5ad>")
        return loader.ingest(source)

    def _annotate(session, **_):
        return annotator.run(session, cell_type_map if cell_type_map is not None else {})

    def _enrich(session, **_):
        cell_type = config.enrichment.query_cell_type
        if cell_type is None and cell_type_map is not None:
            cell_type = cell_type_map.query_cell_type
        return enrichment.run_session(session, cell_type)

    pipeline = SessionPipeline(logger=logger)
    pipeline.register_stage("ingest", _ingest, name="Load 10x matrix")
    pipeline.register_stage(
        "qc", lambda s, **_: qc.run(s), depends_on=["ingest"], name="Cell QC"
    )
    pipeline.register_stage(
        "normalize", lambda s, **_: normalizer.run(s), depends_on=["qc"],
        name="Normalization and HVG selection",
    )
    pipeline.register_stage(
        "reduce", lambda s, **_: clustering.reduce(s), depends_on=["normalize"], name="PCA"
    )
    pipeline.register_stage(
        "cluster", lambda s, **_: clustering.cluster(s), depends_on=["reduce"],
        name="Neighbor graph, Leiden and UMAP",
    )
    pipeline.register_stage(
        "markers", lambda s, **_: markers.run(s), depends_on=["cluster"], name="Marker genes"
    )
    pipeline.register_stage(
        "annotate", _annotate, depends_on=["markers"], name="Cell-type annotation"
    )
    pipeline.register_stage(
        "enrich", _enrich, depends_on=["annotate"], name="Enrichr lookup", recoverable=True
    )

    if include_report:
        builder = ReportBuilder(
            config.report,
            colors=cell_type_map.colors if cell_type_map is not None else None,
            run_config=config.to_dict(),
        )

        def _report(session, failures=None, **_):
            return builder.run(session, output_dir / "report", failures=failures)

        pipeline.register_stage("report", _report, depends_on=["enrich"], name="HTML report")

    if until is not None:
        keep = STAGE_ORDER[: STAGE_ORDER.index(until) + 1]
        for stage_id in [s for s in pipeline.stages if s not in keep]:
            del pipeline.stages[stage_id]

    return pipeline
