"""End-to-end run on a synthetic 10x directory with a stubbed Enrichr."""

import json
import logging

import numpy as np
import pandas as pd
import pytest

from scrna_explorer.config import AnalysisConfig, CellTypeMap
from scrna_explorer.core.clustering import same_partition
from scrna_explorer.pipeline import build_default_pipeline
from tests.fixtures import TOP_TERMS, FakeEnrichrSession, majority_cell_type_map


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    package_logger = logging.getLogger("scrna_explorer")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True


@pytest.fixture
def config():
    cfg = AnalysisConfig.default()
    cfg.enrichment.retry_backoff = 0.0
    cfg.report.dpi = 60
    return cfg


@pytest.fixture
def clustered(tenx_dir, config):
    """Snapshot after markers, as an analyst sees it before annotating."""
    return build_default_pipeline(config, until="markers").run(source=tenx_dir)


@pytest.fixture
def populations(clustered, synthetic_counts):
    """Planted population of each loaded cell."""
    labels = pd.Series(synthetic_counts["labels"], index=synthetic_counts["barcodes"])
    return labels.loc[clustered.adata.obs_names]


@pytest.fixture
def cell_type_map(clustered, populations):
    mapping = majority_cell_type_map(clustered.adata.obs["leiden"], populations)
    return CellTypeMap(mapping, name="synthetic", query_cell_type="Pop0")


class TestEndToEnd:
    """Full pipeline: ingest -> report."""

    def test_recovers_planted_structure(self, clustered, populations, synthetic_counts):
        """Test six clusters, each with at least one of its planted markers."""
        assert clustered.n_cells == 200
        assert clustered.qc.cells_retained == 200
        assert clustered.clustering.n_clusters == 6
        assert same_partition(clustered.adata.obs["leiden"], populations)

        obs_pop = pd.Series(populations.to_numpy(), index=clustered.adata.obs_names)
        for cluster in clustered.clustering.cluster_ids:
            members = clustered.adata.obs["leiden"].astype(str) == cluster
            population = obs_pop[members].mode()[0]
            genes = set(clustered.markers.genes_for(cluster))
            assert genes & set(synthetic_counts["markers"][population]), cluster

    def test_same_seed_same_clusters(self, tenx_dir, config, clustered):
        """Test a rerun with the same seed reproduces the cluster labels."""
        rerun = build_default_pipeline(config, until="cluster").run(source=tenx_dir)
        np.testing.assert_array_equal(
            np.asarray(rerun.adata.obs["leiden"]), np.asarray(clustered.adata.obs["leiden"])
        )

    def test_annotate_enrich_report(self, clustered, cell_type_map, config, tmp_path):
        """Test resuming from the clustered snapshot through the report."""
        fake = FakeEnrichrSession()
        pipeline = build_default_pipeline(
            config, cell_type_map, output_dir=tmp_path, enrichr_session=fake
        )
        final = pipeline.run(clustered)

        assert final.completed_stages[-3:] == ("annotate", "enrich", "report")
        assert pipeline.failures == {}
        assert clustered.annotation is None

        enrichment = final.enrichment
        assert enrichment.cell_type == "Pop0"
        for library, term in TOP_TERMS.items():
            assert enrichment.top_term(library) == term
            assert len(enrichment.tables[library]) == 5
        assert any(g.startswith("Pop0_Marker") for g in fake.submitted[0])

        report_dir = tmp_path / "report"
        assert final.report_path == report_dir / "report.html"
        html = final.report_path.read_text()
        assert TOP_TERMS["KEGG_2019_Mouse"] in html
        assert "Missing result" not in html
        manifest = json.loads((report_dir / "run_manifest.json").read_text())
        assert manifest["session"]["annotate"]["mapping"] == cell_type_map.mapping

    def test_enrichr_down(self, clustered, cell_type_map, config, tmp_path):
        """Test an unreachable Enrichr still yields a report with a missing result."""
        fake = FakeEnrichrSession(fail_add_list=True)
        pipeline = build_default_pipeline(
            config, cell_type_map, output_dir=tmp_path, enrichr_session=fake
        )
        final = pipeline.run(clustered)

        assert final.enrichment is None
        assert "enrich" not in final.completed_stages
        assert final.has("report")
        assert pipeline.failures["enrich"]["error_code"] == "E500_ENRICHMENT"
        assert len(fake.calls) == 2

        html = final.report_path.read_text()
        assert "Missing result" in html
        assert "E500_ENRICHMENT" in html

    def test_stale_cell_type_table(self, clustered, config, tmp_path):
        """Test a table written for another clustering run stops the pipeline."""
        from scrna_explorer.errors import AnnotationError

        stale = CellTypeMap({"0": "Pop0", "1": "Pop1"})
        pipeline = build_default_pipeline(
            config, stale, output_dir=tmp_path, enrichr_session=FakeEnrichrSession()
        )
        with pytest.raises(AnnotationError):
            pipeline.run(clustered)
        assert not (tmp_path / "report").exists()
