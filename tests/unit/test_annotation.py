"""Unit tests for manual cell-type annotation."""

import logging
from pathlib import Path

import pytest
import yaml

from scrna_explorer.config import CellTypeMap
from scrna_explorer.core.annotation import AnnotationEngine, AnnotationResult
from scrna_explorer.errors import AnnotationError, StageOrderError

CONFIG_DIR = Path(__file__).resolve().parents[2] / "configs"


class TestCellTypeMap:
    """Tests for CellTypeMap."""

    def test_keys_are_strings(self):
        """Test integer cluster ids are normalized to strings."""
        table = CellTypeMap({0: "Cardiomyocytes", 1: " Fibroblasts "})
        assert table.get("0") == "Cardiomyocytes"
        assert table.get(1) == "Fibroblasts"
        assert table.get("9") is None

    def test_empty_name_rejected(self):
        """Test blank cell-type names are rejected."""
        with pytest.raises(ValueError):
            CellTypeMap({"0": ""})

    def test_cell_types_and_clusters(self):
        """Test reverse lookup and distinct names."""
        table = CellTypeMap({"0": "CM", "1": "FB", "2": "CM"})
        assert table.cell_types == ["CM", "FB"]
        assert table.clusters_for("CM") == ["0", "2"]
        assert len(table) == 3

    def test_coverage(self):
        """Test missing and unused entries against observed clusters."""
        table = CellTypeMap({"0": "CM", "1": "FB", "7": "EC"})
        missing, unused = table.coverage(["0", "1", "2"])
        assert missing == ["2"]
        assert unused == ["7"]

    def test_from_dict_bare_mapping(self):
        """Test a plain mapping is accepted."""
        assert CellTypeMap.from_dict({"0": "CM"}).mapping == {"0": "CM"}

    def test_from_yaml(self, tmp_path):
        """Test YAML table with metadata."""
        path = tmp_path / "types.yaml"
        path.write_text(yaml.dump({
            "cell_types": {0: "CM", 1: "FB"},
            "colors": {"CM": "#d62728"},
            "query_cell_type": "CM",
        }))
        table = CellTypeMap.from_yaml(path)
        assert table.mapping == {"0": "CM", "1": "FB"}
        assert table.name == "types"
        assert table.query_cell_type == "CM"
        assert table.to_dict()["colors"] == {"CM": "#d62728"}

    def test_shipped_heart_table(self):
        """Test the bundled E18 heart table loads."""
        table = CellTypeMap.from_yaml(CONFIG_DIR / "e18_heart_cell_types.yaml")
        assert table.query_cell_type == "Cardiomyocytes"
        assert "Cardiomyocytes" in table.cell_types


class TestAnnotationEngine:
    """Tests for AnnotationEngine."""

    def test_labels_applied(self, annotated_session, true_cell_types):
        """Test every cell gets the cell type of its cluster."""
        obs = annotated_session.adata.obs
        expected = obs["leiden"].astype(str).map(true_cell_types)
        assert (obs["cell_type"].astype(str) == expected).all()
        assert obs["cell_type"].notna().all()

    def test_recovers_populations(self, annotated_session):
        """Test majority-vote labels match the planted populations."""
        obs = annotated_session.adata.obs
        assert (obs["cell_type"].astype(str) == obs["population"].astype(str)).all()

    def test_result(self, annotated_session):
        """Test result counts cover all cells."""
        result = annotated_session.annotation
        assert isinstance(result, AnnotationResult)
        assert sum(result.cell_type_counts.values()) == 200
        assert result.unused_keys == []
        assert len(result.mapping) == annotated_session.clustering.n_clusters

    def test_missing_cluster(self, marker_session, true_cell_types):
        """Test a partial table raises AnnotationError naming the gaps."""
        partial = dict(true_cell_types)
        partial.pop("0")
        with pytest.raises(AnnotationError) as exc_info:
            AnnotationEngine().run(marker_session, partial)
        assert exc_info.value.context["missing"] == ["0"]
        assert exc_info.value.error_code == "E400_ANNOTATION"

    def test_unused_entries_warned(self, marker_session, true_cell_types, caplog):
        """Test entries for unobserved clusters are ignored with a warning."""
        table = dict(true_cell_types, **{"99": "Ghost"})
        with caplog.at_level(logging.WARNING):
            session = AnnotationEngine().run(marker_session, table)
        assert session.annotation.unused_keys == ["99"]
        assert "99" not in session.annotation.mapping
        assert "unobserved clusters" in caplog.text

    def test_merged_cell_types(self, marker_session):
        """Test several clusters may share one cell type."""
        clusters = marker_session.clustering.cluster_ids
        table = {c: ("Big" if int(c) < 3 else "Small") for c in clusters}
        session = AnnotationEngine(label_col="broad").run(marker_session, table)
        assert list(session.adata.obs["broad"].cat.categories) == ["Big", "Small"]
        assert session.annotation.clusters_for("Big") == ["0", "1", "2"]

    def test_requires_cluster(self, synthetic_adata):
        """Test annotation refuses an unclustered snapshot."""
        from scrna_explorer.core.session import AnalysisSession

        session = AnalysisSession(adata=synthetic_adata).advance("ingest", synthetic_adata)
        with pytest.raises(StageOrderError):
            AnnotationEngine().run(session, {"0": "CM"})

    def test_cluster_summary(self, annotated_session):
        """Test the per-cluster table lists size, cell type and markers."""
        summary = AnnotationEngine.cluster_summary(annotated_session, n_top=3)
        assert list(summary.columns) == ["cluster", "cell_type", "n_cells", "top_markers"]
        assert summary["n_cells"].sum() == 200
        assert (summary["cell_type"] != "").all()
        first = summary.iloc[0]["top_markers"].split(", ")
        assert 1 <= len(first) <= 3
