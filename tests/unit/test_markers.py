"""Unit tests for one-vs-rest marker discovery."""

import pandas as pd
import pytest

from scrna_explorer.core.clustering import (
    MARKER_TABLE_COLUMNS,
    ClusterAnalysisConfig,
    MarkerFinder,
    MarkerResult,
    cluster_sort_key,
)
from scrna_explorer.core.session import AnalysisSession
from scrna_explorer.errors import StageOrderError
from tests.fixtures import create_synthetic_counts


def _true_markers() -> dict:
    return create_synthetic_counts()["markers"]


class TestClusterSortKey:
    """Tests for cluster ordering."""

    def test_numeric_order(self):
        """Test '10' sorts after '9'."""
        assert sorted(["10", "2", "9", "0"], key=cluster_sort_key) == ["0", "2", "9", "10"]

    def test_names_after_numbers(self):
        """Test non-numeric ids sort after numeric ones."""
        assert sorted(["b", "1", "a"], key=cluster_sort_key) == ["1", "a", "b"]


class TestMarkerResult:
    """Tests for MarkerResult helpers."""

    @pytest.fixture
    def result(self):
        table = pd.DataFrame(
            {
                "cluster": ["0", "0", "1", "1"],
                "gene": ["A", "B", "C", "A"],
                "logfoldchange": [2.0, 1.0, 3.0, 0.8],
                "pval": [1e-9, 0.01, 1e-8, 1e-4],
                "pval_adj": [1e-7, 0.2, 1e-6, 0.01],
                "pct_in": [0.9, 0.5, 0.8, 0.4],
                "pct_out": [0.1, 0.3, 0.1, 0.2],
                "score": [5.0, 1.0, 4.0, 2.0],
            }
        )
        return MarkerResult(table=table, clusters=["0", "1", "2"])

    def test_significant(self, result):
        """Test the adjusted p-value cutoff is applied."""
        assert list(result.significant()["gene"]) == ["A", "C", "A"]

    def test_genes_for(self, result):
        """Test gene lists are unique across clusters."""
        assert result.genes_for(["0", "1"]) == ["A", "C"]
        assert result.genes_for("0", significant_only=False) == ["A", "B"]

    def test_top_markers(self, result):
        """Test every tested cluster appears, even without markers."""
        assert result.top_markers(1) == {"0": ["A"], "1": ["C"], "2": []}

    def test_clusters_without_markers(self, result):
        """Test clusters with nothing significant are listed."""
        assert result.clusters_without_markers() == ["2"]

    def test_to_dict(self, result):
        """Test summary counts."""
        d = result.to_dict()
        assert d["n_markers"] == 4
        assert d["n_significant"] == 3
        assert d["significant_per_cluster"] == {"0": 1, "1": 2, "2": 0}


class TestMarkerFinder:
    """Tests for MarkerFinder on the synthetic populations."""

    def test_table_columns(self, marker_session):
        """Test the marker table has the expected columns."""
        assert list(marker_session.markers.table.columns) == MARKER_TABLE_COLUMNS

    def test_true_marker_per_cluster(self, marker_session, true_cell_types):
        """Test each cluster has a planted marker of its population."""
        markers = marker_session.markers
        planted = _true_markers()
        for cluster, population in true_cell_types.items():
            genes = set(markers.genes_for(cluster))
            assert genes & set(planted[population]), f"cluster {cluster} ({population})"

    def test_thresholds_respected(self, marker_session):
        """Test every reported marker passes min_pct, logFC and the cutoff."""
        significant = marker_session.markers.significant()
        assert len(significant) > 0
        assert (significant["pct_in"] >= 0.25).all()
        assert (significant["logfoldchange"] >= 0.5).all()
        assert (significant["pval_adj"] < 0.05).all()

    def test_bonferroni(self, marker_session):
        """Test adjusted p-values are raw p-values times genes tested, capped at 1."""
        markers = marker_session.markers
        table = markers.table
        expected = (table["pval"] * markers.n_genes_tested).clip(upper=1.0)
        pd.testing.assert_series_equal(
            table["pval_adj"], expected, check_names=False, check_dtype=False, rtol=1e-4
        )

    def test_tested_on_all_genes(self, marker_session):
        """Test markers are ranked on the full log-normalized matrix."""
        assert marker_session.markers.n_genes_tested == marker_session.adata.raw.n_vars

    def test_clusters_sorted(self, marker_session):
        """Test clusters are listed in numeric order."""
        clusters = marker_session.markers.clusters
        assert clusters == sorted(clusters, key=cluster_sort_key)
        assert len(clusters) == marker_session.clustering.n_clusters

    def test_stricter_logfc(self, marker_session):
        """Test raising min_logfc keeps a subset of markers."""
        config = ClusterAnalysisConfig.from_dict({"markers": {"min_logfc": 2.0}})
        strict = MarkerFinder(config).run(marker_session).markers
        assert (strict.table["logfoldchange"] >= 2.0).all()
        assert len(strict.table) <= len(marker_session.markers.table)

    def test_single_cluster_markers(self, marker_session):
        """Test markers for one cluster against all other cells."""
        result = MarkerFinder().find_cluster_markers(marker_session, "0")
        assert result.clusters == ["0"]
        assert set(result.table["cluster"]) <= {"0"}
        assert marker_session.has("markers")

    def test_one_cluster_is_empty(self, synthetic_adata):
        """Test a single cluster yields an empty result instead of an error."""
        adata = synthetic_adata.copy()
        adata.obs["leiden"] = pd.Categorical(["0"] * adata.n_obs)
        result = MarkerFinder().find_markers(adata, "leiden")
        assert result.table.empty
        assert result.clusters == ["0"]

    def test_requires_cluster(self, synthetic_adata):
        """Test marker discovery refuses an unclustered snapshot."""
        session = AnalysisSession(adata=synthetic_adata).advance("ingest", synthetic_adata)
        with pytest.raises(StageOrderError):
            MarkerFinder().run(session)
