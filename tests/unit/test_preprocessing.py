"""Unit tests for preprocessing module (ingestion, QC, normalization)."""

import gzip

import numpy as np
import pandas as pd
import pytest
from scipy import sparse

from scrna_explorer.core.preprocessing import (
    CellQC,
    DataLoader,
    LoaderConfig,
    NormalizationConfig,
    Normalizer,
    PreprocessingConfig,
    QCConfig,
)
from scrna_explorer.core.session import AnalysisSession
from scrna_explorer.errors import IngestionError, QCError, StageOrderError
from tests.fixtures import write_10x_dir


def _session_from_cells(cells, genes=("mt-Co1", "GeneA", "GeneB")):
    """Ingested session from per-cell count rows (cells x genes)."""
    counts = np.asarray(cells, dtype=np.int64).T
    barcodes = [f"C{i}" for i in range(counts.shape[1])]
    adata, result = DataLoader().from_counts(counts, list(genes), barcodes)
    return AnalysisSession(adata=adata).advance("ingest", adata, result)


class TestPreprocessingConfig:
    """Tests for preprocessing configuration classes."""

    def test_qc_defaults(self):
        """Test QC defaults match the heart dataset thresholds."""
        config = QCConfig()
        assert config.max_total_counts == 20000
        assert config.max_genes_by_counts == 4000
        assert config.max_pct_mt == 15.0
        assert config.mt_prefix == "mt-"
        assert config.validate() == []

    def test_qc_validate(self):
        """Test invalid thresholds are reported."""
        errors = QCConfig(max_total_counts=0, max_pct_mt=150).validate()
        assert len(errors) == 2

    def test_invalid_config_rejected_by_engine(self):
        """Test CellQC refuses an invalid configuration."""
        with pytest.raises(ValueError, match="Invalid QC configuration"):
            CellQC(QCConfig(max_genes_by_counts=-1))

    def test_from_yaml_nested(self, tmp_path):
        """Test loading from a YAML file with a preprocessing section."""
        import yaml

        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({
            "preprocessing": {
                "qc": {"max_pct_mt": 10.0},
                "normalization": {"n_top_genes": 500},
            }
        }))
        config = PreprocessingConfig.from_yaml(path)
        assert config.qc.max_pct_mt == 10.0
        assert config.qc.max_total_counts == 20000
        assert config.normalization.n_top_genes == 500
        assert config.to_dict()["normalization"]["n_top_genes"] == 500


class TestDataLoader:
    """Tests for DataLoader class."""

    def test_load_v3_directory(self, tenx_dir):
        """Test loading a gzipped 10x v3 directory."""
        adata, result = DataLoader().load_10x_dir(tenx_dir)
        assert adata.shape == (200, 100)
        assert result.layout == "v3"
        assert result.n_cells == 200
        assert result.n_genes == 100
        assert "counts" in adata.layers
        assert "Pop0_Marker0" in adata.var_names

    def test_load_legacy_directory(self, tmp_path, synthetic_counts):
        """Test loading the uncompressed genes.tsv layout."""
        path = write_10x_dir(
            tmp_path / "legacy",
            synthetic_counts["counts"],
            synthetic_counts["genes"],
            synthetic_counts["barcodes"],
            layout="legacy",
        )
        adata, result = DataLoader().load_10x_dir(path)
        assert result.layout == "legacy"
        assert adata.n_obs == 200

    def test_counts_preserved(self, tenx_dir, synthetic_counts):
        """Test loaded counts equal the written matrix."""
        adata, _ = DataLoader().load_10x_dir(tenx_dir)
        X = adata.layers["counts"]
        X = X.toarray() if sparse.issparse(X) else X
        np.testing.assert_array_equal(X, synthetic_counts["counts"].T)

    def test_missing_directory(self, tmp_path):
        """Test a missing directory raises IngestionError."""
        with pytest.raises(IngestionError):
            DataLoader().load_10x_dir(tmp_path / "does_not_exist")

    def test_missing_file(self, tenx_dir):
        """Test a directory without barcodes raises IngestionError."""
        (tenx_dir / "barcodes.tsv.gz").unlink()
        with pytest.raises(IngestionError):
            DataLoader().load_10x_dir(tenx_dir)

    def test_dimension_mismatch(self, tenx_dir):
        """Test an extra barcode line is detected before loading."""
        with gzip.open(tenx_dir / "barcodes.tsv.gz", "at") as handle:
            handle.write("EXTRA-1\n")
        with pytest.raises(IngestionError, match="dimensions"):
            DataLoader().load_10x_dir(tenx_dir)

    def test_from_counts_shape_mismatch(self):
        """Test in-memory counts must match the gene and barcode lists."""
        with pytest.raises(IngestionError):
            DataLoader().from_counts(np.ones((3, 2)), ["a", "b"], ["c1", "c2"])

    def test_duplicate_genes_made_unique(self):
        """Test duplicate symbols are suffixed when make_unique is set."""
        adata, result = DataLoader().from_counts(
            np.ones((3, 2), dtype=int), ["Gene", "Gene", "Other"], ["c1", "c2"]
        )
        assert adata.var_names.is_unique
        assert result.n_duplicate_genes >= 1

    def test_duplicate_genes_rejected(self):
        """Test duplicate symbols are an error when make_unique is off."""
        loader = DataLoader(LoaderConfig(make_unique=False))
        with pytest.raises(IngestionError):
            loader.from_counts(np.ones((2, 2), dtype=int), ["Gene", "Gene"], ["c1", "c2"])

    def test_negative_counts_rejected(self):
        """Test negative values are an error."""
        with pytest.raises(IngestionError, match="negative"):
            DataLoader().from_counts(np.array([[1, -1], [0, 2]]), ["a", "b"], ["c1", "c2"])

    def test_load_h5ad_counts(self, tmp_path, synthetic_adata):
        """Test a raw-count .h5ad file is an accepted input."""
        path = tmp_path / "counts.h5ad"
        synthetic_adata.write_h5ad(path)
        session = DataLoader().ingest(path)
        assert session.load.layout == "h5ad"
        assert session.n_cells == 200
        assert "counts" in session.adata.layers

    def test_load_h5ad_processed_rejected(self, tmp_path, synthetic_adata):
        """Test a processed AnnData file is not accepted as counts."""
        synthetic_adata.obsm["X_pca"] = np.zeros((synthetic_adata.n_obs, 2))
        path = tmp_path / "processed.h5ad"
        synthetic_adata.write_h5ad(path)
        with pytest.raises(IngestionError, match="processed"):
            DataLoader().load_h5ad(path)

    def test_ingest_starts_session(self, tenx_dir):
        """Test ingest returns the first snapshot."""
        session = DataLoader().ingest(tenx_dir)
        assert session.completed_stages == ("ingest",)
        assert session.n_cells == 200
        assert session.load.status == "OK"


class TestCellQC:
    """Tests for CellQC class."""

    def test_thresholds_are_strict(self):
        """Test cells at a threshold are removed and cells just below are kept."""
        session = _session_from_cells([
            [0, 19999, 0],   # kept: total just below
            [0, 20000, 0],   # removed: total at threshold
            [15, 85, 0],     # removed: mt exactly 15%
            [14, 86, 0],     # kept: mt 14%
        ])
        result_session = CellQC().run(session)
        qc = result_session.qc

        assert list(result_session.adata.obs_names) == ["C0", "C3"]
        assert qc.cells_removed == 2
        assert qc.reason_counts["high_counts"] == 1
        assert qc.reason_counts["high_mt"] == 1
        assert qc.reason_counts["high_genes"] == 0

    def test_gene_threshold(self):
        """Test the detected-genes threshold uses >= for removal."""
        session = _session_from_cells([[0, 5, 0], [0, 5, 5], [1, 5, 5]])
        result = CellQC(QCConfig(max_genes_by_counts=2)).run(session)
        assert list(result.adata.obs_names) == ["C0"]
        assert result.qc.reason_counts["high_genes"] == 2

    def test_removal_records(self):
        """Test removed cells are listed with their reasons."""
        session = _session_from_cells([[0, 10, 0], [0, 30000, 0]])
        qc = CellQC().run(session).qc
        frame = qc.removal_frame()
        assert list(frame["cell_id"]) == ["C1"]
        assert frame.iloc[0]["reasons"] == "high_counts"
        assert qc.metrics_before.shape[0] == 2

    def test_zero_cells_retained(self):
        """Test QCError when no cell passes."""
        session = _session_from_cells([[50, 50, 0], [90, 10, 0]])
        with pytest.raises(QCError, match="No cells passed QC"):
            CellQC().run(session)

    def test_synthetic_data_all_pass(self, synthetic_adata):
        """Test the low-depth synthetic cells pass the default thresholds."""
        session = AnalysisSession(adata=synthetic_adata).advance("ingest", synthetic_adata)
        result = CellQC().run(session)
        assert result.qc.cells_retained == 200
        assert result.qc.n_mt_genes == 2

    def test_snapshot_not_modified(self):
        """Test QC leaves the input snapshot untouched."""
        session = _session_from_cells([[0, 10, 0], [0, 30000, 0]])
        CellQC().run(session)
        assert session.n_cells == 2
        assert "total_counts" not in session.adata.obs
        assert session.qc is None

    def test_requires_ingest(self, synthetic_adata):
        """Test QC refuses a snapshot without the ingest stage."""
        with pytest.raises(StageOrderError):
            CellQC().run(AnalysisSession(adata=synthetic_adata))

    def test_qc_twice_rejected(self):
        """Test QC refuses an already filtered snapshot."""
        session = CellQC().run(_session_from_cells([[0, 10, 0], [0, 12, 1]]))
        with pytest.raises(StageOrderError):
            CellQC().run(session)

    def test_min_cells_gene_filter(self):
        """Test optional gene filter drops genes seen in too few cells."""
        session = _session_from_cells([[0, 10, 0], [0, 12, 1], [0, 8, 0]])
        result = CellQC(QCConfig(min_cells=2)).run(session)
        assert list(result.adata.var_names) == ["GeneA"]
        assert result.qc.genes_removed == 2


class TestNormalizer:
    """Tests for Normalizer class."""

    @pytest.fixture
    def qc_session(self, synthetic_adata):
        session = AnalysisSession(adata=synthetic_adata).advance("ingest", synthetic_adata)
        return CellQC().run(session)

    def test_normalize_all_genes(self, qc_session):
        """Test HVG count is capped by the number of genes."""
        session = Normalizer().run(qc_session)
        norm = session.normalization
        assert norm.n_hvg == 100
        assert norm.n_genes_in == 100
        assert session.adata.raw is not None
        assert session.adata.raw.n_vars == 100

    def test_hvg_subset(self, qc_session):
        """Test X holds only the HVGs while raw keeps every gene."""
        session = Normalizer(NormalizationConfig(n_top_genes=20)).run(qc_session)
        assert session.adata.n_vars == 20
        assert session.adata.raw.n_vars == 100
        assert list(session.adata.var_names) == session.normalization.hvg_genes

    def test_planted_markers_are_variable(self, qc_session):
        """Test the top HVGs are dominated by planted markers."""
        session = Normalizer(NormalizationConfig(n_top_genes=60)).run(qc_session)
        markers = [g for g in session.normalization.hvg_genes if "_Marker" in g]
        assert len(markers) >= 50

    def test_log_normalized_layer(self, qc_session):
        """Test every cell sums to target_sum before log1p."""
        session = Normalizer().run(qc_session)
        lognorm = session.adata.raw.X
        lognorm = lognorm.toarray() if sparse.issparse(lognorm) else lognorm
        np.testing.assert_allclose(np.expm1(lognorm).sum(axis=1), 1e4, rtol=1e-3)

    def test_scaled_and_clipped(self, qc_session):
        """Test every selected gene is centered with unit variance, and clipping."""
        session = Normalizer(NormalizationConfig(scale_clip=1.0)).run(qc_session)
        X = np.asarray(session.adata.X)
        assert X.max() <= 1.0 + 1e-6
        assert session.normalization.scale_clip == 1.0

        unclipped = Normalizer().run(qc_session)
        assert unclipped.normalization.max_abs_mean < 1e-4
        assert unclipped.normalization.mean_variance == pytest.approx(1.0, rel=0.05)

        scaled = np.asarray(unclipped.adata.X)
        np.testing.assert_allclose(scaled.mean(axis=0), 0.0, atol=1e-4)
        np.testing.assert_allclose(scaled.var(axis=0, ddof=1), 1.0, atol=1e-3)

    def test_gene_stats_recorded(self, qc_session):
        """Test per-gene HVG statistics are kept for reporting."""
        stats = Normalizer().run(qc_session).normalization.gene_stats
        assert "highly_variable" in stats.columns
        assert len(stats) == 100

    def test_requires_qc(self, synthetic_adata):
        """Test normalization refuses an un-QC'd snapshot."""
        session = AnalysisSession(adata=synthetic_adata).advance("ingest", synthetic_adata)
        with pytest.raises(StageOrderError):
            Normalizer().run(session)

    def test_normalize_twice_rejected(self, qc_session):
        """Test normalization refuses an already scaled snapshot."""
        session = Normalizer().run(qc_session)
        with pytest.raises(StageOrderError):
            Normalizer().run(session)

    def test_too_few_cells(self):
        """Test a single cell cannot be normalized."""
        session = CellQC().run(_session_from_cells([[0, 10, 3]]))
        with pytest.raises(QCError):
            Normalizer().run(session)
