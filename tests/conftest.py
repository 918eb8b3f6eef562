"""Pytest configuration and shared fixtures for scRNA-Explorer tests."""

import sys
from pathlib import Path

import pytest

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tests.fixtures import (
    FakeEnrichrSession,
    create_synthetic_adata,
    create_synthetic_counts,
    majority_cell_type_map,
    write_10x_dir,
)


# ============================================================================
# Synthetic Data Fixtures
# ============================================================================


@pytest.fixture
def synthetic_counts() -> dict:
    """100 genes x 200 cells, 6 populations with 10 planted markers each."""
    return create_synthetic_counts()


@pytest.fixture
def synthetic_adata():
    """Synthetic AnnData (cells x genes) with a counts layer."""
    return create_synthetic_adata()


@pytest.fixture
def tenx_dir(tmp_path: Path, synthetic_counts: dict) -> Path:
    """Synthetic data written as a gzipped 10x v3 directory."""
    return write_10x_dir(
        tmp_path / "filtered_feature_bc_matrix",
        synthetic_counts["counts"],
        synthetic_counts["genes"],
        synthetic_counts["barcodes"],
    )


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


# ============================================================================
# Session Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def marker_session():
    """Snapshot after ingest -> markers on the synthetic data.

    Session-scoped: snapshots are immutable and every stage works on a copy,
    so tests may share it.
    """
    from scrna_explorer.core.clustering import ClusteringEngine, MarkerFinder
    from scrna_explorer.core.preprocessing import CellQC, DataLoader, Normalizer
    from scrna_explorer.core.session import AnalysisSession

    data = create_synthetic_counts()
    adata, result = DataLoader().from_counts(data["counts"], data["genes"], data["barcodes"])
    adata.obs["population"] = data["labels"]

    session = AnalysisSession(adata=adata).advance("ingest", adata, result)
    session = CellQC().run(session)
    session = Normalizer().run(session)
    engine = ClusteringEngine()
    session = engine.cluster(engine.reduce(session))
    return MarkerFinder().run(session)


@pytest.fixture(scope="session")
def true_cell_types(marker_session) -> dict:
    """Cluster -> population name by majority vote."""
    obs = marker_session.adata.obs
    return majority_cell_type_map(obs["leiden"], obs["population"])


@pytest.fixture(scope="session")
def annotated_session(marker_session, true_cell_types):
    """Snapshot after annotation with the majority-vote table."""
    from scrna_explorer.core.annotation import AnnotationEngine

    return AnnotationEngine().run(marker_session, true_cell_types)


# ============================================================================
# Enrichment Fixtures
# ============================================================================


@pytest.fixture
def fake_enrichr() -> FakeEnrichrSession:
    """Enrichr stand-in that answers every library."""
    return FakeEnrichrSession()


@pytest.fixture
def enrichment_config():
    """Enrichment config with no retry delay."""
    from scrna_explorer.core.enrichment import EnrichmentConfig

    return EnrichmentConfig(retry_backoff=0.0, timeout=5.0)
