"""Unit tests for the command-line interface."""

import logging

import pandas as pd
import pytest
import yaml
from click.testing import CliRunner

from scrna_explorer.cli import cli
from tests.fixtures import TOP_TERMS, FakeEnrichrSession


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop handlers the run command attached to the package logger."""
    yield
    package_logger = logging.getLogger("scrna_explorer")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def fast_config(tmp_path):
    """Config file with no retry delay and low-resolution figures."""
    path = tmp_path / "analysis.yaml"
    path.write_text(yaml.dump({
        "enrichment": {"retry_backoff": 0.0},
        "report": {"dpi": 60},
    }))
    return path


@pytest.fixture
def patch_enrichr(monkeypatch):
    """Route Enrichr requests to a fake session."""
    def install(fake):
        monkeypatch.setattr(
            "scrna_explorer.core.enrichment.client.requests.Session", lambda: fake
        )
        return fake
    return install


class TestCli:
    """Tests for CLI commands."""

    def test_help(self, runner):
        """Test the group lists every command."""
        result = runner.invoke(cli, ["--help"], obj={})
        assert result.exit_code == 0
        for command in ("run", "qc", "cluster", "enrich"):
            assert command in result.output

    def test_qc(self, runner, tenx_dir, tmp_path):
        """Test QC writes tables and plots."""
        out = tmp_path / "qc"
        result = runner.invoke(cli, ["qc", "-i", str(tenx_dir), "-o", str(out)], obj={})
        assert result.exit_code == 0, result.output
        assert "200/200 cells retained" in result.output
        assert (out / "qc_summary.csv").is_file()
        assert (out / "qc_violins.png").is_file()

    def test_qc_missing_files(self, runner, tmp_path):
        """Test an incomplete directory exits with the ingestion error."""
        empty = tmp_path / "empty"
        empty.mkdir()
        result = runner.invoke(
            cli, ["qc", "-i", str(empty), "-o", str(tmp_path / "out")], obj={}
        )
        assert result.exit_code == 1
        assert "E100_INGESTION" in result.output

    def test_cluster(self, runner, tenx_dir, tmp_path):
        """Test clustering writes an h5ad and cluster tables."""
        out = tmp_path / "clustered"
        result = runner.invoke(cli, ["cluster", "-i", str(tenx_dir), "-o", str(out)], obj={})
        assert result.exit_code == 0, result.output
        assert "6 clusters" in result.output
        assert (out / "clustered.h5ad").is_file()
        summary = pd.read_csv(out / "cluster_summary.csv")
        assert len(summary) == 6
        assert (out / "markers_significant.csv").is_file()

    def test_enrich(self, runner, tmp_path, fast_config, patch_enrichr):
        """Test enrichment of a gene list file."""
        fake = patch_enrichr(FakeEnrichrSession())
        genes = tmp_path / "genes.txt"
        genes.write_text("Myh6\nTnnt2\nActc1\n")
        out = tmp_path / "enrich"

        result = runner.invoke(
            cli, ["enrich", "-g", str(genes), "-o", str(out), "-c", str(fast_config)], obj={}
        )
        assert result.exit_code == 0, result.output
        assert TOP_TERMS["KEGG_2019_Mouse"] in result.output
        assert fake.submitted == [["Myh6", "Tnnt2", "Actc1"]]
        table = pd.read_csv(out / "enrichment_top_terms.csv")
        assert len(table) == 15
        assert (out / "enrichment.png").is_file()

    def test_enrich_library_missing(self, runner, tmp_path, fast_config, patch_enrichr):
        """Test a failed library is reported while others succeed."""
        patch_enrichr(FakeEnrichrSession(fail_libraries=["KEGG_2019_Mouse"]))
        genes = tmp_path / "genes.txt"
        genes.write_text("Myh6\n")
        result = runner.invoke(
            cli,
            ["enrich", "-g", str(genes), "-o", str(tmp_path / "e"), "-c", str(fast_config),
             "--top-n", "2"],
            obj={},
        )
        assert result.exit_code == 0, result.output
        assert "KEGG_2019_Mouse: missing" in result.output
        assert len(pd.read_csv(tmp_path / "e" / "enrichment_top_terms.csv")) == 4

    def test_enrich_unreachable(self, runner, tmp_path, fast_config, patch_enrichr):
        """Test an unreachable service exits with the enrichment error."""
        patch_enrichr(FakeEnrichrSession(fail_add_list=True))
        genes = tmp_path / "genes.txt"
        genes.write_text("Myh6\n")
        result = runner.invoke(
            cli, ["enrich", "-g", str(genes), "-o", str(tmp_path / "e"), "-c", str(fast_config)],
            obj={},
        )
        assert result.exit_code == 1
        assert "E500_ENRICHMENT" in result.output

    def test_run(self, runner, tenx_dir, tmp_path, fast_config, patch_enrichr):
        """Test the full pipeline from the command line."""
        patch_enrichr(FakeEnrichrSession())
        table = tmp_path / "cell_types.yaml"
        table.write_text(yaml.dump({
            "cell_types": {str(i): f"Type{i}" for i in range(10)},
            "query_cell_type": "Type0",
        }))
        out = tmp_path / "run"

        result = runner.invoke(
            cli,
            ["run", "-i", str(tenx_dir), "-o", str(out), "-c", str(fast_config),
             "-t", str(table), "--seed", "0"],
            obj={},
        )
        assert result.exit_code == 0, result.output
        assert "Clusters: 6" in result.output
        assert (out / "report" / "report.html").is_file()
        assert (out / "report" / "run_manifest.json").is_file()
        assert list((out / "logs").glob("pipeline_*.log"))
        assert (out / "logs" / "events.jsonl").is_file()

    def test_run_without_cell_types(self, runner, tenx_dir, tmp_path, fast_config):
        """Test a run without a cell-type table stops at annotation."""
        result = runner.invoke(
            cli,
            ["run", "-i", str(tenx_dir), "-o", str(tmp_path / "run"), "-c", str(fast_config)],
            obj={},
        )
        assert result.exit_code == 1
        assert "E400_ANNOTATION" in result.output
