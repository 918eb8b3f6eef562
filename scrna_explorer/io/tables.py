"""Table I/O for scRNA-Explorer.

CSV exports of the per-stage tables and reading plain gene lists.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Union

import pandas as pd

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it.

    Parameters
    ----------
    path : PathLike
        Directory path to create.

    Returns
    -------
    Path
        The created/existing directory path.
    """
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write DataFrame to path ensuring the parent directory exists."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index)
    return output_path


def read_gene_list(path: PathLike) -> List[str]:
    """Read gene symbols from a text file.

    One gene per line; commas and tabs also separate genes. Blank lines and
    lines starting with ``#`` are skipped.

    Parameters
    ----------
    path : PathLike
        Text file with gene symbols.

    Returns
    -------
    List[str]
        Genes in file order, duplicates removed.
    """
    genes: List[str] = []
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            for token in line.replace("\t", ",").split(","):
                token = token.strip()
                if token:
                    genes.append(token)
    return list(dict.fromkeys(genes))


def export_session_tables(session, output_dir: PathLike) -> Dict[str, Path]:
    """Write every table the session holds to ``output_dir``.

    Parameters
    ----------
    session : AnalysisSession
        Snapshot to export (any subset of stages may have run).
    output_dir : PathLike
        Destination directory.

    Returns
    -------
    Dict[str, Path]
        Table name -> written CSV path.
    """
    from ..core.annotation import AnnotationEngine

    out_dir = ensure_output_dir(output_dir)
    written: Dict[str, Path] = {}

    if session.qc is not None:
        written["qc_summary"] = write_dataframe(session.qc.summary_frame(), out_dir / "qc_summary.csv")
        written["qc_removed_cells"] = write_dataframe(
            session.qc.removal_frame(), out_dir / "qc_removed_cells.csv"
        )
    if session.normalization is not None and session.normalization.gene_stats is not None:
        written["hvg_stats"] = write_dataframe(
            session.normalization.gene_stats, out_dir / "hvg_stats.csv", index=True
        )
    if session.clustering is not None:
        written["cluster_summary"] = write_dataframe(
            AnnotationEngine.cluster_summary(session), out_dir / "cluster_summary.csv"
        )
    if session.markers is not None:
        written["markers"] = write_dataframe(session.markers.table, out_dir / "markers_all.csv")
        written["markers_significant"] = write_dataframe(
            session.markers.significant(), out_dir / "markers_significant.csv"
        )
    if session.enrichment is not None:
        written["enrichment"] = write_dataframe(
            session.enrichment.combined(), out_dir / "enrichment_top_terms.csv"
        )

    logger.info("Exported %d tables to %s", len(written), out_dir)
    return written
