"""Matrix ingestion.

Reads a 10x-style matrix directory (matrix + features + barcodes) into
AnnData after checking that all three files are present and that the matrix
dimensions agree with the feature and barcode lists.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
import logging

import numpy as np
import pandas as pd
from scipy import io as spio
from scipy import sparse

from ...errors import IngestionError
from ..session import AnalysisSession
from .config import LoaderConfig


# File names scanpy expects for each directory layout
LAYOUT_FILES: Dict[str, Dict[str, str]] = {
    "v3": {
        "matrix": "matrix.mtx.gz",
        "features": "features.tsv.gz",
        "barcodes": "barcodes.tsv.gz",
    },
    "legacy": {
        "matrix": "matrix.mtx",
        "features": "genes.tsv",
        "barcodes": "barcodes.tsv",
    },
}


@dataclass
class LoadResult:
    """Result from loading a count matrix.

    Attributes
    ----------
    source : str
        Directory or file the matrix was read from
    layout : str
        'v3', 'legacy', 'h5ad' or 'memory'
    n_cells : int
        Number of cells (barcodes)
    n_genes : int
        Number of genes (features)
    n_duplicate_genes : int
        Gene symbols that had to be made unique
    issues : List[str]
        Non-fatal issues found while loading
    status : str
        'OK' or 'CHECK'
    """

    source: str
    layout: str = "v3"
    n_cells: int = 0
    n_genes: int = 0
    n_duplicate_genes: int = 0
    issues: List[str] = field(default_factory=list)
    status: str = "OK"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "source": self.source,
            "layout": self.layout,
            "n_cells": self.n_cells,
            "n_genes": self.n_genes,
            "n_duplicate_genes": self.n_duplicate_genes,
            "status": self.status,
            "issues": ";".join(self.issues) if self.issues else "",
        }


class DataLoader:
    """Count-matrix loader with validation.

    Parameters
    ----------
    config : LoaderConfig, optional
        Loader configuration
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from scrna_explorer.core.preprocessing import DataLoader
    >>> loader = DataLoader()
    >>> session = loader.ingest("data/filtered_feature_bc_matrix")
    >>> session.n_cells
    """

    def __init__(
        self,
        config: Optional[LoaderConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or LoaderConfig()
        self.logger = logger or logging.getLogger(__name__)

    def resolve_files(self, path: Union[str, Path]) -> Tuple[str, Dict[str, Path]]:
        """Locate the matrix, feature and barcode files in ``path``.

        A directory holding ``genes.tsv`` is read as the legacy layout;
        otherwise the gzipped v3 layout is expected.

        Returns
        -------
        Tuple[str, Dict[str, Path]]
            Layout name and map of role -> file path

        Raises
        ------
        IngestionError
            If the directory or any of the three files is missing
        """
        directory = Path(path)
        if not directory.is_dir():
            raise IngestionError(
                "Matrix directory not found",
                expected="directory with matrix, features and barcodes files",
                found=str(directory),
            )

        layout = "legacy" if (directory / "genes.tsv").is_file() else "v3"
        files = {role: directory / name for role, name in LAYOUT_FILES[layout].items()}
        missing = [str(p.name) for p in files.values() if not p.is_file()]
        if missing:
            present = sorted(p.name for p in directory.iterdir())
            raise IngestionError(
                f"Matrix directory is missing {len(missing)} required file(s)",
                expected=list(LAYOUT_FILES[layout].values()),
                found=present,
                suggestion=f"Add {', '.join(missing)} to {directory}",
                context={"layout": layout},
            )
        return layout, files

    def check_dimensions(self, files: Dict[str, Path]) -> Tuple[int, int]:
        """Check the matrix header against the feature and barcode lists.

        Returns
        -------
        Tuple[int, int]
            (n_genes, n_cells) from the matrix header
        """
        try:
            n_rows, n_cols = spio.mminfo(str(files["matrix"]))[:2]
        except (OSError, ValueError) as e:
            raise IngestionError(
                "Could not read Matrix Market header",
                found=str(files["matrix"]),
                context={"error": str(e)},
            ) from e

        n_features = len(pd.read_csv(files["features"], sep="\t", header=None))
        n_barcodes = len(pd.read_csv(files["barcodes"], sep="\t", header=None))

        if n_rows != n_features or n_cols != n_barcodes:
            raise IngestionError(
                "Matrix dimensions do not match feature/barcode lists",
                expected=f"{n_features} genes x {n_barcodes} cells",
                found=f"{n_rows} x {n_cols} matrix",
                suggestion="Check that the three files come from the same run",
            )
        return int(n_rows), int(n_cols)

    def load_10x_dir(self, path: Union[str, Path]) -> Tuple[Any, LoadResult]:
        """Load a 10x-style matrix directory.

        Parameters
        ----------
        path : str or Path
            Directory with ``matrix.mtx[.gz]``, ``features.tsv.gz`` (or
            ``genes.tsv``) and ``barcodes.tsv[.gz]``

        Returns
        -------
        Tuple[AnnData, LoadResult]
            Cells x genes AnnData with raw counts in ``layers[counts_layer]``
            and the loading summary

        Raises
        ------
        IngestionError
            If files are missing, unreadable, or inconsistent
        """
        import scanpy as sc

        layout, files = self.resolve_files(path)
        n_genes, n_cells = self.check_dimensions(files)
        self.logger.info(
            "Reading %s matrix: %d genes x %d cells from %s", layout, n_genes, n_cells, path
        )

        try:
            adata = sc.read_10x_mtx(
                str(path),
                var_names=self.config.var_names,
                make_unique=False,
                cache=False,
            )
        except (OSError, ValueError, KeyError) as e:
            raise IngestionError(
                "Failed to parse matrix directory",
                found=str(path),
                context={"error": str(e)},
            ) from e

        result = LoadResult(source=str(path), layout=layout)
        return self._finalize(adata, result), result

    def from_counts(
        self,
        counts: Any,
        genes: Sequence[str],
        barcodes: Sequence[str],
    ) -> Tuple[Any, LoadResult]:
        """Build AnnData from an in-memory genes x cells count matrix.

        Parameters
        ----------
        counts : array-like or sparse matrix
            Genes x cells counts (same orientation as the matrix file)
        genes : Sequence[str]
            Gene symbols, one per row
        barcodes : Sequence[str]
            Cell barcodes, one per column

        Returns
        -------
        Tuple[AnnData, LoadResult]
            Cells x genes AnnData and the loading summary
        """
        import anndata as ad

        matrix = sparse.csr_matrix(counts)
        if matrix.shape != (len(genes), len(barcodes)):
            raise IngestionError(
                "Count matrix dimensions do not match gene/barcode lists",
                expected=f"{len(genes)} genes x {len(barcodes)} cells",
                found=f"{matrix.shape[0]} x {matrix.shape[1]} matrix",
            )

        adata = ad.AnnData(
            X=matrix.T.tocsr().astype(np.float32),
            obs=pd.DataFrame(index=pd.Index([str(b) for b in barcodes])),
            var=pd.DataFrame(index=pd.Index([str(g) for g in genes])),
        )
        result = LoadResult(source="<memory>", layout="memory")
        return self._finalize(adata, result), result

    def load_h5ad(self, path: Union[str, Path]) -> Tuple[Any, LoadResult]:
        """Load a raw count matrix stored as .h5ad (cells x genes counts in X)."""
        import anndata as ad

        path = Path(path)
        if not path.is_file():
            raise IngestionError("AnnData file not found", found=str(path))
        try:
            adata = ad.read_h5ad(path)
        except (OSError, KeyError) as e:
            raise IngestionError(
                "Failed to read AnnData file", found=str(path), context={"error": str(e)}
            ) from e
        if adata.raw is not None or "X_pca" in adata.obsm:
            raise IngestionError(
                "AnnData file holds processed data, not raw counts",
                expected="unnormalized counts in X",
                found=str(path),
                suggestion="Start from the 10x matrix directory",
            )
        result = LoadResult(source=str(path), layout="h5ad")
        return self._finalize(adata, result), result

    def _finalize(self, adata: Any, result: LoadResult) -> Any:
        """Enforce unique labels, check counts and keep a raw-count layer."""
        n_dup = int(adata.var_names.duplicated().sum())
        if n_dup:
            if not self.config.make_unique:
                raise IngestionError(
                    f"{n_dup} duplicate gene names",
                    suggestion="Set loader.make_unique: true",
                )
            self.logger.info("Making %d duplicate gene names unique", n_dup)
            adata.var_names_make_unique()
            result.n_duplicate_genes = n_dup

        if adata.obs_names.duplicated().any():
            raise IngestionError(
                "Duplicate cell barcodes",
                found=int(adata.obs_names.duplicated().sum()),
            )

        values = adata.X.data if sparse.issparse(adata.X) else np.asarray(adata.X)
        if values.size and values.min() < 0:
            raise IngestionError("Count matrix contains negative values")
        if values.size and not np.allclose(values, np.round(values)):
            result.issues.append("non_integer_counts")
            result.status = "CHECK"
            self.logger.warning("Count matrix has non-integer values")

        adata.layers[self.config.counts_layer] = adata.X.copy()
        result.n_cells = adata.n_obs
        result.n_genes = adata.n_vars
        self.logger.info("Loaded %d cells x %d genes", adata.n_obs, adata.n_vars)
        return adata

    def ingest(self, path: Union[str, Path]) -> AnalysisSession:
        """Load ``path`` (directory or .h5ad) into the first session snapshot."""
        path = Path(path)
        if path.suffix == ".h5ad":
            adata, result = self.load_h5ad(path)
        else:
            adata, result = self.load_10x_dir(path)
        return AnalysisSession(adata=adata).advance("ingest", adata, result)
