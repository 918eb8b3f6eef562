"""Gene-set enrichment for marker gene lists.

Submits a gene list once, queries each configured library, ranks terms by
adjusted p-value and keeps the top N per library. A library that cannot be
fetched is recorded as missing; the other libraries still report.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging

import pandas as pd

from ...errors import EnrichmentError
from ..session import AnalysisSession
from .client import ENRICHMENT_COLUMNS, EnrichrClient
from .config import EnrichmentConfig


@dataclass
class EnrichmentResult:
    """Result from an enrichment query.

    Attributes
    ----------
    genes : List[str]
        Genes submitted
    libraries : List[str]
        Libraries queried
    tables : Dict[str, pd.DataFrame]
        Top ``top_n`` terms per library, ranked by adjusted p-value
    failed : Dict[str, str]
        Library -> error message for libraries with no result
    cell_type : str, optional
        Cell type whose markers were submitted
    clusters : List[str]
        Clusters contributing markers
    user_list_id : int, optional
        Enrichr list id
    top_n : int
        Terms kept per library
    """

    genes: List[str] = field(default_factory=list)
    libraries: List[str] = field(default_factory=list)
    tables: Dict[str, pd.DataFrame] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    cell_type: Optional[str] = None
    clusters: List[str] = field(default_factory=list)
    user_list_id: Optional[int] = None
    top_n: int = 5

    @property
    def ok(self) -> bool:
        return not self.failed

    def combined(self) -> pd.DataFrame:
        """All libraries' top terms in one table."""
        frames = [self.tables[lib] for lib in self.libraries if lib in self.tables]
        if not frames:
            return pd.DataFrame(columns=ENRICHMENT_COLUMNS)
        return pd.concat(frames, ignore_index=True)

    def top_term(self, library: str) -> Optional[str]:
        """Best-ranked term for ``library``, or None if missing/empty."""
        table = self.tables.get(library)
        if table is None or table.empty:
            return None
        return str(table.iloc[0]["term"])

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "cell_type": self.cell_type,
            "clusters": list(self.clusters),
            "n_genes": len(self.genes),
            "user_list_id": self.user_list_id,
            "top_n": self.top_n,
            "top_terms": {lib: self.top_term(lib) for lib in self.libraries},
            "failed": dict(self.failed),
        }


def rank_terms(table: pd.DataFrame, top_n: int) -> pd.DataFrame:
    """Sort by adjusted p-value (ties: higher combined score first), keep ``top_n``."""
    ranked = table.sort_values(
        ["pval_adj", "combined_score"], ascending=[True, False], kind="mergesort"
    )
    return ranked.head(top_n).reset_index(drop=True)


class EnrichmentEngine:
    """Runs Enrichr lookups for a gene list across several libraries.

    Parameters
    ----------
    config : EnrichmentConfig, optional
        Enrichment configuration
    client : EnrichrClient, optional
        Client to use; built from ``config`` if None
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> engine = EnrichmentEngine()
    >>> result = engine.run(["Myh6", "Tnnt2", "Actc1", "Myl7"])
    >>> result.top_term("KEGG_2019_Mouse")
    """

    def __init__(
        self,
        config: Optional[EnrichmentConfig] = None,
        client: Optional[EnrichrClient] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or EnrichmentConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.client = client or EnrichrClient(self.config, logger=self.logger)

    def run(
        self,
        genes: Sequence[str],
        libraries: Optional[Sequence[str]] = None,
        description: Optional[str] = None,
    ) -> EnrichmentResult:
        """Query every library for ``genes``.

        Parameters
        ----------
        genes : Sequence[str]
            Gene symbols; blanks and duplicates are dropped
        libraries : Sequence[str], optional
            Libraries to query. Uses config default if None.
        description : str, optional
            Description for the submitted list

        Returns
        -------
        EnrichmentResult
            Ranked top terms per library, with failures recorded per library

        Raises
        ------
        EnrichmentError
            If the gene list is empty, cannot be submitted, or every
            library fails
        """
        genes = list(dict.fromkeys(str(g).strip() for g in genes if str(g).strip()))
        if not genes:
            raise EnrichmentError(
                "Empty gene list",
                expected="at least one gene symbol",
                suggestion="Check that the selected clusters have significant markers",
            )

        libraries = list(libraries) if libraries is not None else list(self.config.libraries)
        result = EnrichmentResult(genes=genes, libraries=libraries, top_n=self.config.top_n)

        result.user_list_id = self.client.add_list(
            genes, description or self.config.description
        )

        for library in libraries:
            try:
                table = self.client.enrich(result.user_list_id, library)
            except EnrichmentError as e:
                self.logger.warning("Enrichment for %s missing: %s", library, e.message)
                result.failed[library] = e.message
                continue
            result.tables[library] = rank_terms(table, self.config.top_n)
            self.logger.info(
                "%s: %d terms, top=%s", library, len(table), result.top_term(library)
            )

        if libraries and len(result.failed) == len(libraries):
            raise EnrichmentError(
                "Enrichment failed for every library",
                expected=libraries,
                context={"failed": dict(result.failed)},
            )
        return result

    def default_cell_type(self, session: AnalysisSession) -> str:
        """Configured query cell type, else the cell type of the largest cluster."""
        if self.config.query_cell_type:
            return self.config.query_cell_type
        largest = max(
            session.clustering.cluster_sizes.items(), key=lambda item: item[1]
        )[0]
        return session.annotation.mapping[largest]

    def enrich_cell_type(
        self,
        session: AnalysisSession,
        cell_type: Optional[str] = None,
    ) -> EnrichmentResult:
        """Submit the significant markers of one annotated cell type.

        Parameters
        ----------
        session : AnalysisSession
            Snapshot with markers and annotation
        cell_type : str, optional
            Cell type to query; see ``default_cell_type`` if None

        Returns
        -------
        EnrichmentResult
            Enrichment for the pooled markers of the cell type's clusters
        """
        session.require("markers", "annotate", for_stage="enrich")
        cell_type = cell_type or self.default_cell_type(session)
        clusters = session.annotation.clusters_for(cell_type)
        if not clusters:
            raise EnrichmentError(
                f"No cluster annotated as '{cell_type}'",
                expected=sorted(set(session.annotation.mapping.values())),
                found=cell_type,
            )

        genes = session.markers.genes_for(clusters)
        self.logger.info(
            "Enriching %d markers of %s (clusters %s)", len(genes), cell_type, ", ".join(clusters)
        )
        result = self.run(genes, description=f"{self.config.description}: {cell_type}")
        result.cell_type = cell_type
        result.clusters = clusters
        return result

    def run_session(
        self,
        session: AnalysisSession,
        cell_type: Optional[str] = None,
    ) -> AnalysisSession:
        """Enrich a cell type's markers and return the next snapshot."""
        result = self.enrich_cell_type(session, cell_type)
        return session.advance("enrich", None, result)
