"""Enrichment module for gene-set lookups against Enrichr.

Example Usage
-------------
>>> from scrna_explorer.core.enrichment import EnrichmentEngine, EnrichmentConfig
>>> engine = EnrichmentEngine(EnrichmentConfig(top_n=5))
>>> session = engine.run_session(session, cell_type="Cardiomyocytes")
>>> session.enrichment.combined()
"""

__version__ = "1.0.0"

from .config import EnrichmentConfig, DEFAULT_LIBRARIES
from .client import (
    EnrichrClient,
    ENRICHMENT_COLUMNS,
    parse_enrichr_rows,
)
from .engine import (
    EnrichmentEngine,
    EnrichmentResult,
    rank_terms,
)

__all__ = [
    "__version__",
    # Config
    "EnrichmentConfig",
    "DEFAULT_LIBRARIES",
    # Client
    "EnrichrClient",
    "ENRICHMENT_COLUMNS",
    "parse_enrichr_rows",
    # Engine
    "EnrichmentEngine",
    "EnrichmentResult",
    "rank_terms",
]
