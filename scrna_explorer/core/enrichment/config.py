"""Configuration for Enrichr gene-set enrichment lookups."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


DEFAULT_LIBRARIES = [
    "Mouse_Gene_Atlas",
    "WikiPathways_2019_Mouse",
    "KEGG_2019_Mouse",
]


@dataclass
class EnrichmentConfig:
    """Configuration for the enrichment stage.

    Attributes
    ----------
    base_url : str
        Enrichr API root
    libraries : List[str]
        Gene-set libraries queried for every gene list
    top_n : int
        Terms kept per library after ranking by adjusted p-value
    timeout : float
        Per-request timeout in seconds
    max_retries : int
        Retries after a transient failure (connection error, timeout,
        HTTP 429/5xx)
    retry_backoff : float
        Seconds to wait before retrying
    query_cell_type : str, optional
        Cell type whose significant markers are submitted; the cell type
        of the largest cluster is used when unset
    description : str
        Description attached to submitted gene lists
    """

    base_url: str = "https://maayanlab.cloud/Enrichr"
    libraries: List[str] = field(default_factory=lambda: list(DEFAULT_LIBRARIES))
    top_n: int = 5
    timeout: float = 30.0
    max_retries: int = 1
    retry_backoff: float = 2.0
    query_cell_type: Optional[str] = None
    description: str = "scrna-explorer marker genes"

    @classmethod
    def from_yaml(cls, path: Path) -> "EnrichmentConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested enrichment section
        if "enrichment" in data:
            data = data["enrichment"]

        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "base_url": self.base_url,
            "libraries": list(self.libraries),
            "top_n": self.top_n,
            "timeout": self.timeout,
            "max_retries": self.max_retries,
            "retry_backoff": self.retry_backoff,
            "query_cell_type": self.query_cell_type,
            "description": self.description,
        }
