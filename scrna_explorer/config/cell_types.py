"""Analyst-supplied cluster -> cell-type tables.

The table is authored by hand after inspecting each cluster's top markers
against a reference atlas, and is only valid for the clustering run it was
written for (cluster ids change when clustering parameters change).

Example
-------
>>> from scrna_explorer.config import CellTypeMap
>>> cell_types = CellTypeMap.from_yaml("configs/e18_heart_cell_types.yaml")
>>> cell_types.get("0")
'Cardiomyocytes'
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml


@dataclass
class CellTypeMap:
    """Cluster id -> cell-type name table.

    Attributes
    ----------
    mapping : Dict[str, str]
        Cluster id (as string) -> cell-type name
    name : str
        Identifier for the table (dataset / clustering run)
    colors : Dict[str, str]
        Optional hex colors per cell type for plots
    query_cell_type : str, optional
        Cell type whose markers are sent to enrichment by default
    """

    mapping: Dict[str, str] = field(default_factory=dict)
    name: str = ""
    colors: Dict[str, str] = field(default_factory=dict)
    query_cell_type: Optional[str] = None

    def __post_init__(self):
        self.mapping = {str(k).strip(): str(v).strip() for k, v in self.mapping.items()}
        empty = [k for k, v in self.mapping.items() if not v]
        if empty:
            raise ValueError(f"Empty cell-type names for clusters: {empty}")

    def __len__(self) -> int:
        return len(self.mapping)

    def get(self, cluster: Any, default: Optional[str] = None) -> Optional[str]:
        """Cell type for a cluster id (int or str)."""
        return self.mapping.get(str(cluster), default)

    @property
    def cell_types(self) -> List[str]:
        """Distinct cell-type names in first-seen order."""
        return list(dict.fromkeys(self.mapping.values()))

    def clusters_for(self, cell_type: str) -> List[str]:
        """Cluster ids mapped to ``cell_type``."""
        return [k for k, v in self.mapping.items() if v == cell_type]

    def coverage(self, clusters: Iterable[Any]) -> Tuple[List[str], List[str]]:
        """Compare the table against observed cluster ids.

        Parameters
        ----------
        clusters : Iterable
            Cluster ids produced by clustering

        Returns
        -------
        Tuple[List[str], List[str]]
            (missing, unused): observed ids with no entry, and entries
            for ids that were not observed
        """
        observed = [str(c) for c in clusters]
        missing = [c for c in observed if c not in self.mapping]
        unused = [k for k in self.mapping if k not in set(observed)]
        return missing, unused

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CellTypeMap":
        """Build from a parsed YAML/JSON document or a plain mapping.

        Accepts either ``{"cell_types": {...}, "name": ..., ...}`` or a
        bare ``{cluster: cell_type}`` mapping.
        """
        if "cell_types" in data:
            return cls(
                mapping=dict(data.get("cell_types") or {}),
                name=data.get("name", ""),
                colors=dict(data.get("colors") or {}),
                query_cell_type=data.get("query_cell_type"),
            )
        return cls(mapping=dict(data))

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "CellTypeMap":
        """Load a cell-type table from YAML file.

        Parameters
        ----------
        path : Path
            Path to YAML file

        Returns
        -------
        CellTypeMap
            Loaded table
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        table = cls.from_dict(data)
        if not table.name:
            table.name = Path(path).stem
        return table

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "cell_types": dict(self.mapping),
            "colors": dict(self.colors),
            "query_cell_type": self.query_cell_type,
        }
