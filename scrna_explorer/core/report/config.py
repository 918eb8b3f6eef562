"""Configuration for report rendering."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml


@dataclass
class ReportConfig:
    """Configuration for the report stage.

    Attributes
    ----------
    title : str
        Report heading
    figures_dir : str
        Figure subdirectory, relative to the report directory
    dpi : int
        Figure resolution
    n_violin_genes : int
        Top markers per cluster shown in the marker violin grid
    n_dotplot_genes : int
        Top markers per cluster shown in the dot plot
    max_table_rows : int
        Rows shown per HTML table (CSV exports are never truncated)
    export_tables : bool
        Write CSV tables and the JSON run manifest next to the report
    """

    title: str = "E18 Mouse Heart scRNA-seq Exploration"
    figures_dir: str = "figures"
    dpi: int = 150
    n_violin_genes: int = 2
    n_dotplot_genes: int = 3
    max_table_rows: int = 60
    export_tables: bool = True

    @classmethod
    def from_yaml(cls, path: Path) -> "ReportConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if "report" in data:
            data = data["report"]

        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "title": self.title,
            "figures_dir": self.figures_dir,
            "dpi": self.dpi,
            "n_violin_genes": self.n_violin_genes,
            "n_dotplot_genes": self.n_dotplot_genes,
            "max_table_rows": self.max_table_rows,
            "export_tables": self.export_tables,
        }
