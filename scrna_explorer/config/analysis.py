"""Master configuration for a full analysis run.

One ``analysis.yaml`` holds every stage's settings:

    preprocessing:
      qc: {max_total_counts: 20000, max_genes_by_counts: 4000, max_pct_mt: 15}
      normalization: {n_top_genes: 2000}
    clustering: {n_pcs: 30, resolution: 0.5, random_seed: 0}
    markers: {min_pct: 0.25, min_logfc: 0.5}
    enrichment: {top_n: 5}
    report: {dpi: 150}
    annotation: {label_col: cell_type, cell_types: e18_heart_cell_types.yaml}
    output_dir: output
    log_level: INFO

Missing sections fall back to defaults.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..core.clustering.config import LEIDEN_FLAVORS, ClusterAnalysisConfig
from ..core.enrichment.config import EnrichmentConfig
from ..core.preprocessing.config import PreprocessingConfig
from ..core.report.config import ReportConfig


@dataclass
class AnalysisConfig:
    """Settings for every pipeline stage.

    Attributes
    ----------
    preprocessing : PreprocessingConfig
        Loader, QC and normalization settings
    analysis : ClusterAnalysisConfig
        Clustering and marker settings
    enrichment : EnrichmentConfig
        Enrichr settings
    report : ReportConfig
        Report settings
    label_col : str
        ``adata.obs`` column written by annotation
    cell_types_path : str, optional
        Cell-type table; relative paths resolve against the YAML file
    output_dir : str
        Root output directory
    log_level : str
        Console log level
    """

    preprocessing: PreprocessingConfig = field(default_factory=PreprocessingConfig)
    analysis: ClusterAnalysisConfig = field(default_factory=ClusterAnalysisConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    label_col: str = "cell_type"
    cell_types_path: Optional[str] = None
    output_dir: str = "output"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> "AnalysisConfig":
        """Build configuration from a (possibly partial) dictionary."""
        annotation = data.get("annotation", {}) or {}
        cell_types_path = annotation.get("cell_types")
        if cell_types_path and base_dir is not None and not Path(cell_types_path).is_absolute():
            cell_types_path = str(Path(base_dir) / cell_types_path)

        return cls(
            preprocessing=PreprocessingConfig.from_dict(data.get("preprocessing", {}) or {}),
            analysis=ClusterAnalysisConfig.from_dict({
                "clustering": data.get("clustering", {}) or {},
                "markers": data.get("markers", {}) or {},
            }),
            enrichment=EnrichmentConfig(**(data.get("enrichment", {}) or {})),
            report=ReportConfig(**(data.get("report", {}) or {})),
            label_col=annotation.get("label_col", "cell_type"),
            cell_types_path=cell_types_path,
            output_dir=data.get("output_dir", "output"),
            log_level=data.get("log_level", "INFO"),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "AnalysisConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data, base_dir=path.parent)

    @classmethod
    def default(cls) -> "AnalysisConfig":
        """Create default configuration."""
        return cls()

    def validate(self) -> None:
        """Raise ValueError if any threshold is out of range."""
        errors = self.preprocessing.qc.validate()
        clustering = self.analysis.clustering
        if clustering.n_pcs < 2:
            errors.append(f"n_pcs must be >= 2, got {clustering.n_pcs}")
        if clustering.resolution <= 0:
            errors.append(f"resolution must be > 0, got {clustering.resolution}")
        if clustering.neighbors_k < 2:
            errors.append(f"neighbors_k must be >= 2, got {clustering.neighbors_k}")
        if clustering.leiden_flavor not in LEIDEN_FLAVORS:
            errors.append(
                f"leiden_flavor must be one of {sorted(LEIDEN_FLAVORS)}, "
                f"got {clustering.leiden_flavor!r}"
            )
        markers = self.analysis.markers
        if not 0 <= markers.min_pct <= 1:
            errors.append(f"min_pct must be in [0, 1], got {markers.min_pct}")
        if not 0 < markers.max_pval_adj <= 1:
            errors.append(f"max_pval_adj must be in (0, 1], got {markers.max_pval_adj}")
        if self.enrichment.top_n < 1:
            errors.append(f"top_n must be >= 1, got {self.enrichment.top_n}")
        if errors:
            raise ValueError("Invalid analysis configuration: " + "; ".join(errors))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (same layout as ``analysis.yaml``)."""
        analysis = self.analysis.to_dict()
        return {
            "preprocessing": self.preprocessing.to_dict(),
            "clustering": analysis["clustering"],
            "markers": analysis["markers"],
            "enrichment": self.enrichment.to_dict(),
            "report": self.report.to_dict(),
            "annotation": {
                "label_col": self.label_col,
                "cell_types": self.cell_types_path,
            },
            "output_dir": self.output_dir,
            "log_level": self.log_level,
        }
