"""Configuration classes for preprocessing stages.

All preprocessing parameters are configurable via YAML. Defaults reproduce
the E18 mouse heart analysis.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class LoaderConfig:
    """Configuration for matrix ingestion.

    Attributes
    ----------
    var_names : str
        Which feature column becomes ``var_names`` ("gene_symbols" or "gene_ids")
    make_unique : bool
        De-duplicate gene symbols by suffixing "-1", "-2", ...
    counts_layer : str
        Layer that keeps an untouched copy of the raw counts
    """

    var_names: str = "gene_symbols"
    make_unique: bool = True
    counts_layer: str = "counts"


@dataclass
class QCConfig:
    """Configuration for threshold-based cell QC.

    A cell is kept only when every metric is strictly below its threshold.

    Attributes
    ----------
    max_total_counts : float
        Upper bound (exclusive) on total UMI count per cell
    max_genes_by_counts : float
        Upper bound (exclusive) on detected genes per cell
    max_pct_mt : float
        Upper bound (exclusive) on mitochondrial percentage per cell
    mt_prefix : str
        Gene-name prefix that marks mitochondrial genes ("mt-" for mouse)
    min_cells : int
        Drop genes detected in fewer cells than this (0 disables gene filtering)
    """

    max_total_counts: float = 20000
    max_genes_by_counts: float = 4000
    max_pct_mt: float = 15.0
    mt_prefix: str = "mt-"
    min_cells: int = 0

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty if valid)."""
        errors = []
        if self.max_total_counts <= 0:
            errors.append(f"max_total_counts must be positive, got {self.max_total_counts}")
        if self.max_genes_by_counts <= 0:
            errors.append(
                f"max_genes_by_counts must be positive, got {self.max_genes_by_counts}"
            )
        if not 0 < self.max_pct_mt <= 100:
            errors.append(f"max_pct_mt must be in (0, 100], got {self.max_pct_mt}")
        if self.min_cells < 0:
            errors.append(f"min_cells must be >= 0, got {self.min_cells}")
        if not self.mt_prefix:
            errors.append("mt_prefix must not be empty")
        return errors


@dataclass
class NormalizationConfig:
    """Configuration for normalization and feature selection.

    Attributes
    ----------
    target_sum : float
        Per-cell library size after normalization, before log1p
    n_top_genes : int
        Number of highly variable genes to keep
    hvg_flavor : str
        scanpy HVG flavor; "seurat_v3" is the variance-stabilizing ranking
        and reads raw counts from ``counts_layer``
    scale_clip : float
        Clip scaled values to +/- this value
    lognorm_layer : str
        Layer that keeps the full log-normalized matrix
    """

    target_sum: float = 1e4
    n_top_genes: int = 2000
    hvg_flavor: str = "seurat_v3"
    scale_clip: Optional[float] = 10.0
    lognorm_layer: str = "lognorm"


@dataclass
class PreprocessingConfig:
    """Master configuration for preprocessing.

    Attributes
    ----------
    loader : LoaderConfig
        Ingestion configuration
    qc : QCConfig
        QC configuration
    normalization : NormalizationConfig
        Normalization and HVG configuration
    """

    loader: LoaderConfig = field(default_factory=LoaderConfig)
    qc: QCConfig = field(default_factory=QCConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreprocessingConfig":
        """Build configuration from a (possibly partial) dictionary."""
        return cls(
            loader=LoaderConfig(**data.get("loader", {})),
            qc=QCConfig(**data.get("qc", {})),
            normalization=NormalizationConfig(**data.get("normalization", {})),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "PreprocessingConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested preprocessing section
        if "preprocessing" in data:
            data = data["preprocessing"]

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "PreprocessingConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "loader": {
                "var_names": self.loader.var_names,
                "make_unique": self.loader.make_unique,
                "counts_layer": self.loader.counts_layer,
            },
            "qc": {
                "max_total_counts": self.qc.max_total_counts,
                "max_genes_by_counts": self.qc.max_genes_by_counts,
                "max_pct_mt": self.qc.max_pct_mt,
                "mt_prefix": self.qc.mt_prefix,
                "min_cells": self.qc.min_cells,
            },
            "normalization": {
                "target_sum": self.normalization.target_sum,
                "n_top_genes": self.normalization.n_top_genes,
                "hvg_flavor": self.normalization.hvg_flavor,
                "scale_clip": self.normalization.scale_clip,
                "lognorm_layer": self.normalization.lognorm_layer,
            },
        }
