"""Report module: figures, tables and the static HTML report.

Example Usage
-------------
>>> from scrna_explorer.core.report import ReportBuilder, ReportConfig
>>> builder = ReportBuilder(ReportConfig(title="E18 heart"))
>>> session = builder.run(session, "output/report", failures=pipeline.failures)
>>> session.report_path
"""

__version__ = "1.0.0"

from .config import ReportConfig
from .style import (
    categorical_palette,
    create_figure,
    save_figure,
    set_publication_style,
)
from .plots import (
    plot_embedding,
    plot_enrichment,
    plot_hvg,
    plot_marker_dotplot,
    plot_marker_violins,
    plot_pca_elbow,
    plot_qc_scatter,
    plot_qc_violins,
)
from .html import INTERPRETATION, ReportBuilder

__all__ = [
    "__version__",
    # Config
    "ReportConfig",
    # Style
    "categorical_palette",
    "create_figure",
    "save_figure",
    "set_publication_style",
    # Plots
    "plot_embedding",
    "plot_enrichment",
    "plot_hvg",
    "plot_marker_dotplot",
    "plot_marker_violins",
    "plot_pca_elbow",
    "plot_qc_scatter",
    "plot_qc_violins",
    # HTML
    "INTERPRETATION",
    "ReportBuilder",
]
