"""Style utilities and color schemes for report figures.

- Palettes for clusters, cell types and QC reasons
- Matplotlib style configuration
- Figure creation and saving
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union
import logging

logger = logging.getLogger(__name__)

# =============================================================================
# Color Palettes
# =============================================================================

# QC removal reasons
QC_REASON_COLORS: Dict[str, str] = {
    "kept": "#95a5a6",          # Gray
    "high_counts": "#e74c3c",   # Red
    "high_genes": "#f39c12",    # Orange
    "high_mt": "#9b59b6",       # Purple
}

# One color per enrichment library panel
LIBRARY_COLORS: Dict[str, str] = {
    "Mouse_Gene_Atlas": "#3498db",
    "WikiPathways_2019_Mouse": "#27ae60",
    "KEGG_2019_Mouse": "#e67e22",
}

MISSING_COLOR = "#bdc3c7"


# =============================================================================
# Style Configuration
# =============================================================================

def set_publication_style():
    """Set matplotlib style for report figures."""
    import matplotlib.pyplot as plt

    try:
        plt.style.use("seaborn-v0_8-whitegrid")
    except OSError:
        pass

    plt.rcParams.update({
        "font.size": 10,
        "axes.titlesize": 12,
        "axes.labelsize": 10,
        "xtick.labelsize": 9,
        "ytick.labelsize": 9,
        "legend.fontsize": 8,
        "figure.dpi": 100,
        "savefig.bbox": "tight",
        "axes.spines.top": False,
        "axes.spines.right": False,
    })


def categorical_palette(
    labels: Sequence[str],
    overrides: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """Map labels to hex colors.

    Args:
        labels: Labels in display order
        overrides: Fixed colors for some labels (e.g. from the cell type map)

    Returns:
        Dict mapping every label to a hex color
    """
    import matplotlib.colors as mcolors
    import seaborn as sns

    overrides = overrides or {}
    free = [label for label in labels if label not in overrides]
    name = "tab10" if len(free) <= 10 else "tab20" if len(free) <= 20 else "husl"
    fallback = [mcolors.to_hex(c) for c in sns.color_palette(name, max(len(free), 1))]

    colors = {}
    for i, label in enumerate(free):
        colors[label] = fallback[i % len(fallback)]
    for label in labels:
        if label in overrides:
            colors[label] = overrides[label]
    return colors


# =============================================================================
# Figure Utilities
# =============================================================================

def save_figure(
    fig,
    output_path: Union[str, Path],
    dpi: int = 150,
    close: bool = True,
) -> Path:
    """Save matplotlib figure with consistent settings.

    Args:
        fig: Matplotlib figure object
        output_path: Path to save figure
        dpi: Resolution
        close: Whether to close figure after saving

    Returns:
        Path to saved figure
    """
    import matplotlib.pyplot as plt

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fig.savefig(output_path, dpi=dpi, bbox_inches="tight", facecolor="white")

    if close:
        plt.close(fig)

    logger.debug("Saved figure to %s", output_path)
    return output_path


def create_figure(
    nrows: int = 1,
    ncols: int = 1,
    figsize: Optional[tuple] = None,
    **kwargs,
):
    """Create a styled figure; returns (figure, axes)."""
    import matplotlib.pyplot as plt

    set_publication_style()

    if figsize is None:
        figsize = (4 * ncols + 1, 3 * nrows + 0.5)

    return plt.subplots(nrows, ncols, figsize=figsize, squeeze=False, **kwargs)


def truncate_labels(labels: List[str], max_length: int = 45) -> List[str]:
    """Shorten long term names for axis tick labels."""
    return [
        label[:max_length - 3] + "..." if len(label) > max_length else label
        for label in labels
    ]
