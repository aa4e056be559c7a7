"""Shared figure styling for RIRA plots."""

from pathlib import Path
from typing import Dict, List, Sequence, Union
import logging

logger = logging.getLogger(__name__)

# Colors for the lineage-level consensus labels
LABEL_COLORS: Dict[str, str] = {
    "Bcell": "#1f77b4",
    "T_NK": "#d62728",
    "Myeloid": "#2ca02c",
    "Epithelial": "#9467bd",
    "Stromal": "#8c564b",
    "Erythrocyte": "#e377c2",
    "Platelet": "#bcbd22",
}

UNKNOWN_COLOR = "#bdc3c7"


def set_publication_style():
    """Set matplotlib style for publication-quality figures."""
    import matplotlib.pyplot as plt

    try:
        plt.style.use("seaborn-v0_8-whitegrid")
    except OSError:
        pass

    plt.rcParams.update({
        "font.size": 12,
        "axes.titlesize": 14,
        "axes.labelsize": 12,
        "xtick.labelsize": 10,
        "ytick.labelsize": 10,
        "figure.dpi": 100,
        "savefig.dpi": 200,
        "savefig.bbox": "tight",
        "axes.spines.top": False,
        "axes.spines.right": False,
    })


def get_label_palette(labels: Sequence[str]) -> Dict[str, str]:
    """Map labels to colors: fixed colors for known labels, tab20 otherwise."""
    import seaborn as sns

    extra = [label for label in labels if label not in LABEL_COLORS]
    generated = sns.color_palette("tab20", n_colors=max(len(extra), 1)).as_hex()

    palette: Dict[str, str] = {}
    for label in labels:
        if label in LABEL_COLORS:
            palette[label] = LABEL_COLORS[label]
        else:
            palette[label] = generated[extra.index(label) % len(generated)]
    return palette


def save_figure(
    fig,
    output_path: Union[str, Path],
    dpi: int = 200,
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

    fig.savefig(
        output_path,
        dpi=dpi,
        bbox_inches="tight",
        facecolor="white",
        edgecolor="none",
    )

    if close:
        plt.close(fig)

    logger.debug("Saved figure to %s", output_path)
    return output_path


def safe_filename(name: str) -> str:
    """Replace characters that are awkward in file names."""
    return "".join(c if c.isalnum() or c in "._-" else "_" for c in name)
