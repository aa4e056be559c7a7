"""Plotting for gating and consensus results."""

from .plots import (
    generate_all_figures,
    plot_consensus_bar,
    plot_embedding,
    plot_model_summary,
    plot_ucell_scores,
)
from .style import get_label_palette, save_figure, set_publication_style

__all__ = [
    "generate_all_figures",
    "plot_consensus_bar",
    "plot_embedding",
    "plot_model_summary",
    "plot_ucell_scores",
    "get_label_palette",
    "save_figure",
    "set_publication_style",
]
