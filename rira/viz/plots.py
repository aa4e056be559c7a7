"""Figures for gating and consensus results.

Provides:
- Consensus label counts (bar chart)
- Embedding colored by consensus label
- UCell score distributions per signature
- Per-model pure cell counts
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union
import logging

import numpy as np
import pandas as pd

from rira.core.consensus.aggregate import CONSENSUS_COL

logger = logging.getLogger(__name__)

EMBEDDING_KEYS = ("X_umap", "X_tsne", "X_pca")

UNDEFINED_LABEL = "Undefined"

PURITY_COL_SUFFIX = ".is.pure"


def _label_values(series: pd.Series) -> pd.Series:
    values = series.astype(object)
    return values.where(values.notna(), UNDEFINED_LABEL)


def _find_embedding(adata, basis: Optional[str] = None) -> Optional[str]:
    if basis is not None:
        key = basis if basis.startswith("X_") else f"X_{basis}"
        return key if key in adata.obsm else None
    for key in EMBEDDING_KEYS:
        if key in adata.obsm:
            return key
    return None


def model_call_columns(adata) -> List[str]:
    """The per-model `<model>.is.pure` columns of adata.obs."""
    return [str(c) for c in adata.obs.columns if str(c).endswith(PURITY_COL_SUFFIX)]


def plot_consensus_bar(
    adata,
    output_path: Union[str, Path],
    label_col: str = CONSENSUS_COL,
    dpi: int = 200,
) -> Optional[Path]:
    """Bar chart of cells per consensus label.

    Undefined cells are shown as their own bar.

    Args:
        adata: AnnData with the consensus column in obs
        output_path: Path to save figure
        label_col: Column with consensus labels
        dpi: Figure resolution

    Returns:
        Path to saved figure, or None if the column is missing
    """
    import matplotlib.pyplot as plt
    import seaborn as sns
    from .style import get_label_palette, save_figure, set_publication_style, UNKNOWN_COLOR

    set_publication_style()

    if label_col not in adata.obs.columns:
        logger.warning("Column '%s' not found, skipping consensus plot", label_col)
        return None

    labels = _label_values(adata.obs[label_col])
    counts = labels.value_counts()
    order = [label for label in counts.index if label != UNDEFINED_LABEL]
    if UNDEFINED_LABEL in counts.index:
        order.append(UNDEFINED_LABEL)

    palette = get_label_palette([label for label in order if label != UNDEFINED_LABEL])
    palette[UNDEFINED_LABEL] = UNKNOWN_COLOR
    fig, ax = plt.subplots(figsize=(max(6, 0.6 * len(order) + 2), 5))
    sns.countplot(
        x=labels.to_numpy(),
        hue=labels.to_numpy(),
        order=order,
        hue_order=order,
        palette=palette,
        legend=False,
        ax=ax,
    )
    ax.tick_params(axis="x", rotation=45)
    ax.set_title("scGate Consensus")
    ax.set_xlabel("scGate Call")
    ax.set_ylabel("# Cells")

    plt.tight_layout()
    return save_figure(fig, output_path, dpi=dpi)


def plot_embedding(
    adata,
    output_path: Union[str, Path],
    label_col: str = CONSENSUS_COL,
    basis: Optional[str] = None,
    title: Optional[str] = None,
    point_size: float = 1.0,
    alpha: float = 0.6,
    dpi: int = 200,
) -> Optional[Path]:
    """Plot a 2D embedding colored by consensus label (or any label column).

    Args:
        adata: AnnData with an embedding in obsm
        output_path: Path to save figure
        label_col: Column with labels
        basis: Embedding name (umap, tsne, pca); first available if None
        title: Plot title (default: "scGate Consensus")
        point_size: Size of scatter points
        alpha: Transparency
        dpi: Figure resolution

    Returns:
        Path to saved figure, or None if no embedding is available
    """
    import matplotlib.pyplot as plt
    from .style import get_label_palette, save_figure, set_publication_style, UNKNOWN_COLOR

    set_publication_style()

    key = _find_embedding(adata, basis)
    if key is None:
        logger.info("No embedding found in adata.obsm, skipping embedding plot")
        return None
    if label_col not in adata.obs.columns:
        logger.warning("Column '%s' not found, skipping embedding plot", label_col)
        return None

    coords = np.asarray(adata.obsm[key])
    labels = _label_values(adata.obs[label_col]).to_numpy()
    counts = pd.Series(labels).value_counts()
    defined = [label for label in counts.index if label != UNDEFINED_LABEL]
    palette = get_label_palette(defined)

    fig, ax = plt.subplots(figsize=(10, 8))

    # Undefined first so labeled cells draw on top
    mask = labels == UNDEFINED_LABEL
    if mask.any():
        ax.scatter(
            coords[mask, 0],
            coords[mask, 1],
            c=UNKNOWN_COLOR,
            s=point_size,
            alpha=alpha * 0.5,
            label=f"{UNDEFINED_LABEL} ({mask.sum():,})",
            rasterized=True,
        )

    for label in reversed(defined):
        mask = labels == label
        ax.scatter(
            coords[mask, 0],
            coords[mask, 1],
            c=palette[label],
            s=point_size,
            alpha=alpha,
            label=f"{label} ({mask.sum():,})",
            rasterized=True,
        )

    name = key[2:].upper()
    ax.set_xlabel(f"{name} 1")
    ax.set_ylabel(f"{name} 2")
    ax.set_title(f"{name}: {title or 'scGate Consensus'} (n={adata.n_obs:,})")
    ax.legend(loc="upper left", bbox_to_anchor=(1.02, 1), fontsize=8, markerscale=5)

    plt.tight_layout()
    return save_figure(fig, output_path, dpi=dpi)


def plot_ucell_scores(
    adata,
    output_dir: Union[str, Path],
    score_cols: Optional[Sequence[str]] = None,
    label_col: str = CONSENSUS_COL,
    dpi: int = 200,
) -> List[Path]:
    """Violin plot of each UCell score grouped by consensus label.

    The y axis is limited to the 5th-95th percentile range of the
    score, padded slightly.

    Args:
        adata: AnnData with ``*_UCell`` columns in obs
        output_dir: Directory for the figures (one per score)
        score_cols: Score columns to plot (default: every ``*_UCell`` column)
        label_col: Column used to group cells
        dpi: Figure resolution

    Returns:
        Paths of the saved figures
    """
    import matplotlib.pyplot as plt
    import seaborn as sns
    from .style import safe_filename, save_figure, set_publication_style

    set_publication_style()

    if score_cols is None:
        score_cols = [c for c in adata.obs.columns if str(c).endswith("_UCell")]
    if not score_cols:
        logger.info("No UCell score columns found")
        return []

    groups = (
        _label_values(adata.obs[label_col])
        if label_col in adata.obs.columns
        else pd.Series("All", index=adata.obs_names)
    )

    output_dir = Path(output_dir)
    paths: List[Path] = []
    for col in score_cols:
        if col not in adata.obs.columns:
            logger.warning("Score column '%s' not found, skipping", col)
            continue
        values = pd.to_numeric(adata.obs[col], errors="coerce")
        df = pd.DataFrame({"score": values.to_numpy(), "group": groups.to_numpy()})
        df = df.dropna(subset=["score"])
        if df.empty:
            logger.warning("Score column '%s' has no values, skipping", col)
            continue

        q05, q95 = np.quantile(df["score"], [0.05, 0.95])
        pad = max((q95 - q05) * 0.1, 0.01)

        fig, ax = plt.subplots(figsize=(max(6, 0.5 * df["group"].nunique() + 3), 5))
        try:
            sns.violinplot(data=df, x="group", y="score", ax=ax, cut=0, color="#aed6f1")
            ax.set_ylim(q05 - pad, q95 + pad)
            ax.set_title(col)
            ax.set_xlabel("scGate Call")
            ax.set_ylabel("UCell score")
            ax.tick_params(axis="x", rotation=45)

            plt.tight_layout()
            paths.append(save_figure(fig, output_dir / f"{safe_filename(col)}.png", dpi=dpi))
        except Exception as e:
            logger.error("Failed to plot %s: %s", col, e)
            plt.close(fig)

    return paths


def plot_model_summary(
    summary: pd.DataFrame,
    output_path: Union[str, Path],
    dpi: int = 200,
) -> Optional[Path]:
    """Horizontal bar chart of pure cells per gate model.

    Args:
        summary: Frame with ``model`` and ``n_pure`` columns
            (``GateRunResult.summary()``)
        output_path: Path to save figure
        dpi: Figure resolution

    Returns:
        Path to saved figure, or None if the summary is empty
    """
    import matplotlib.pyplot as plt
    from .style import save_figure, set_publication_style

    set_publication_style()

    if summary.empty:
        logger.info("Empty model summary, skipping plot")
        return None

    df = summary.sort_values("n_pure")
    colors = [
        "#3498db" if in_consensus else "#95a5a6"
        for in_consensus in df.get("in_consensus", pd.Series(True, index=df.index))
    ]

    fig, ax = plt.subplots(figsize=(8, max(3, 0.35 * len(df) + 1)))
    ax.barh(df["model"], df["n_pure"], color=colors)
    ax.set_xlabel("# Pure Cells")
    ax.set_title("Cells Called Pure per Gate Model")

    plt.tight_layout()
    return save_figure(fig, output_path, dpi=dpi)


def generate_all_figures(
    adata,
    output_dir: Union[str, Path],
    summary: Optional[pd.DataFrame] = None,
    label_col: str = CONSENSUS_COL,
    dpi: int = 200,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Path]:
    """Write every gating figure into ``output_dir/figures``.

    Args:
        adata: AnnData with attached gating results
        output_dir: Output directory
        summary: Per-model summary for the model bar chart
        label_col: Consensus column
        dpi: Figure resolution
        logger: Logger instance

    Returns:
        Figure name -> path, for figures that were written
    """
    from .style import safe_filename

    if logger is None:
        logger = logging.getLogger(__name__)

    fig_dir = Path(output_dir) / "figures"
    fig_dir.mkdir(parents=True, exist_ok=True)

    figures: Dict[str, Path] = {}

    path = plot_consensus_bar(adata, fig_dir / "consensus_counts.png", label_col=label_col, dpi=dpi)
    if path is not None:
        figures["consensus_counts"] = path

    path = plot_embedding(adata, fig_dir / "consensus_embedding.png", label_col=label_col, dpi=dpi)
    if path is not None:
        figures["consensus_embedding"] = path

    # One embedding per model call column
    model_cols = model_call_columns(adata) if _find_embedding(adata) is not None else []
    for col in model_cols:
        model = col[: -len(PURITY_COL_SUFFIX)]
        path = plot_embedding(
            adata,
            fig_dir / "models" / f"{safe_filename(model)}.png",
            label_col=col,
            title=model,
            dpi=dpi,
        )
        if path is not None:
            figures[f"models/{model}"] = path

    if summary is not None:
        path = plot_model_summary(summary, fig_dir / "model_pure_counts.png", dpi=dpi)
        if path is not None:
            figures["model_pure_counts"] = path

    for score_path in plot_ucell_scores(adata, fig_dir / "ucell", label_col=label_col, dpi=dpi):
        figures[f"ucell/{score_path.stem}"] = score_path

    logger.info("Wrote %d figures to %s", len(figures), fig_dir)
    return figures
