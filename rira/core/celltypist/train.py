"""Training custom CellTypist models from labeled AnnData."""

import logging
from pathlib import Path
from typing import Optional, Union

import anndata as ad
import celltypist
import pandas as pd

from rira.errors import ConfigurationError

from .config import TrainingParams

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def select_training_cells(
    labels: pd.Series,
    params: TrainingParams,
    logger: Optional[logging.Logger] = None,
) -> pd.Series:
    """Boolean mask of cells kept for training.

    Cells with NA labels or an excluded class are dropped first, then every
    class with fewer than ``params.min_cells_per_class`` remaining cells.
    """
    if logger is None:
        logger = logging.getLogger(__name__)
    values = labels.astype(object)
    keep = values.notna() & ~values.isin(params.excluded_classes)
    counts = values[keep].value_counts()
    small = counts[counts < params.min_cells_per_class]
    for label, n in small.items():
        logger.info("Dropping class '%s': %d cells < %d", label, n, params.min_cells_per_class)
    return keep & ~values.isin(small.index)


def train_celltypist(
    adata: ad.AnnData,
    label_col: str,
    output_file: PathLike,
    params: Optional[TrainingParams] = None,
    logger: Optional[logging.Logger] = None,
) -> Path:
    """Train a CellTypist model on ``adata.obs[label_col]`` and save it.

    Expression must be log1p-normalized to 10,000 counts per cell (in X,
    or in ``params.layer``).

    Args:
        adata: Labeled AnnData (not modified)
        label_col: obs column holding the training labels
        output_file: Destination ``.pkl`` file
        params: Training parameters (defaults if None)
        logger: Logger instance

    Returns:
        Path of the written model

    Raises:
        ConfigurationError: For a missing label column or layer, too few or
            too many classes, or no genes left after feature filtering
    """
    if logger is None:
        logger = logging.getLogger(__name__)
    params = params or TrainingParams()

    if label_col not in adata.obs.columns:
        raise ConfigurationError(f"Label column '{label_col}' not found in adata.obs")
    if params.layer is not None and params.layer not in adata.layers:
        raise ConfigurationError(f"Layer '{params.layer}' not found in adata.layers")

    logger.info("=" * 70)
    logger.info("CELLTYPIST TRAINING")
    logger.info("=" * 70)

    cells = select_training_cells(adata.obs[label_col], params, logger=logger).to_numpy()
    labels = adata.obs[label_col].astype(object)[cells]
    n_classes = labels.nunique()
    if n_classes < 2:
        raise ConfigurationError(
            f"Need at least 2 classes to train, found {n_classes} after filtering"
        )
    if n_classes > params.max_allowable_classes:
        raise ConfigurationError(
            f"{n_classes} classes exceed max_allowable_classes={params.max_allowable_classes}"
        )

    genes = adata.var_names
    if params.feature_inclusion_list is not None:
        genes = genes[genes.isin(params.feature_inclusion_list)]
    if params.feature_exclusion_list:
        genes = genes[~genes.isin(params.feature_exclusion_list)]
    if len(genes) == 0:
        raise ConfigurationError("No genes left after feature inclusion/exclusion")
    subset_genes = len(genes) < adata.n_vars

    gene_idx = adata.var_names.get_indexer(genes)
    matrix = adata.layers[params.layer] if params.layer is not None else adata.X
    X = matrix[cells][:, gene_idx]

    logger.info(
        "Training on %d cells, %d genes, %d classes", X.shape[0], X.shape[1], n_classes
    )
    for label, n in labels.value_counts().items():
        logger.info("  %s: %d", label, n)

    model = celltypist.train(
        X,
        labels=labels.to_numpy(dtype=str),
        genes=genes.to_numpy(dtype=str),
        # Normalization no longer sums to 10,000 once genes are removed
        check_expression=not subset_genes,
        use_SGD=params.use_sgd or params.mini_batch,
        mini_batch=params.mini_batch,
        balance_cell_type=params.balance_cell_type,
        feature_selection=params.feature_selection,
        max_iter=params.max_iter,
        n_jobs=params.n_jobs,
    )

    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    model.write(str(output_file))
    logger.info("Saved model: %s", output_file)
    return output_file
