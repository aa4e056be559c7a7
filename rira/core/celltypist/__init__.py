"""CellTypist annotation and model training.

Example Usage
-------------
    >>> from rira.core.celltypist import CellTypistParams, run_celltypist
    >>> result = run_celltypist(
    ...     adata, CellTypistParams(model="RIRA_TNK_v2", column_prefix="RIRA_TNK_v2.")
    ... )
    >>> result.attach(adata)

Training:

    >>> from rira.core.celltypist import train_celltypist
    >>> train_celltypist(adata, "cell_type", "models/RIRA_Custom.pkl")
"""

from .annotate import (
    CellTypistResult,
    classify_immune_cells,
    probability_column,
    run_celltypist,
)
from .config import DEFAULT_MODEL, CellTypistParams, TrainingParams
from .models import (
    IMMUNE_MODEL,
    MODEL_DIR_ENV,
    find_model_file,
    list_local_models,
    load_model,
)
from .train import select_training_cells, train_celltypist

__all__ = [
    "CellTypistParams",
    "CellTypistResult",
    "DEFAULT_MODEL",
    "IMMUNE_MODEL",
    "MODEL_DIR_ENV",
    "TrainingParams",
    "classify_immune_cells",
    "find_model_file",
    "list_local_models",
    "load_model",
    "probability_column",
    "run_celltypist",
    "select_training_cells",
    "train_celltypist",
]
