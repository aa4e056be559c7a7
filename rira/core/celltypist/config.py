"""Parameters for CellTypist annotation and training."""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from rira.errors import ConfigurationError

DEFAULT_MODEL = "Immune_All_Low.pkl"

ANNOTATION_MODES = ("best match", "prob match")


def _from_mapping(cls, data: Optional[Dict[str, Any]], what: str):
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown {what}: {unknown}")
    return cls(**data)


@dataclass
class CellTypistParams:
    """Parameters for ``run_celltypist``.

    Attributes
    ----------
    model : str
        Model file path, a model name in the RIRA model directory
        (e.g. ``RIRA_Immune_v2``), or a CellTypist built-in model name
    column_prefix : str
        Prefix for every column written to ``adata.obs``
    majority_voting : bool
        Refine predictions by majority voting within over-clusters
    over_clustering : str, optional
        obs column used as over-clustering (CellTypist builds one if None)
    mode : str
        ``"best match"`` or ``"prob match"``
    p_thres : float
        Probability threshold for ``"prob match"``
    min_prop : float
        Minimum proportion of the dominant label in an over-cluster
    max_batch_size : int, optional
        Annotate cells in batches of at most this size
    layer : str, optional
        Layer holding log1p-normalized (10,000 counts) expression
    retain_probability_matrix : bool
        Also write per-class probability columns
    use_gpu : bool
        Let CellTypist use the GPU for over-clustering
    """

    model: str = DEFAULT_MODEL
    column_prefix: str = ""
    majority_voting: bool = True
    over_clustering: Optional[str] = None
    mode: str = "best match"
    p_thres: float = 0.5
    min_prop: float = 0.0
    max_batch_size: Optional[int] = None
    layer: Optional[str] = None
    retain_probability_matrix: bool = False
    use_gpu: bool = False

    def __post_init__(self):
        if self.mode not in ANNOTATION_MODES:
            raise ConfigurationError(
                f"Unknown CellTypist mode '{self.mode}'. Expected one of {list(ANNOTATION_MODES)}"
            )
        if self.max_batch_size is not None and self.max_batch_size < 1:
            raise ConfigurationError("max_batch_size must be positive")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CellTypistParams":
        """Build params from a mapping, rejecting unknown keys."""
        return _from_mapping(cls, data, "CellTypist parameter(s)")


@dataclass
class TrainingParams:
    """Parameters for ``train_celltypist``.

    Attributes
    ----------
    min_cells_per_class : int
        Classes with fewer labeled cells are dropped before training
    excluded_classes : List[str]
        Classes never trained on
    feature_inclusion_list : List[str], optional
        Train only on these genes
    feature_exclusion_list : List[str]
        Genes removed before training
    max_allowable_classes : int
        Training fails if more classes remain
    feature_selection : bool
        Let CellTypist select top genes in a two-pass training
    use_sgd : bool
        Stochastic gradient descent instead of logistic regression
    mini_batch : bool
        Mini-batch SGD (implies ``use_sgd``)
    balance_cell_type : bool
        Balance classes when sampling mini-batches
    max_iter : int, optional
        Maximum solver iterations (CellTypist default if None)
    n_jobs : int, optional
        CPU cores for training
    layer : str, optional
        Layer holding log1p-normalized expression
    """

    min_cells_per_class: int = 20
    excluded_classes: List[str] = field(default_factory=list)
    feature_inclusion_list: Optional[List[str]] = None
    feature_exclusion_list: List[str] = field(default_factory=list)
    max_allowable_classes: int = 500
    feature_selection: bool = False
    use_sgd: bool = False
    mini_batch: bool = False
    balance_cell_type: bool = False
    max_iter: Optional[int] = None
    n_jobs: Optional[int] = None
    layer: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TrainingParams":
        """Build params from a mapping, rejecting unknown keys."""
        return _from_mapping(cls, data, "training parameter(s)")
