"""Configuration classes for gating and consensus runs.

All parameters can be loaded from a YAML run config:

    params:
      min_cells: 30
      pos_thr: 0.13
      neg_thr: 0.13
      smooth_k: 10
    consensus:
      drop_ambiguous: true
      label_rename:
        Tcell.RM: T_NK
        NK.RM: T_NK
    preset: rhesus
    model_db_dir: /data/scGate_models
"""

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from rira.errors import ConfigurationError

_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0"}


def _check_keys(data: Dict[str, Any], known: set, what: str) -> None:
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown {what}: {unknown}")


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _TRUE_STRINGS | _FALSE_STRINGS:
        return value.strip().lower() in _TRUE_STRINGS
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ConfigurationError(f"{name} must be true or false, got {value!r}")


@dataclass
class GatingParams:
    """Parameters for running a single gate model.

    Attributes
    ----------
    min_cells : int
        Stop descending levels once fewer than this many candidates remain
    layer : str, optional
        Expression layer to score (None = adata.X)
    pos_thr : float
        Minimum UCell score for positive signatures
    neg_thr : float
        Maximum UCell score for negative signatures
    max_rank : int
        UCell rank cap
    w_neg : float
        Weight of negative genes within a signature
    smooth_k : int
        Neighbours used for kNN score smoothing (0 disables smoothing)
    smooth_decay : float
        Weight decay per neighbour rank
    n_features : int
        Variable genes used to build the smoothing neighbourhood
    n_pcs : int
        Principal components used to build the smoothing neighbourhood
    genes_blacklist : str or list, optional
        "default", None, or explicit genes excluded from smoothing features
    keep_levels : bool
        Keep per-level purity columns when attaching results
    random_seed : int
        Seed for PCA and neighbour search
    """

    min_cells: int = 30
    layer: Optional[str] = None
    pos_thr: float = 0.13
    neg_thr: float = 0.13
    max_rank: int = 1500
    w_neg: float = 1.0
    smooth_k: int = 10
    smooth_decay: float = 0.1
    n_features: int = 2000
    n_pcs: int = 30
    genes_blacklist: Union[str, List[str], None] = "default"
    keep_levels: bool = False
    random_seed: int = 1234

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GatingParams":
        """Build params from a mapping, rejecting unknown keys."""
        data = data or {}
        _check_keys(data, {f.name for f in fields(cls)}, "gating parameter(s)")
        if "keep_levels" in data:
            data = dict(data, keep_levels=_as_bool(data["keep_levels"], "keep_levels"))
        return cls(**data)


@dataclass
class ConsensusParams:
    """Parameters for consensus aggregation.

    Attributes
    ----------
    consensus_models : List[str], optional
        Models considered for the consensus (None = all models run)
    label_rename : Dict[str, str], optional
        Model name -> final label
    drop_ambiguous : bool
        Set consensus values with more than one label to undefined
    """

    consensus_models: Optional[List[str]] = None
    label_rename: Optional[Dict[str, Optional[str]]] = None
    drop_ambiguous: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ConsensusParams":
        """Build consensus params from a mapping, rejecting unknown keys."""
        data = data or {}
        _check_keys(data, {f.name for f in fields(cls)}, "consensus parameter(s)")
        consensus_models = data.get("consensus_models")
        label_rename = data.get("label_rename")
        return cls(
            consensus_models=list(consensus_models) if consensus_models is not None else None,
            label_rename=dict(label_rename) if label_rename is not None else None,
            drop_ambiguous=_as_bool(data.get("drop_ambiguous", False), "drop_ambiguous"),
        )


@dataclass
class RunConfig:
    """Full run configuration.

    Attributes
    ----------
    params : GatingParams
        Per-model gating parameters
    consensus : ConsensusParams
        Consensus parameters
    preset : str, optional
        Named preset providing models, consensus models and rename map
    models : List[str]
        Explicit model names (used when no preset is given)
    excluded_models : List[str]
        Models skipped when running every model-database model
    model_db_dir : str, optional
        Local scGate model database directory
    output_dir : str, optional
        Where plots and summaries are written
    """

    params: GatingParams = field(default_factory=GatingParams)
    consensus: ConsensusParams = field(default_factory=ConsensusParams)
    preset: Optional[str] = None
    models: List[str] = field(default_factory=list)
    excluded_models: List[str] = field(default_factory=lambda: ["Male", "Female"])
    model_db_dir: Optional[str] = None
    output_dir: Optional[str] = None

    @classmethod
    def from_yaml(cls, path: Path) -> "RunConfig":
        """Load configuration from YAML file.

        Parameters
        ----------
        path : Path
            Path to YAML config file

        Returns
        -------
        RunConfig
            Loaded configuration
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must hold a mapping")
        _check_keys(data, {f.name for f in fields(cls)}, f"config key(s) in {path.name}")

        return cls(
            params=GatingParams.from_dict(data.get("params")),
            consensus=ConsensusParams.from_dict(data.get("consensus")),
            preset=data.get("preset"),
            models=list(data.get("models", []) or []),
            excluded_models=list(data.get("excluded_models", ["Male", "Female"]) or []),
            model_db_dir=data.get("model_db_dir"),
            output_dir=data.get("output_dir"),
        )

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data: Dict[str, Any] = {
            "params": asdict(self.params),
            "consensus": asdict(self.consensus),
            "preset": self.preset,
            "models": list(self.models),
            "excluded_models": list(self.excluded_models),
            "model_db_dir": self.model_db_dir,
            "output_dir": self.output_dir,
        }

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
