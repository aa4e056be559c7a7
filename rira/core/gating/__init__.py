"""Gate models, UCell scoring and the multi-model gating runner.

Example Usage
-------------
Rhesus macaque preset:

    >>> from rira.core.gating import run_gates_for_preset
    >>> result = run_gates_for_preset(adata, "rhesus", drop_ambiguous=True)
    >>> adata.obs["scGateConsensus"].value_counts()

Explicit models:

    >>> from rira.core.gating import GatingParams, run_gates_for_models
    >>> result = run_gates_for_models(
    ...     adata,
    ...     ["Tcell.RM", "NK.RM", "Bcell.RM"],
    ...     params=GatingParams(pos_thr=0.2),
    ...     label_rename={"Tcell.RM": "T_NK", "NK.RM": "T_NK"},
    ... )
    >>> result.attach(adata)
"""

# Configuration
from .config import ConsensusParams, GatingParams, RunConfig

# Gate definitions
from .models import (
    GateLevel,
    GateModel,
    Signature,
    load_gate_model,
    load_master_table,
    parse_signature,
)
from .registry import DEFAULT_GATE_DIR, MODEL_DB_ENV, GateRegistry, list_available_gates

# Scoring
from .scoring import DEFAULT_GENES_BLACKLIST, compute_ucell_scores, smooth_scores

# Runner
from .runner import (
    IMPURE,
    PURE,
    GateResult,
    GateRunResult,
    run_gate,
    run_gates_for_models,
    run_gates_with_params,
)

# Export
from .export import build_run_summary, export_all

# Engine
from .engine import (
    GatingEngine,
    ModelPlan,
    default_model_names,
    run_gates_for_preset,
    run_gates_with_default_models,
)

__all__ = [
    # Configuration
    "ConsensusParams",
    "GatingParams",
    "RunConfig",
    # Gate definitions
    "GateLevel",
    "GateModel",
    "Signature",
    "load_gate_model",
    "load_master_table",
    "parse_signature",
    "DEFAULT_GATE_DIR",
    "MODEL_DB_ENV",
    "GateRegistry",
    "list_available_gates",
    # Scoring
    "DEFAULT_GENES_BLACKLIST",
    "compute_ucell_scores",
    "smooth_scores",
    # Runner
    "IMPURE",
    "PURE",
    "GateResult",
    "GateRunResult",
    "run_gate",
    "run_gates_for_models",
    "run_gates_with_params",
    # Export
    "build_run_summary",
    "export_all",
    # Engine
    "GatingEngine",
    "ModelPlan",
    "default_model_names",
    "run_gates_for_preset",
    "run_gates_with_default_models",
]
