"""Gate model runner.

Runs one gate model per call (``run_gate``) or a list of models followed by
consensus aggregation (``run_gates_for_models``). Results are returned as
records; ``GateRunResult.attach`` is the only place that writes onto the
AnnData.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

try:
    import scanpy as sc
except ImportError:
    sc = None

from rira.errors import ConfigurationError
from rira.core.consensus.aggregate import ConsensusResult, aggregate_consensus

from .config import ConsensusParams, GatingParams
from .models import GateModel, Signature
from .registry import GateRegistry
from .scoring import compute_ucell_scores, smooth_scores

logger = logging.getLogger(__name__)

PURE = "Pure"
IMPURE = "Impure"
PURITY_SUFFIX = "is.pure"


def _purity_categorical(values: Sequence[Optional[str]], index: pd.Index, name: str) -> pd.Series:
    return pd.Series(
        pd.Categorical(values, categories=[PURE, IMPURE]),
        index=index,
        name=name,
    )


@dataclass
class GateResult:
    """Result of running one gate model.

    Attributes:
        model: Model name
        purity: Categorical Pure/Impure per cell
        levels: Per-level Pure/Impure calls (NA where the cell was not
            evaluated at that level), columns ``<output_col>.level<N>``
        scores: UCell scores per signature; NaN where not scored
        stopped_at: Level at which evaluation stopped for too few cells
    """

    model: str
    purity: pd.Series
    levels: pd.DataFrame
    scores: pd.DataFrame
    stopped_at: Optional[str] = None

    @property
    def is_pure(self) -> pd.Series:
        return self.purity.astype(object).eq(PURE)

    @property
    def n_pure(self) -> int:
        return int(self.is_pure.sum())


def _unique_signatures(signatures: Iterable[Signature]) -> List[Signature]:
    seen: Dict[str, Signature] = {}
    for sig in signatures:
        seen.setdefault(sig.name, sig)
    return list(seen.values())


def run_gate(
    adata: "sc.AnnData",
    model: Union[str, GateModel],
    params: Optional[GatingParams] = None,
    output_col: str = PURITY_SUFFIX,
    registry: Optional[GateRegistry] = None,
    logger: Optional[logging.Logger] = None,
) -> GateResult:
    """Classify each cell as Pure/Impure for one gate model.

    Levels are evaluated in order on the cells still pure after the
    previous level. At each level a cell stays pure if its best positive
    signature score is >= pos_thr (or the level has no positive signatures)
    and every negative signature score is < neg_thr. If fewer than
    ``min_cells`` candidates remain before a level, evaluation stops and
    the remaining candidates stay pure.

    Args:
        adata: AnnData with genes as var_names
        model: GateModel or a model name resolved through ``registry``
        params: Gating parameters (defaults if None)
        output_col: Base name for the per-level columns
        registry: Registry used when ``model`` is a name
        logger: Logger instance

    Returns:
        GateResult

    Raises:
        ConfigurationError: If ``model`` is an unknown name
    """
    if logger is None:
        logger = logging.getLogger(__name__)
    params = params or GatingParams()
    if isinstance(model, str):
        model = (registry or GateRegistry()).get(model)

    obs_names = adata.obs_names
    n_cells = adata.n_obs
    candidates = np.ones(n_cells, dtype=bool)
    level_calls: Dict[str, pd.Series] = {}
    scores = pd.DataFrame(index=obs_names.copy())
    stopped_at = None

    for i, level in enumerate(model.levels, start=1):
        n_candidates = int(candidates.sum())
        if n_candidates == 0 or n_candidates < params.min_cells:
            logger.warning(
                "Model %s: %d cells left before %s (min_cells=%d), stopping",
                model.name,
                n_candidates,
                level.name,
                params.min_cells,
            )
            stopped_at = level.name
            break

        sub = adata[candidates]
        signatures = _unique_signatures(level.signatures)
        level_scores = compute_ucell_scores(
            sub,
            signatures,
            layer=params.layer,
            max_rank=params.max_rank,
            w_neg=params.w_neg,
        )
        if params.smooth_k > 0:
            level_scores = smooth_scores(
                sub,
                level_scores,
                k=params.smooth_k,
                decay=params.smooth_decay,
                layer=params.layer,
                n_features=params.n_features,
                n_pcs=params.n_pcs,
                genes_blacklist=params.genes_blacklist,
                random_seed=params.random_seed,
            )

        passed = np.ones(n_candidates, dtype=bool)
        if level.positive:
            pos_cols = list(dict.fromkeys(s.score_column for s in level.positive))
            passed &= (level_scores[pos_cols].max(axis=1) >= params.pos_thr).to_numpy()
        if level.negative:
            neg_cols = list(dict.fromkeys(s.score_column for s in level.negative))
            passed &= (level_scores[neg_cols].max(axis=1) < params.neg_thr).to_numpy()

        calls = np.full(n_cells, None, dtype=object)
        calls[candidates] = np.where(passed, PURE, IMPURE)
        level_calls[f"{output_col}.level{i}"] = _purity_categorical(
            calls, obs_names, f"{output_col}.level{i}"
        )

        full = level_scores.reindex(obs_names)
        for col in full.columns:
            if col in scores.columns:
                scores[col] = scores[col].combine_first(full[col])
            else:
                scores[col] = full[col]

        next_candidates = candidates.copy()
        next_candidates[candidates] = passed
        candidates = next_candidates

        logger.debug(
            "Model %s %s: %d/%d cells pass",
            model.name,
            level.name,
            int(passed.sum()),
            n_candidates,
        )

    purity = _purity_categorical(
        np.where(candidates, PURE, IMPURE), obs_names, output_col
    )
    levels = pd.DataFrame(level_calls, index=obs_names)

    logger.info(
        "Model %s: %d/%d cells pure",
        model.name,
        int(candidates.sum()),
        n_cells,
    )

    return GateResult(
        model=model.name,
        purity=purity,
        levels=levels,
        scores=scores,
        stopped_at=stopped_at,
    )


@dataclass
class GateRunResult:
    """Result of running several gate models plus consensus.

    Attributes:
        gate_results: Model name -> GateResult, in run order
        consensus: Consensus aggregation result
        params: Gating parameters used
    """

    gate_results: Dict[str, GateResult]
    consensus: ConsensusResult
    params: GatingParams = field(default_factory=GatingParams)

    @property
    def models(self) -> List[str]:
        return list(self.gate_results)

    def calls(self) -> pd.DataFrame:
        """Cells × models boolean purity calls."""
        return pd.DataFrame(
            {name: res.is_pure for name, res in self.gate_results.items()}
        )

    def call_columns(self) -> pd.DataFrame:
        """Per-model call columns: the model name where pure, NA elsewhere."""
        columns = {}
        for name, res in self.gate_results.items():
            values = np.where(res.is_pure.to_numpy(), name, None)
            columns[f"{name}.{PURITY_SUFFIX}"] = pd.Series(
                pd.Categorical(values, categories=[name]),
                index=res.purity.index,
            )
        return pd.DataFrame(columns)

    def score_columns(self) -> pd.DataFrame:
        """UCell scores across models.

        Where models share a signature, the last model to score a cell wins;
        cells it did not score keep the earlier model's value.
        """
        combined: Optional[pd.DataFrame] = None
        for res in self.gate_results.values():
            combined = res.scores if combined is None else res.scores.combine_first(combined)
        if combined is None:
            return pd.DataFrame()
        return combined

    def level_columns(self) -> pd.DataFrame:
        """Per-level calls; column names already carry the model prefix."""
        frames = [res.levels for res in self.gate_results.values()]
        if not frames:
            return pd.DataFrame()
        return pd.concat(frames, axis=1)

    def attach(self, adata: "sc.AnnData") -> None:
        """Write results onto ``adata.obs``.

        Adds ``<model>.is.pure``, ``scGateRaw``, ``scGateConsensus`` and
        ``<signature>_UCell`` columns, plus per-level columns when
        ``params.keep_levels`` is set. Existing columns are overwritten.

        Raises:
            ValueError: If adata's cells differ from the ones that were run
        """
        consensus = self.consensus.to_frame()
        if not consensus.index.equals(adata.obs_names):
            raise ValueError("AnnData cells do not match the gated cells")

        parts = [self.call_columns(), self.score_columns(), consensus]
        if self.params.keep_levels:
            parts.append(self.level_columns())

        for part in parts:
            for col in part.columns:
                adata.obs[col] = part[col].values

    def summary(self) -> pd.DataFrame:
        """Per-model pure cell counts."""
        n_cells = len(self.consensus.final)
        rows = []
        for name, res in self.gate_results.items():
            rows.append({
                "model": name,
                "n_pure": res.n_pure,
                "fraction_pure": res.n_pure / max(n_cells, 1),
                "in_consensus": name in self.consensus.consensus_models,
                "stopped_at": res.stopped_at,
            })
        return pd.DataFrame(rows)


def run_gates_for_models(
    adata: "sc.AnnData",
    model_names: Sequence[str],
    params: Optional[GatingParams] = None,
    consensus_models: Optional[Sequence[str]] = None,
    label_rename: Optional[Mapping[str, Optional[str]]] = None,
    drop_ambiguous: bool = False,
    registry: Optional[GateRegistry] = None,
    logger: Optional[logging.Logger] = None,
) -> GateRunResult:
    """Run each gate model and build the consensus label.

    Every model name is resolved before anything runs.

    Args:
        adata: AnnData with genes as var_names (not modified)
        model_names: Models to run, assumed to be non-overlapping populations
        params: Gating parameters shared by all models
        consensus_models: Models considered for the consensus (None = all)
        label_rename: Model name -> final label (many-to-one allowed)
        drop_ambiguous: Set multi-label consensus values to undefined
        registry: Gate registry (defaults to packaged gates)
        logger: Logger instance

    Returns:
        GateRunResult; call ``attach(adata)`` to write the columns

    Raises:
        ConfigurationError: For unknown model or consensus model names
    """
    if logger is None:
        logger = logging.getLogger(__name__)
    params = params or GatingParams()
    registry = registry or GateRegistry()

    models = registry.resolve(model_names)
    if consensus_models is not None:
        extra = [m for m in consensus_models if m not in models]
        if extra:
            raise ConfigurationError(
                f"Consensus model(s) not among the models run: {', '.join(extra)}"
            )

    logger.info("=" * 70)
    logger.info("SCGATE")
    logger.info("=" * 70)
    logger.info("Cells: %d, models: %d", adata.n_obs, len(models))
    logger.info("pos_thr=%.3f, neg_thr=%.3f, min_cells=%d", params.pos_thr, params.neg_thr, params.min_cells)

    gate_results: Dict[str, GateResult] = {}
    for name, model in models.items():
        logger.info("Running model: %s", name)
        gate_results[name] = run_gate(
            adata,
            model,
            params=params,
            output_col=f"{name}.{PURITY_SUFFIX}",
            logger=logger,
        )

    calls = pd.DataFrame({name: res.is_pure for name, res in gate_results.items()})
    consensus = aggregate_consensus(
        calls,
        consensus_models=consensus_models,
        label_rename=label_rename,
        drop_ambiguous=drop_ambiguous,
        logger=logger,
    )

    return GateRunResult(gate_results=gate_results, consensus=consensus, params=params)


def run_gates_with_params(
    adata: "sc.AnnData",
    model_names: Sequence[str],
    params: Optional[GatingParams] = None,
    consensus: Optional[ConsensusParams] = None,
    registry: Optional[GateRegistry] = None,
    logger: Optional[logging.Logger] = None,
) -> GateRunResult:
    """``run_gates_for_models`` taking a ConsensusParams bundle."""
    consensus = consensus or ConsensusParams()
    return run_gates_for_models(
        adata,
        model_names,
        params=params,
        consensus_models=consensus.consensus_models,
        label_rename=consensus.label_rename,
        drop_ambiguous=consensus.drop_ambiguous,
        registry=registry,
        logger=logger,
    )
