"""Consensus aggregation across gate models.

Combines per-model purity calls into one label per cell:

1. Raw consensus: the set of consensus-eligible models that called the
   cell pure (empty set = undefined).
2. Rename: each distinct raw set is mapped through the rename table once,
   and the result is shared by every cell with that raw set.
3. Ambiguity drop (optional): final sets with more than one label become
   undefined.

The aggregator is a pure function of its inputs; writing the result onto
an AnnData happens in ``GateRunResult.attach``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from rira.errors import ConfigurationError

from .labels import LabelSet, natural_categorical

logger = logging.getLogger(__name__)

RAW_COL = "scGateRaw"
CONSENSUS_COL = "scGateConsensus"


@dataclass
class ConsensusResult:
    """Result of consensus aggregation.

    Attributes:
        raw: Per-cell LabelSet of models that called the cell pure
        final: Per-cell LabelSet after rename and ambiguity drop
        renamed: Raw joined value -> final joined value, for changed values
        dropped: Ambiguous joined value -> number of cells set to undefined
        consensus_models: Models that were considered
    """

    raw: pd.Series
    final: pd.Series
    renamed: Dict[str, Optional[str]] = field(default_factory=dict)
    dropped: Dict[str, int] = field(default_factory=dict)
    consensus_models: Sequence[str] = ()

    def raw_labels(self) -> pd.Series:
        """Raw consensus as a naturally ordered categorical Series."""
        return pd.Series(
            natural_categorical(s.joined() for s in self.raw),
            index=self.raw.index,
            name=RAW_COL,
        )

    def final_labels(self) -> pd.Series:
        """Final consensus as a naturally ordered categorical Series."""
        return pd.Series(
            natural_categorical(s.joined() for s in self.final),
            index=self.final.index,
            name=CONSENSUS_COL,
        )

    def to_frame(self) -> pd.DataFrame:
        """Both consensus columns, indexed by cell."""
        return pd.concat([self.raw_labels(), self.final_labels()], axis=1)

    def summary(self) -> pd.DataFrame:
        """Cell counts per final consensus label, undefined included."""
        counts = self.final_labels().value_counts(dropna=False, sort=False)
        df = pd.DataFrame({
            "label": [None if pd.isna(k) else str(k) for k in counts.index],
            "n_cells": counts.to_numpy(dtype=int),
        })
        df["fraction"] = df["n_cells"] / max(len(self.final), 1)
        return df


def calls_to_frame(calls: Mapping[str, pd.Series]) -> pd.DataFrame:
    """Stack per-model purity calls into a cells × models boolean frame.

    Accepts boolean Series, or label Series where ``"Pure"`` means True.
    Missing values are kept as NA.
    """
    columns = {}
    for model, series in calls.items():
        if series.dtype == bool or pd.api.types.is_bool_dtype(series):
            columns[model] = series.astype("boolean")
        else:
            values = series.astype(object)
            is_pure = values.eq("Pure")
            columns[model] = is_pure.astype("boolean").mask(values.isna())
    return pd.DataFrame(columns)


def _object_series(values: Sequence[LabelSet], index: pd.Index) -> pd.Series:
    # Filled element-wise so pandas does not unpack the list-like LabelSets
    arr = np.empty(len(values), dtype=object)
    for i, value in enumerate(values):
        arr[i] = value
    return pd.Series(arr, index=index, dtype=object)


def _raw_label_sets(calls: pd.DataFrame, models: Sequence[str]) -> pd.Series:
    if not models:
        return _object_series([LabelSet()] * len(calls), calls.index)

    matrix = calls[list(models)].fillna(False).astype(bool).to_numpy()
    names = np.asarray(models, dtype=object)

    # Cells sharing a call pattern share one LabelSet
    cache: Dict[bytes, LabelSet] = {}
    out = []
    for row in matrix:
        key = row.tobytes()
        label_set = cache.get(key)
        if label_set is None:
            label_set = LabelSet.of(names[row])
            cache[key] = label_set
        out.append(label_set)
    return _object_series(out, calls.index)


def aggregate_consensus(
    calls: pd.DataFrame,
    consensus_models: Optional[Sequence[str]] = None,
    label_rename: Optional[Mapping[str, Optional[str]]] = None,
    drop_ambiguous: bool = False,
    logger: Optional[logging.Logger] = None,
) -> ConsensusResult:
    """Build consensus labels from per-model purity calls.

    Args:
        calls: Cells × models frame; True where the model called the cell
            pure. False and NA both count as not pure.
        consensus_models: Models to consider (default: every column)
        label_rename: Model/label name -> final label. Many-to-one allowed.
        drop_ambiguous: Set multi-label final values to undefined
        logger: Logger instance

    Returns:
        ConsensusResult

    Raises:
        ConfigurationError: If a consensus model is not a column of calls
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    if consensus_models is None:
        models = list(calls.columns)
    else:
        models = list(dict.fromkeys(consensus_models))
        unknown = [m for m in models if m not in calls.columns]
        if unknown:
            raise ConfigurationError(
                f"Consensus model(s) not among the models run: {', '.join(unknown)}"
            )

    if not models:
        logger.warning("No consensus models; every cell's consensus is undefined")

    raw = _raw_label_sets(calls, models)
    final = raw.copy()
    renamed: Dict[str, Optional[str]] = {}

    if label_rename:
        distinct = {s for s in raw if s}
        mapped: Dict[LabelSet, LabelSet] = {}
        for raw_set in sorted(distinct, key=lambda s: s.labels):
            new_set = raw_set.rename(label_rename)
            mapped[raw_set] = new_set
            if new_set != raw_set:
                logger.info("Renaming: %s to %s", raw_set.joined(), new_set.joined())
                renamed[raw_set.joined()] = new_set.joined()
        final = _object_series([mapped.get(s, s) for s in raw], raw.index)

    dropped: Dict[str, int] = {}
    if drop_ambiguous:
        ambiguous = final.map(lambda s: s.is_ambiguous).astype(bool)
        if ambiguous.any():
            counts = final[ambiguous].map(LabelSet.joined).value_counts()
            dropped = {str(k): int(v) for k, v in counts.items()}
            logger.info("Dropping the following ambiguous consensus labels:")
            for value, n in dropped.items():
                logger.info("  %s: %d", value, n)
            final = _object_series(
                [LabelSet() if amb else s for s, amb in zip(final, ambiguous)],
                final.index,
            )

    n_assigned = int(final.map(bool).sum())
    logger.info(
        "Consensus: %d/%d cells labeled across %d models",
        n_assigned,
        len(final),
        len(models),
    )

    return ConsensusResult(
        raw=raw,
        final=final,
        renamed=renamed,
        dropped=dropped,
        consensus_models=tuple(models),
    )
