"""CellTypist annotation.

Runs a CellTypist model over an AnnData, optionally in batches, and returns
a result record; ``CellTypistResult.attach`` writes the columns onto
``adata.obs``:

- ``<prefix>predicted_labels``: per-cell prediction
- ``<prefix>over_clustering`` and ``<prefix>majority_voting``: with
  majority voting
- ``<prefix>cellclass``: majority vote (else prediction), with
  unassigned and multi-label calls set to NA
- ``<prefix>conf_score``: probability of the predicted label
- ``<prefix>prob.<class>``: per-class probabilities, if requested
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import anndata as ad
import celltypist
import numpy as np
import pandas as pd
from celltypist import models

from rira.errors import ConfigurationError

from .config import CellTypistParams
from .models import IMMUNE_MODEL, load_model

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

UNASSIGNED = "Unassigned"
MULTI_LABEL_SEPARATOR = "|"


def probability_column(label: str, prefix: str = "") -> str:
    """obs column name for a class probability, e.g. ``prob.NK.Cells``."""
    return f"{prefix}prob.{re.sub(r'[^0-9A-Za-z_.]', '.', str(label))}"


@dataclass
class CellTypistResult:
    """Result of a CellTypist run.

    Attributes:
        model: Model name or path that was run
        labels: Per-cell ``predicted_labels`` (plus ``over_clustering`` and
            ``majority_voting`` with majority voting)
        probabilities: Cells × classes probability matrix
        params: Parameters used
    """

    model: str
    labels: pd.DataFrame
    probabilities: pd.DataFrame
    params: CellTypistParams

    @property
    def call_column(self) -> str:
        if "majority_voting" in self.labels.columns:
            return "majority_voting"
        return "predicted_labels"

    def cellclass(self) -> pd.Series:
        """Final call per cell; unassigned and multi-label calls are NA."""
        calls = self.labels[self.call_column].astype(object)
        unresolved = calls.eq(UNASSIGNED) | calls.map(
            lambda v: isinstance(v, str) and MULTI_LABEL_SEPARATOR in v
        ).astype(bool)
        return calls.mask(unresolved).astype("category")

    def conf_score(self) -> pd.Series:
        """Probability of each cell's predicted label."""
        predicted = self.labels["predicted_labels"].astype(object)
        probs = self.probabilities
        values = [
            probs.at[cell, label] if label in probs.columns else np.nan
            for cell, label in zip(predicted.index, predicted)
        ]
        return pd.Series(values, index=predicted.index, dtype=float)

    def to_frame(self) -> pd.DataFrame:
        """Every output column, prefixed, indexed by cell."""
        prefix = self.params.column_prefix
        columns: Dict[str, pd.Series] = {}
        for col in self.labels.columns:
            columns[f"{prefix}{col}"] = self.labels[col].astype("category")
        columns[f"{prefix}cellclass"] = self.cellclass()
        columns[f"{prefix}conf_score"] = self.conf_score()
        if self.params.retain_probability_matrix:
            for label in self.probabilities.columns:
                columns[probability_column(label, prefix)] = self.probabilities[label]
        return pd.DataFrame(columns, index=self.labels.index)

    def attach(self, adata: ad.AnnData) -> None:
        """Write the output columns onto ``adata.obs``, overwriting any existing.

        Raises:
            ValueError: If adata's cells differ from the annotated cells
        """
        frame = self.to_frame()
        if not frame.index.equals(adata.obs_names):
            raise ValueError("AnnData cells do not match the annotated cells")
        for col in frame.columns:
            adata.obs[col] = frame[col].values

    def summary(self) -> pd.DataFrame:
        """Cell counts per final call, NA included."""
        counts = self.cellclass().value_counts(dropna=False)
        counts = counts[counts > 0]
        return pd.DataFrame({
            "label": [None if pd.isna(k) else str(k) for k in counts.index],
            "n_cells": counts.to_numpy(dtype=int),
        })


def _query_adata(adata: ad.AnnData, params: CellTypistParams) -> ad.AnnData:
    # A bare copy so CellTypist neither reads adata.raw nor writes to adata
    if params.layer is not None:
        if params.layer not in adata.layers:
            raise ConfigurationError(f"Layer '{params.layer}' not found in adata.layers")
        matrix = adata.layers[params.layer]
    else:
        matrix = adata.X
    obs = pd.DataFrame(index=adata.obs_names.copy())
    if params.over_clustering is not None:
        if params.over_clustering not in adata.obs.columns:
            raise ConfigurationError(
                f"Over-clustering column '{params.over_clustering}' not found in adata.obs"
            )
        obs[params.over_clustering] = adata.obs[params.over_clustering].astype(str).values
    return ad.AnnData(X=matrix, obs=obs, var=pd.DataFrame(index=adata.var_names.copy()))


def _annotate_batch(query: ad.AnnData, model: models.Model, params: CellTypistParams):
    predictions = celltypist.annotate(
        query,
        model=model,
        mode=params.mode,
        p_thres=params.p_thres,
        majority_voting=params.majority_voting,
        over_clustering=params.over_clustering,
        min_prop=params.min_prop,
        use_GPU=params.use_gpu,
    )
    return predictions.predicted_labels, predictions.probability_matrix


def _batch_slices(n_cells: int, max_batch_size: Optional[int]) -> List[slice]:
    if not max_batch_size or n_cells <= max_batch_size:
        return [slice(0, n_cells)]
    return [slice(start, min(start + max_batch_size, n_cells)) for start in range(0, n_cells, max_batch_size)]


def run_celltypist(
    adata: ad.AnnData,
    params: Optional[CellTypistParams] = None,
    model_dir: Optional[PathLike] = None,
    download: bool = False,
    logger: Optional[logging.Logger] = None,
) -> CellTypistResult:
    """Annotate cells with a CellTypist model.

    Expression must be log1p-normalized to 10,000 counts per cell (in X,
    or in ``params.layer``). With ``params.max_batch_size`` the cells are
    annotated in consecutive batches, each with its own over-clustering.

    Args:
        adata: AnnData with genes as var_names (not modified)
        params: Annotation parameters (defaults if None)
        model_dir: RIRA model directory (default: ``$RIRA_CELLTYPIST_DIR``)
        download: Download a missing built-in model
        logger: Logger instance

    Returns:
        CellTypistResult; call ``attach(adata)`` to write the columns

    Raises:
        ConfigurationError: For an unknown model, layer or over-clustering column
    """
    if logger is None:
        logger = logging.getLogger(__name__)
    params = params or CellTypistParams()

    model = load_model(params.model, model_dir=model_dir, download=download)
    query = _query_adata(adata, params)
    batches = _batch_slices(query.n_obs, params.max_batch_size)

    logger.info("=" * 70)
    logger.info("CELLTYPIST")
    logger.info("=" * 70)
    logger.info(
        "Model: %s (%d classes), cells: %d, batches: %d",
        params.model,
        len(model.cell_types),
        query.n_obs,
        len(batches),
    )

    label_parts = []
    prob_parts = []
    for i, batch in enumerate(batches, start=1):
        if len(batches) > 1:
            logger.info("Batch %d/%d: cells %d-%d", i, len(batches), batch.start, batch.stop - 1)
        labels, probs = _annotate_batch(query[batch].copy(), model, params)
        label_parts.append(labels)
        prob_parts.append(probs)

    labels = pd.concat(label_parts).reindex(adata.obs_names)
    probabilities = pd.concat(prob_parts).reindex(adata.obs_names).fillna(0.0)

    result = CellTypistResult(
        model=str(params.model),
        labels=labels,
        probabilities=probabilities,
        params=params,
    )
    n_called = int(result.cellclass().notna().sum())
    logger.info("CellTypist: %d/%d cells called", n_called, adata.n_obs)
    return result


def classify_immune_cells(
    adata: ad.AnnData,
    model_dir: Optional[PathLike] = None,
    max_batch_size: Optional[int] = None,
    retain_probability_matrix: bool = False,
    logger: Optional[logging.Logger] = None,
) -> CellTypistResult:
    """Run the RIRA immune model and attach ``RIRA_Immune_v2.*`` columns.

    The model name is recorded in ``adata.uns["RIRA_Immune_Model"]``.
    """
    params = CellTypistParams(
        model=IMMUNE_MODEL,
        column_prefix=f"{IMMUNE_MODEL}.",
        max_batch_size=max_batch_size,
        retain_probability_matrix=retain_probability_matrix,
    )
    result = run_celltypist(adata, params, model_dir=model_dir, logger=logger)
    result.attach(adata)
    adata.uns["RIRA_Immune_Model"] = IMMUNE_MODEL
    return result
