"""Rank-based signature scoring (UCell) and kNN score smoothing.

UCell scores a signature per cell with a normalized Mann-Whitney U
statistic over the cell's gene ranking:

    ranks    : genes ranked by descending expression (ties averaged),
               ranks above max_rank set to max_rank + 1
    U        : sum(ranks of signature genes) - n(n+1)/2
    score    : 1 - U / (n * max_rank)

Negative genes (``GENE-`` in a signature) are scored the same way and
subtracted: ``max(0, pos - w_neg * neg)``.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import sparse
from scipy.stats import rankdata

try:
    import scanpy as sc
except ImportError:
    sc = None

from .models import Signature

logger = logging.getLogger(__name__)

# Patterns for genes excluded from the features used for kNN smoothing
DEFAULT_GENES_BLACKLIST = (
    r"^MT-",
    r"^RP[LS]\d",
    r"^TR[ABDG][VJC]",
    r"^IG[HKL][VDJC]",
    r"^HIST",
    r"^MKI67$",
    r"^TOP2A$",
    r"^XIST$",
)


def _get_matrix(adata: "sc.AnnData", layer: Optional[str]):
    if layer is None or layer == "X":
        return adata.X
    if layer not in adata.layers:
        raise KeyError(f"Layer not found: {layer}")
    return adata.layers[layer]


def _ucell_from_ranks(ranks: np.ndarray, gene_idx: Sequence[int], max_rank: int) -> np.ndarray:
    n = len(gene_idx)
    if n == 0:
        return np.zeros(ranks.shape[0], dtype=np.float64)
    rank_sum = ranks[:, gene_idx].sum(axis=1)
    u_stat = rank_sum - n * (n + 1) / 2.0
    return 1.0 - u_stat / (n * max_rank)


def compute_ucell_scores(
    adata: "sc.AnnData",
    signatures: Iterable[Signature],
    layer: Optional[str] = None,
    max_rank: int = 1500,
    w_neg: float = 1.0,
    chunk_size: int = 1000,
) -> pd.DataFrame:
    """Compute UCell scores for each signature.

    Args:
        adata: AnnData with genes as var_names
        signatures: Signatures to score
        layer: Layer to use (None = adata.X)
        max_rank: Rank cap; genes ranked beyond it count as max_rank + 1
        w_neg: Weight of the negative-gene score
        chunk_size: Cells densified and ranked at a time

    Returns:
        DataFrame (cells × signatures), columns named ``<signature>_UCell``
    """
    signatures = list(signatures)
    matrix = _get_matrix(adata, layer)
    var_index = {name: idx for idx, name in enumerate(adata.var_names.astype(str))}
    n_cells, n_genes = matrix.shape
    max_rank = int(min(max_rank, n_genes))

    resolved = []
    for sig in signatures:
        pos_idx = [var_index[g] for g in sig.positive_genes if g in var_index]
        neg_idx = [var_index[g] for g in sig.negative_genes if g in var_index]
        absent = [g for g in sig.genes if g not in var_index]
        if absent:
            logger.debug(
                "Signature '%s': %d/%d genes not in matrix: %s",
                sig.name,
                len(absent),
                len(sig.genes),
                absent,
            )
        if not pos_idx:
            logger.warning("Signature '%s' has no positive genes in the matrix", sig.name)
        resolved.append((sig, pos_idx, neg_idx))

    columns = [sig.score_column for sig in signatures]
    out = np.zeros((n_cells, len(signatures)), dtype=np.float64)

    for start in range(0, n_cells, chunk_size):
        stop = min(start + chunk_size, n_cells)
        block = matrix[start:stop]
        if sparse.issparse(block):
            block = block.toarray()
        block = np.asarray(block, dtype=np.float64)

        ranks = rankdata(-block, method="average", axis=1)
        ranks[ranks > max_rank] = max_rank + 1

        for j, (sig, pos_idx, neg_idx) in enumerate(resolved):
            score = _ucell_from_ranks(ranks, pos_idx, max_rank)
            if neg_idx:
                score = score - w_neg * _ucell_from_ranks(ranks, neg_idx, max_rank)
            out[start:stop, j] = np.clip(score, 0.0, 1.0)

    return pd.DataFrame(out, index=adata.obs_names.copy(), columns=columns)


def resolve_blacklist(
    var_names: Sequence[str],
    genes_blacklist: Union[str, Sequence[str], None] = "default",
) -> List[str]:
    """Resolve a blacklist setting to the genes present in var_names.

    ``"default"`` applies DEFAULT_GENES_BLACKLIST patterns, None disables
    blacklisting, and a list is taken as literal gene names.
    """
    if genes_blacklist is None:
        return []
    if isinstance(genes_blacklist, str):
        if genes_blacklist != "default":
            raise ValueError(f"Unknown genes_blacklist: {genes_blacklist}")
        pattern = re.compile("|".join(DEFAULT_GENES_BLACKLIST), flags=re.IGNORECASE)
        return [g for g in var_names if pattern.search(str(g))]

    wanted = set(genes_blacklist)
    return [g for g in var_names if g in wanted]


def smooth_scores(
    adata: "sc.AnnData",
    scores: pd.DataFrame,
    k: int = 10,
    decay: float = 0.1,
    layer: Optional[str] = None,
    n_features: int = 2000,
    n_pcs: int = 30,
    genes_blacklist: Union[str, Sequence[str], None] = "default",
    random_seed: int = 1234,
) -> pd.DataFrame:
    """Smooth per-cell scores over each cell's k nearest neighbours.

    Neighbours are found in PCA space built from the most variable genes
    (blacklisted genes excluded). The smoothed score is the weighted mean of
    the cell and its neighbours ordered by distance, with weights
    ``decay ** i`` (the cell itself has weight 1).

    Returns ``scores`` unchanged when there are too few cells.
    """
    if sc is None:
        raise ImportError("scanpy is required for score smoothing")

    n_cells = adata.n_obs
    if k <= 0 or n_cells <= k + 1:
        return scores

    matrix = _get_matrix(adata, layer)
    if sparse.issparse(matrix):
        mean = np.asarray(matrix.mean(axis=0)).ravel()
        sq_mean = np.asarray(matrix.multiply(matrix).mean(axis=0)).ravel()
        variance = sq_mean - mean ** 2
    else:
        variance = np.asarray(matrix, dtype=np.float64).var(axis=0)

    blacklisted = set(resolve_blacklist(list(adata.var_names.astype(str)), genes_blacklist))
    candidates = [
        idx for idx, g in enumerate(adata.var_names.astype(str))
        if g not in blacklisted and variance[idx] > 0
    ]
    if len(candidates) < 2:
        logger.warning("Too few variable genes for kNN smoothing; using raw scores")
        return scores

    order = sorted(candidates, key=lambda idx: -variance[idx])[:n_features]
    sub = sc.AnnData(X=np.asarray(
        matrix[:, order].toarray() if sparse.issparse(matrix) else matrix[:, order],
        dtype=np.float32,
    ))
    n_comps = max(1, min(n_pcs, sub.n_obs - 1, sub.n_vars - 1))
    sc.pp.pca(sub, n_comps=n_comps, random_state=random_seed)
    sc.pp.neighbors(sub, n_neighbors=k + 1, use_rep="X_pca", random_state=random_seed)

    distances = sub.obsp["distances"].tocsr()
    values = scores.to_numpy(dtype=np.float64)
    smoothed = np.empty_like(values)

    for i in range(n_cells):
        row_start, row_end = distances.indptr[i], distances.indptr[i + 1]
        neighbours = distances.indices[row_start:row_end]
        dists = distances.data[row_start:row_end]
        neighbours = neighbours[np.argsort(dists, kind="stable")]

        members = np.concatenate([[i], neighbours])
        weights = decay ** np.arange(len(members), dtype=np.float64)
        smoothed[i] = weights @ values[members] / weights.sum()

    logger.debug("Smoothed %d score columns over %d neighbours", values.shape[1], k)
    return pd.DataFrame(smoothed, index=scores.index, columns=scores.columns)
