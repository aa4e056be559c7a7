"""RIRA: cell-type gating and consensus labeling for rhesus macaque scRNA-seq.

This package provides tools for:
- Loading scGate-style gate models shipped with the package (or from a
  local model database)
- Scoring gene signatures with the rank-based UCell formulation
- Running hierarchical purity gates per model
- Building a consensus cell-type label across many gate models
- Plotting and exporting the resulting labels

Example usage:
    >>> import scanpy as sc
    >>> from rira.core.gating import run_gates_for_preset
    >>>
    >>> adata = sc.read_h5ad("pbmc.h5ad")
    >>> result = run_gates_for_preset(adata, "rhesus", drop_ambiguous=True)
    >>> adata.obs["scGateConsensus"].value_counts()
"""

__version__ = "0.1.0"
