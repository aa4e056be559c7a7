"""Consensus labeling across gate models.

Example Usage
-------------
    >>> import pandas as pd
    >>> from rira.core.consensus import aggregate_consensus
    >>> calls = pd.DataFrame({"A": [True, True], "B": [True, False]})
    >>> result = aggregate_consensus(calls, label_rename={"A": "Group1", "B": "Group1"})
    >>> result.final_labels().tolist()
    ['Group1', 'Group1']
"""

from .aggregate import (
    CONSENSUS_COL,
    RAW_COL,
    ConsensusResult,
    aggregate_consensus,
    calls_to_frame,
)
from .labels import LABEL_SEPARATOR, LabelSet, natural_categorical, natural_sort_key

__all__ = [
    "CONSENSUS_COL",
    "RAW_COL",
    "ConsensusResult",
    "aggregate_consensus",
    "calls_to_frame",
    "LABEL_SEPARATOR",
    "LabelSet",
    "natural_categorical",
    "natural_sort_key",
]
