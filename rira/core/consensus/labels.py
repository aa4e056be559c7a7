"""Label sets and natural ordering for consensus labels."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Tuple

import pandas as pd

LABEL_SEPARATOR = ","

_DIGITS = re.compile(r"(\d+)")


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


@dataclass(frozen=True)
class LabelSet:
    """An ordered, de-duplicated set of cell-type labels.

    Labels are kept sorted lexicographically. The comma-joined string form
    is produced only by ``joined()``.

    Example:
        >>> LabelSet.of(["Tcell.RM", "Bcell.RM", "Tcell.RM"]).joined()
        'Bcell.RM,Tcell.RM'
    """

    labels: Tuple[str, ...] = ()

    @classmethod
    def of(cls, labels: Iterable[Any]) -> "LabelSet":
        """Build a LabelSet, dropping missing values and duplicates."""
        cleaned = {str(label) for label in labels if not _is_missing(label)}
        return cls(tuple(sorted(cleaned)))

    @classmethod
    def parse(cls, text: Any, sep: str = LABEL_SEPARATOR) -> "LabelSet":
        """Parse a joined label string. Missing values give an empty set."""
        if _is_missing(text):
            return cls()
        return cls.of(part.strip() for part in str(text).split(sep) if part.strip())

    def rename(self, mapping: Mapping[str, Optional[str]]) -> "LabelSet":
        """Map each label through ``mapping``; absent labels pass through.

        A label mapped to None (or NaN) is dropped. A joined target such as
        ``"X,Y"`` contributes each of its labels.
        """
        labels: List[str] = []
        for label in self.labels:
            labels.extend(LabelSet.parse(mapping.get(label, label)))
        return LabelSet.of(labels)

    def joined(self, sep: str = LABEL_SEPARATOR) -> Optional[str]:
        """Serialize to a joined string, or None for an empty set."""
        if not self.labels:
            return None
        return sep.join(self.labels)

    @property
    def is_ambiguous(self) -> bool:
        """More than one label, or a single label containing the separator."""
        if len(self.labels) > 1:
            return True
        return any(LABEL_SEPARATOR in label for label in self.labels)

    def __len__(self) -> int:
        return len(self.labels)

    def __iter__(self) -> Iterator[str]:
        return iter(self.labels)

    def __bool__(self) -> bool:
        return bool(self.labels)

    def __str__(self) -> str:
        return self.joined() or ""


def natural_sort_key(value: Any) -> Tuple:
    """Sort key comparing digit runs numerically and other text lexically.

    Examples:
        "Cluster2" < "Cluster10"
        "B,T_NK" < "Bcell"
    """
    parts = _DIGITS.split(str(value))
    key: List[Tuple[int, Any]] = []
    for part in parts:
        if not part:
            continue
        if part.isdigit():
            key.append((0, int(part)))
        else:
            key.append((1, part.lower()))
    # Labels differing only in case keep a fixed order
    return tuple(key), str(value)


def natural_categorical(values: Iterable[Any]) -> pd.Categorical:
    """Ordered categorical whose categories follow natural sort order.

    Missing values stay missing and are not categories.
    """
    values = [None if _is_missing(v) else str(v) for v in values]
    categories = sorted({v for v in values if v is not None}, key=natural_sort_key)
    return pd.Categorical(values, categories=categories, ordered=True)
