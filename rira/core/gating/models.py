"""Gate model definitions and gate table parsing.

A gate model is a scGate-style TSV table with one row per signature:

    levels   use_as     name        signature
    level1   positive   Immune
    level1   negative   Epithelial
    level2   positive   Tcell       CD3D,CD3E,CD3G

A blank signature is resolved by ``name`` through the master table
(``master_table.tsv``, columns ``name`` and ``signature``). A signature
that is itself a master table entry is also resolved. Anything else is a
comma-separated gene list; genes with a trailing ``-`` are negative genes.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from rira.errors import ConfigurationError
from rira.io.tables import read_tsv

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

GATE_COLUMNS = ["levels", "use_as", "name", "signature"]
MASTER_COLUMNS = ["name", "signature"]
VALID_USE_AS = ("positive", "negative")


@dataclass(frozen=True)
class Signature:
    """A named gene signature.

    Attributes:
        name: Signature name (e.g., "Tcell")
        positive_genes: Genes expected to be expressed
        negative_genes: Genes expected to be absent (written as ``GENE-``)
    """

    name: str
    positive_genes: Tuple[str, ...]
    negative_genes: Tuple[str, ...] = ()

    @property
    def score_column(self) -> str:
        return f"{self.name}_UCell"

    @property
    def genes(self) -> Tuple[str, ...]:
        return self.positive_genes + self.negative_genes


@dataclass(frozen=True)
class GateLevel:
    """One level of a hierarchical gate.

    A cell passes the level if it scores above the positive threshold for
    at least one positive signature (or the level has none) and below the
    negative threshold for every negative signature.
    """

    name: str
    positive: Tuple[Signature, ...] = ()
    negative: Tuple[Signature, ...] = ()

    @property
    def signatures(self) -> Tuple[Signature, ...]:
        return self.positive + self.negative


@dataclass(frozen=True)
class GateModel:
    """A validated gate model.

    Attributes:
        name: Model name (e.g., "Tcell.RM")
        levels: Ordered gate levels
        source: File the model was loaded from (None for in-memory models)
    """

    name: str
    levels: Tuple[GateLevel, ...]
    source: Optional[Path] = field(default=None, compare=False)

    @property
    def signatures(self) -> List[Signature]:
        """All distinct signatures used by this model, in level order."""
        seen: Dict[str, Signature] = {}
        for level in self.levels:
            for sig in level.signatures:
                seen.setdefault(sig.name, sig)
        return list(seen.values())


def parse_signature(name: str, text: str) -> Signature:
    """Parse a comma-separated gene list into a Signature.

    Whitespace is stripped and duplicate genes are dropped, keeping the
    first occurrence.
    """
    positive: List[str] = []
    negative: List[str] = []
    for token in text.split(","):
        gene = token.strip()
        if not gene:
            continue
        if gene.endswith("-"):
            gene = gene[:-1].strip()
            if gene and gene not in negative:
                negative.append(gene)
        elif gene not in positive:
            positive.append(gene)

    if not positive and not negative:
        raise ConfigurationError(f"Signature '{name}' has no genes")

    return Signature(name=name, positive_genes=tuple(positive), negative_genes=tuple(negative))


def load_master_table(path: Optional[PathLike]) -> Dict[str, str]:
    """Load the master signature table as a name -> signature text mapping.

    Returns an empty mapping when ``path`` is None or does not exist.
    """
    if path is None or not Path(path).exists():
        return {}

    try:
        df = read_tsv(path, required_columns=MASTER_COLUMNS)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    master: Dict[str, str] = {}
    for _, row in df.iterrows():
        name = row["name"].strip()
        if name:
            master[name] = row["signature"].strip()
    return master


def _level_sort_key(level_name: str) -> Tuple[int, str]:
    """Order levels numerically by trailing digits ("level10" after "level2")."""
    match = re.search(r"(\d+)$", level_name)
    if match:
        return (int(match.group(1)), level_name)
    return (int(1e9), level_name)


def load_gate_model(
    path: PathLike,
    master_table: Optional[Dict[str, str]] = None,
    name: Optional[str] = None,
) -> GateModel:
    """Load and validate a gate model TSV.

    Args:
        path: Path to the gate TSV
        master_table: Signature lookup for blank or named signatures
        name: Model name (defaults to the file name without ``.tsv``)

    Returns:
        GateModel with levels ordered by level number

    Raises:
        FileNotFoundError: If the gate file does not exist
        ConfigurationError: If the table is malformed
    """
    path = Path(path)
    master_table = master_table or {}
    model_name = name or re.sub(r"\.tsv$", "", path.name)

    try:
        df = read_tsv(path, required_columns=GATE_COLUMNS)
    except ValueError as e:
        raise ConfigurationError(f"Gate model '{model_name}': {e}") from e

    if df.empty:
        raise ConfigurationError(f"Gate model '{model_name}' has no rows")

    grouped: Dict[str, Dict[str, List[Signature]]] = {}
    for idx, row in df.iterrows():
        level = row["levels"].strip()
        use_as = row["use_as"].strip().lower()
        sig_name = row["name"].strip()
        sig_text = row["signature"].strip()

        if not level or not sig_name:
            raise ConfigurationError(
                f"Gate model '{model_name}' row {idx + 1}: level and name are required"
            )
        if use_as not in VALID_USE_AS:
            raise ConfigurationError(
                f"Gate model '{model_name}' row {idx + 1}: use_as must be one of "
                f"{VALID_USE_AS}, got '{row['use_as']}'"
            )

        if not sig_text:
            if sig_name not in master_table:
                raise ConfigurationError(
                    f"Gate model '{model_name}': signature '{sig_name}' is blank "
                    "and not in the master table"
                )
            sig_text = master_table[sig_name]
        elif sig_text in master_table:
            sig_text = master_table[sig_text]

        signature = parse_signature(sig_name, sig_text)
        slot = grouped.setdefault(level, {"positive": [], "negative": []})
        slot[use_as].append(signature)

    levels = tuple(
        GateLevel(
            name=level_name,
            positive=tuple(grouped[level_name]["positive"]),
            negative=tuple(grouped[level_name]["negative"]),
        )
        for level_name in sorted(grouped, key=_level_sort_key)
    )

    logger.debug(
        "Loaded gate model '%s' with %d levels from %s",
        model_name,
        len(levels),
        path,
    )
    return GateModel(name=model_name, levels=levels, source=path)
