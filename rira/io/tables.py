"""Tabular I/O for gate definitions and result summaries."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def read_tsv(path: PathLike, required_columns: Optional[List[str]] = None) -> pd.DataFrame:
    """Read a tab-separated table with every column as string.

    Empty cells are returned as empty strings rather than NaN so that
    gate tables can use blank signatures to mean "look up in master table".

    Parameters
    ----------
    path : PathLike
        Path to the TSV file.
    required_columns : List[str], optional
        Columns that must be present.

    Returns
    -------
    pd.DataFrame
        Parsed table with stripped column names.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If required columns are missing.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Table not found: {path}")

    df = pd.read_csv(path, sep="\t", dtype=str, keep_default_na=False, comment="#")
    df.columns = [str(c).strip() for c in df.columns]

    if required_columns:
        missing = [col for col in required_columns if col not in df.columns]
        if missing:
            raise ValueError(f"Table {path.name} missing columns: {missing}")

    logger.debug("Read %d rows from %s", len(df), path)
    return df


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write DataFrame to path ensuring the parent directory exists.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to write.
    path : PathLike
        Output path.
    index : bool
        Whether to write row index (default: False).

    Returns
    -------
    Path
        The output path.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index)
    return output_path
