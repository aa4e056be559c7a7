"""I/O utilities for RIRA.

Provides run logs and table I/O utilities.
"""

from .logging import get_logger, log_yaml, run_log_path
from .tables import read_tsv, write_dataframe

__all__ = [
    # Logging
    "get_logger",
    "log_yaml",
    "run_log_path",
    # Tables
    "read_tsv",
    "write_dataframe",
]
