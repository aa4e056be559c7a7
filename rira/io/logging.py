"""Run logs for gating runs.

Each ``rira run`` writes one timestamped log file under ``<out>/logs``.
Log lines go to the file (and optionally to the console handlers of the
parent logger); the YAML run record is appended at the end of the run.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Tuple, Union

import yaml

PathLike = Union[str, Path]

RUN_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
RUN_RECORD_SEPARATOR = "---"


def run_log_path(log_dir: PathLike, stem: str = "gating") -> Path:
    """Timestamped log path in log_dir, e.g. ``gating_20251209_080530.log``."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return Path(log_dir) / f"{stem}_{timestamp}.log"


def get_logger(
    name: str,
    log_dir: PathLike,
    level: int = logging.INFO,
    console: bool = False,
) -> Tuple[logging.Logger, Path]:
    """Return a logger writing to a new timestamped run log.

    Parameters
    ----------
    name : str
        Logger name.
    log_dir : PathLike
        Directory for the run log.
    level : int
        Logging level (default: INFO).
    console : bool
        Also pass records to the parent logger's handlers.

    Returns
    -------
    Tuple[logging.Logger, Path]
        Tuple of (logger, log_path).
    """
    log_path = run_log_path(log_dir)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = console
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(fmt=RUN_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    return logger, log_path


def log_yaml(log_path: PathLike, record: Dict[str, Any]) -> None:
    """Append a run record to a run log as a YAML document.

    The record starts on its own ``---`` line, separating it from the plain
    log lines before it.
    """
    yaml_text = yaml.safe_dump(record, sort_keys=False).rstrip("\n")
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(f"{RUN_RECORD_SEPARATOR}\n{yaml_text}\n")

