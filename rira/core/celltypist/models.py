"""Locating CellTypist models.

A model is given as a file path, a RIRA model name looked up in the local
RIRA model directory, or the name of a CellTypist built-in model in
CellTypist's own model folder.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Union

from celltypist import models

from rira.errors import ConfigurationError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

MODEL_DIR_ENV = "RIRA_CELLTYPIST_DIR"
RIRA_MODEL_PREFIX = "RIRA_"
IMMUNE_MODEL = "RIRA_Immune_v2"


def _with_suffix(name: str) -> str:
    return name if name.endswith(".pkl") else f"{name}.pkl"


def model_dir_from_env(model_dir: Optional[PathLike] = None) -> Optional[Path]:
    """The RIRA model directory: the argument, else ``$RIRA_CELLTYPIST_DIR``."""
    if model_dir is None:
        model_dir = os.environ.get(MODEL_DIR_ENV) or None
    return Path(model_dir) if model_dir else None


def list_local_models(model_dir: Optional[PathLike] = None) -> List[str]:
    """Model names (without ``.pkl``) in the RIRA model directory."""
    directory = model_dir_from_env(model_dir)
    if directory is None or not directory.is_dir():
        return []
    return sorted(p.stem for p in directory.glob("*.pkl"))


def find_model_file(
    model: PathLike,
    model_dir: Optional[PathLike] = None,
    download: bool = False,
) -> Path:
    """Resolve a model path, RIRA model name or built-in model name to a file.

    Parameters
    ----------
    model : PathLike
        Model file, RIRA model name or CellTypist built-in model name
    model_dir : PathLike, optional
        RIRA model directory (default: ``$RIRA_CELLTYPIST_DIR``)
    download : bool
        Download a missing built-in model from the CellTypist server

    Raises
    ------
    ConfigurationError
        If the model cannot be found
    """
    path = Path(model)
    if path.is_file():
        return path

    name = str(model)
    directory = model_dir_from_env(model_dir)
    searched = []
    if directory is not None:
        for candidate in (directory / name, directory / _with_suffix(name)):
            if candidate.is_file():
                return candidate
        searched.append(str(directory))

    if name.startswith(RIRA_MODEL_PREFIX):
        raise ConfigurationError(
            f"RIRA model '{name}' not found in {searched or 'any model directory'}; "
            f"pass model_dir or set {MODEL_DIR_ENV}"
        )

    builtin = Path(models.models_path) / _with_suffix(name)
    if not builtin.is_file() and download:
        logger.info("Downloading CellTypist model %s", builtin.name)
        models.download_models(model=[builtin.name])
    if builtin.is_file():
        return builtin

    searched.append(str(builtin.parent))
    raise ConfigurationError(f"CellTypist model '{name}' not found in {searched}")


def load_model(
    model: PathLike,
    model_dir: Optional[PathLike] = None,
    download: bool = False,
) -> models.Model:
    """Load a CellTypist model (see ``find_model_file`` for lookup order)."""
    path = find_model_file(model, model_dir=model_dir, download=download)
    logger.debug("Loading CellTypist model from %s", path)
    return models.Model.load(str(path))
