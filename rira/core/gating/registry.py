"""Gate model registry.

Resolves model names to validated GateModel records. Packaged gates in
``rira/data/gates`` are searched first; a local copy of an scGate model
database (``<db>/human/generic/*.tsv``) can be configured as a fallback.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from rira.errors import ConfigurationError

from .models import GateModel, load_gate_model, load_master_table

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

MASTER_TABLE_NAME = "master_table.tsv"
MODEL_DB_ENV = "RIRA_MODEL_DB"
DEFAULT_GATE_DIR = Path(__file__).resolve().parents[2] / "data" / "gates"


def _list_gate_files(directory: Path) -> List[str]:
    if not directory.is_dir():
        return []
    names = [
        p.name[: -len(".tsv")]
        for p in directory.glob("*.tsv")
        if p.name != MASTER_TABLE_NAME
    ]
    return sorted(names)


def list_available_gates(gate_dir: Optional[PathLike] = None) -> List[str]:
    """Return the names of the gate models shipped with the package.

    Parameters
    ----------
    gate_dir : PathLike, optional
        Directory to list instead of the packaged gates.

    Returns
    -------
    List[str]
        Sorted model names without the ``.tsv`` extension.
    """
    return _list_gate_files(Path(gate_dir) if gate_dir else DEFAULT_GATE_DIR)


class GateRegistry:
    """Lookup of gate models by name.

    Parameters
    ----------
    gate_dir : PathLike, optional
        Directory of local gate TSVs and ``master_table.tsv``.
        Defaults to the packaged gates.
    model_db_dir : PathLike, optional
        Local scGate model database. Defaults to ``$RIRA_MODEL_DB``.
    allow_model_db : bool
        If False, only local gates are considered.

    Example
    -------
    >>> registry = GateRegistry()
    >>> models = registry.resolve(["Tcell.RM", "Bcell.RM"])
    >>> models["Tcell.RM"].levels[0].name
    'level1'
    """

    def __init__(
        self,
        gate_dir: Optional[PathLike] = None,
        model_db_dir: Optional[PathLike] = None,
        allow_model_db: bool = True,
    ):
        self.gate_dir = Path(gate_dir) if gate_dir else DEFAULT_GATE_DIR
        if model_db_dir is None and os.environ.get(MODEL_DB_ENV):
            model_db_dir = os.environ[MODEL_DB_ENV]
        self.model_db_dir = Path(model_db_dir) if model_db_dir else None
        self.allow_model_db = allow_model_db
        self._cache: Dict[str, GateModel] = {}
        self._local_master: Optional[Dict[str, str]] = None
        self._db_master: Optional[Dict[str, str]] = None

    @property
    def database_generic_dir(self) -> Optional[Path]:
        if self.model_db_dir is None:
            return None
        return self.model_db_dir / "human" / "generic"

    def list_local(self) -> List[str]:
        """Names of the gates in ``gate_dir``."""
        return _list_gate_files(self.gate_dir)

    def list_database_models(self) -> List[str]:
        """Names of the generic human models in the model database.

        Raises
        ------
        ConfigurationError
            If no model database is configured or it does not exist.
        """
        generic_dir = self.database_generic_dir
        if generic_dir is None:
            raise ConfigurationError(
                f"No model database configured (pass model_db_dir or set ${MODEL_DB_ENV})"
            )
        if not generic_dir.is_dir():
            raise ConfigurationError(f"Model database not found: {generic_dir}")
        return _list_gate_files(generic_dir)

    def _local_master_table(self) -> Dict[str, str]:
        if self._local_master is None:
            self._local_master = load_master_table(self.gate_dir / MASTER_TABLE_NAME)
        return self._local_master

    def _db_master_table(self) -> Dict[str, str]:
        if self._db_master is None:
            master: Dict[str, str] = {}
            generic_dir = self.database_generic_dir
            # Most specific table wins
            for candidate in (
                self.model_db_dir / MASTER_TABLE_NAME,
                self.model_db_dir / "human" / MASTER_TABLE_NAME,
                generic_dir / MASTER_TABLE_NAME,
            ):
                master.update(load_master_table(candidate))
            self._db_master = master
        return self._db_master

    def _find(self, name: str) -> Optional[GateModel]:
        local_file = self.gate_dir / f"{name}.tsv"
        if local_file.exists():
            return load_gate_model(local_file, self._local_master_table(), name=name)

        if not self.allow_model_db or self.database_generic_dir is None:
            return None

        db_file = self.database_generic_dir / f"{name}.tsv"
        if db_file.exists():
            logger.info("Using model database gate: %s", name)
            return load_gate_model(db_file, self._db_master_table(), name=name)

        return None

    def get(self, name: str) -> GateModel:
        """Return the gate model with the given name.

        Raises
        ------
        ConfigurationError
            If the model is not found locally or in the model database.
        """
        if name in self._cache:
            return self._cache[name]

        model = self._find(name)
        if model is None:
            raise ConfigurationError(f"Unknown gate model: {name}")

        self._cache[name] = model
        return model

    def __contains__(self, name: str) -> bool:
        try:
            self.get(name)
        except ConfigurationError:
            return False
        return True

    def resolve(self, names: Iterable[str]) -> Dict[str, GateModel]:
        """Resolve every name to a GateModel before anything runs.

        Parameters
        ----------
        names : Iterable[str]
            Model names, in run order. Duplicates are collapsed.

        Returns
        -------
        Dict[str, GateModel]
            Insertion-ordered mapping of name -> model.

        Raises
        ------
        ConfigurationError
            Naming every model that could not be found.
        """
        resolved: Dict[str, GateModel] = {}
        missing: List[str] = []
        for name in names:
            if name in resolved:
                continue
            model = self._cache.get(name) or self._find(name)
            if model is None:
                missing.append(name)
                continue
            self._cache[name] = model
            resolved[name] = model

        if missing:
            raise ConfigurationError(f"Unknown gate model(s): {', '.join(missing)}")

        return resolved
