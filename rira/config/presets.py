"""Named gate model presets.

A preset bundles the models to run, the subset that votes in the
consensus, and the rename map from model names to final labels. Builtin
presets are loaded from ``rira/data/presets/*.yaml``.

Example
-------
>>> from rira.config import get_preset
>>> preset = get_preset("rhesus")
>>> preset.label_rename["NK.RM"]
'T_NK'
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from rira.errors import ConfigurationError

logger = logging.getLogger(__name__)

BUILTIN_PRESET_DIR = Path(__file__).resolve().parents[1] / "data" / "presets"


@dataclass
class GatePreset:
    """A named set of gate models and consensus settings.

    Attributes
    ----------
    name : str
        Canonical preset name (lowercase, underscores)
    models : List[str]
        Models to run, in order
    consensus_models : List[str], optional
        Models considered for the consensus (None = all models)
    label_rename : Dict[str, str]
        Model name -> final consensus label
    description : str
        Free-text description
    aliases : List[str]
        Alternative names for this preset
    """

    name: str
    models: List[str] = field(default_factory=list)
    consensus_models: Optional[List[str]] = None
    label_rename: Dict[str, Optional[str]] = field(default_factory=dict)
    description: str = ""
    aliases: List[str] = field(default_factory=list)

    def validate(self) -> None:
        """Check that the preset has models and its consensus models are among them.

        Rename keys are not checked; a rename map may cover models the
        preset does not run.
        """
        if not self.models:
            raise ConfigurationError(f"Preset '{self.name}' has no models")
        if self.consensus_models is not None:
            extra = [m for m in self.consensus_models if m not in self.models]
            if extra:
                raise ConfigurationError(
                    f"Preset '{self.name}': consensus models not in models: {extra}"
                )

    @classmethod
    def from_yaml(cls, path: Path) -> "GatePreset":
        """Load a preset from a YAML file."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        preset = cls(
            name=data.get("name", path.stem),
            models=list(data.get("models", [])),
            consensus_models=data.get("consensus_models"),
            label_rename=dict(data.get("label_rename", {}) or {}),
            description=data.get("description", ""),
            aliases=list(data.get("aliases", [])),
        )
        preset.validate()
        return preset

    def to_yaml(self, path: Path) -> None:
        """Save the preset to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "name": self.name,
            "description": self.description,
            "aliases": list(self.aliases),
            "models": list(self.models),
            "consensus_models": self.consensus_models,
            "label_rename": dict(self.label_rename),
        }
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# =============================================================================
# Registry
# =============================================================================

PRESET_REGISTRY: Dict[str, GatePreset] = {}

PRESET_ALIASES: Dict[str, str] = {}

_BUILTINS_LOADED = False


def _normalize(name: str) -> str:
    return name.lower().replace(" ", "_").replace("-", "_")


def register_preset(preset: GatePreset) -> None:
    """Register a preset and its aliases."""
    preset.validate()
    name = _normalize(preset.name)
    PRESET_REGISTRY[name] = preset
    for alias in preset.aliases:
        PRESET_ALIASES[_normalize(alias)] = name


def get_preset(name: str) -> GatePreset:
    """Get a preset by name or alias.

    Raises
    ------
    ConfigurationError
        If the preset is not registered
    """
    _ensure_builtins_loaded()

    key = _normalize(name)
    key = PRESET_ALIASES.get(key, key)
    if key not in PRESET_REGISTRY:
        raise ConfigurationError(
            f"Unknown preset: '{name}'. Available: {sorted(PRESET_REGISTRY)}"
        )
    return PRESET_REGISTRY[key]


def list_presets() -> List[str]:
    """List registered preset names."""
    _ensure_builtins_loaded()
    return sorted(PRESET_REGISTRY.keys())


def _ensure_builtins_loaded() -> None:
    global _BUILTINS_LOADED
    if _BUILTINS_LOADED:
        return
    _load_builtin_presets()
    _BUILTINS_LOADED = True


def _load_builtin_presets() -> None:
    if not BUILTIN_PRESET_DIR.exists():
        return

    for yaml_path in sorted(BUILTIN_PRESET_DIR.glob("*.yaml")):
        preset = GatePreset.from_yaml(yaml_path)
        # User registrations made before first lookup take precedence
        if _normalize(preset.name) not in PRESET_REGISTRY:
            register_preset(preset)
        logger.debug("Loaded builtin preset '%s' from %s", preset.name, yaml_path)
