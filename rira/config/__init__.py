"""Named gate model presets."""

from .presets import (
    BUILTIN_PRESET_DIR,
    GatePreset,
    get_preset,
    list_presets,
    register_preset,
)

__all__ = [
    "BUILTIN_PRESET_DIR",
    "GatePreset",
    "get_preset",
    "list_presets",
    "register_preset",
]
