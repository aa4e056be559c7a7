"""Test fixtures for RIRA.

Provides mock data generators and test utilities.
"""

from .mock_adata import (
    MOCK_GATING_PARAMS,
    POPULATION_MARKERS,
    create_calls_frame,
    create_gating_adata,
)

__all__ = [
    "MOCK_GATING_PARAMS",
    "POPULATION_MARKERS",
    "create_calls_frame",
    "create_gating_adata",
]
