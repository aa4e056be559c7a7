"""Command-line interface for RIRA.

Example Usage
-------------
    # From command line:
    rira --help
    rira list-gates
    rira run --input data.h5ad --out gated/ --preset rhesus
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
