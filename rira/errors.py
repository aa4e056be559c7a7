"""Exceptions raised by RIRA."""


class ConfigurationError(ValueError):
    """Raised when a gate model, preset or run configuration is invalid.

    Covers unknown model names, malformed gate tables, and consensus models
    that were not part of the run.
    """

    pass
