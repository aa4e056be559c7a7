"""Core gating and consensus modules."""
