"""Deterministic mapping of raw survey specialty labels to a canonical taxonomy."""

__version__ = "1.0.0"
