"""Incremental transcript parsing and artifact extraction."""

__version__ = "0.1.0"
