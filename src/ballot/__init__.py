"""Plurality ballot workflow engine."""

__version__ = "0.1.0"
