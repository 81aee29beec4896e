"""Metadata-driven record validation, measures and workflow transitions."""

__version__ = "1.0.0"
