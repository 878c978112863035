"""Incremental cricket match warehouse: raw JSON to star-schema facts."""

__version__ = "0.1.0"
