"""Tiered retention and space management for backup pools."""

__version__ = "0.1.0"
