"""Leasecore - duplicate detection for rental property listings."""

__version__ = "0.1.0"
