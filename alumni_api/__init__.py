"""Multi-tenant alumni API backend."""

__version__ = "0.1.0"
