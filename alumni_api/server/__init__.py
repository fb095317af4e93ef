"""HTTP server construction."""

from .app import build_app, create_app, effective_workers
from .metrics import RequestMetrics

__all__ = ["build_app", "create_app", "effective_workers", "RequestMetrics"]
