"""CLI command implementations."""

from .workspace import cleanup, create, detect, ensure, sweep

__all__ = ["cleanup", "create", "detect", "ensure", "sweep"]
