"""Local HTTP bridge for the desktop shell."""

from .app import build_default_app, create_app

__all__ = ["build_default_app", "create_app"]
