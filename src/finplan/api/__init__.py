"""HTTP surface for the planning engine."""

from .app import app

__all__ = ['app']
