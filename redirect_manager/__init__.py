"""Redirect resolution and lifecycle engine."""

__version__ = "0.1.0"
