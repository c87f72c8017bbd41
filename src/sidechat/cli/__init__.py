"""Command-line interface for sidechat."""

from .app import app, main

__all__ = ["app", "main"]
