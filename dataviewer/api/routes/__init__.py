"""API routes module."""

from dataviewer.api.routes import databases, export, rows

__all__ = ["databases", "export", "rows"]
