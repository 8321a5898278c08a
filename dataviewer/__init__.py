"""Read-only table browser and CSV export service."""

__version__ = "1.0.0"
