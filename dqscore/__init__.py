"""Data-quality rule scoring and query performance evaluation service."""

__version__ = "0.1.0"
