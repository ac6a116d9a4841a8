"""Catalog publishing service: sitemaps, publish batches and activity log."""

__version__ = "0.1.0"
