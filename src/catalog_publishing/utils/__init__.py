"""Utilities for shared application concerns."""

from catalog_publishing import __version__
from catalog_publishing.utils.logging import (
    add_request_logging_middleware,
    setup_logging,
)

__all__ = ["__version__", "add_request_logging_middleware", "setup_logging"]
