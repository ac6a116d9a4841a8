"""HTTP API routers."""

from catalog_publishing import __version__
from catalog_publishing.api.connectivity import router as connectivity_router
from catalog_publishing.api.products import router as products_router
from catalog_publishing.api.publishing import router as publishing_router
from catalog_publishing.api.sitemaps import router as sitemaps_router

__all__ = [
    "__version__",
    "connectivity_router",
    "products_router",
    "publishing_router",
    "sitemaps_router",
]
