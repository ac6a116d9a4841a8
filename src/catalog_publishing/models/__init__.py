"""ORM model exports."""

from catalog_publishing import __version__
from catalog_publishing.models.base import Base
from catalog_publishing.models.blog_post import BlogPost
from catalog_publishing.models.category import Category, CategoryType
from catalog_publishing.models.product import Product

__all__ = [
    "__version__",
    "Base",
    "BlogPost",
    "Category",
    "CategoryType",
    "Product",
]
