"""Public product lookup served through the per-slug product cache."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from catalog_publishing.api.dependencies import get_product_cache
from catalog_publishing.schemas.product import ProductRead
from catalog_publishing.services.product_cache import ProductCache

router = APIRouter(prefix="/api/products", tags=["products"])


@router.get("/{slug}", response_model=ProductRead)
async def get_published_product(
    slug: str,
    product_cache: ProductCache = Depends(get_product_cache),
) -> ProductRead:
    product = await product_cache.get_published(slug)
    if product is not None:
        return product

    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"ok": False, "error_code": "not_found"},
    )
