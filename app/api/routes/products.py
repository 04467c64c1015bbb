"""
Products API - catalog proxy for the chat widget
"""
from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.conversation.factory import get_catalog_provider
from app.core.exceptions import ErrorCode
from app.core.logging import get_logger
from app.domain.services.catalog.base import BaseCatalogProvider

logger = get_logger(__name__)

router = APIRouter()


class ProductListResponse(BaseModel):
    """Compact products as returned by the catalog"""
    ok: bool = True
    data: list[dict[str, Any]]


@router.get(
    "",
    response_model=ProductListResponse,
    summary="Search products",
    description="Keyword search against the storefront catalog.",
    responses={
        200: {"description": "Matching products"},
        503: {
            "description": "Catalog credentials are not configured",
            "content": {"application/json": {"example": {"ok": False, "error": "WC_NOT_CONFIGURED"}}},
        },
    },
)
async def list_products(
    search: str = Query("", max_length=200),
    per_page: int = Query(12, ge=1, le=24),
    catalog: BaseCatalogProvider = Depends(get_catalog_provider),
):
    if not catalog.configured:
        return JSONResponse(
            status_code=503,
            content={"ok": False, "error": ErrorCode.CATALOG_NOT_CONFIGURED.value},
        )

    products = await catalog.search_products(search=search.strip(), per_page=per_page)
    logger.debug("Products listed", extra_data={"search": search, "count": len(products)})
    return ProductListResponse(data=products)
