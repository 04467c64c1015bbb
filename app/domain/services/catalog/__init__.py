"""
Catalog Provider Abstraction Layer

The conversation core talks to the product catalog and order backend only
through BaseCatalogProvider, so a different shop backend (or a test double)
can be swapped in without touching the tool handlers.
"""
from app.domain.services.catalog.base import (
    BaseCatalogProvider,
    CreatedOrder,
    OrderLine,
    ShippingOption,
)

__all__ = [
    "BaseCatalogProvider",
    "CreatedOrder",
    "OrderLine",
    "ShippingOption",
]
