"""
Catalog/commerce provider interface.

The conversation core depends only on this interface; the WooCommerce
implementation (or a test double) is injected at startup.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Any, Optional

from app.conversation.session import CustomerProfile


@dataclass(frozen=True)
class ShippingOption:
    """A shipping method with its fee as the backend reports it"""
    method_id: str
    method_title: str
    total: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Optional["ShippingOption"]:
        if not data or not data.get("method_id"):
            return None
        return cls(
            method_id=str(data["method_id"]),
            method_title=str(data.get("method_title") or ""),
            total=str(data.get("total") or "0.00"),
        )


@dataclass(frozen=True)
class OrderLine:
    """One sanitized line item"""
    product_id: int
    quantity: int = 1
    variation_id: Optional[int] = None

    def to_payload(self) -> dict[str, int]:
        payload = {"product_id": self.product_id, "quantity": self.quantity}
        if self.variation_id:
            payload["variation_id"] = self.variation_id
        return payload


@dataclass(frozen=True)
class CreatedOrder:
    """Order identity returned by the backend after create/update"""
    id: str
    number: str
    status: str


class BaseCatalogProvider(ABC):
    """
    Product catalog and order backend.

    Implementations raise CatalogNotConfiguredError when credentials are
    missing and CatalogError for upstream failures.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Name used in logs"""

    @property
    @abstractmethod
    def configured(self) -> bool:
        """Whether the backend can be called at all"""

    @abstractmethod
    async def search_products(
        self,
        search: str = "",
        per_page: int = 12,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        category: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Published products matching a keyword, in compact form"""

    @abstractmethod
    async def get_product(self, product_id: int) -> Optional[dict[str, Any]]:
        """One product in compact form, or None when it does not exist"""

    @abstractmethod
    async def list_categories(self, search: str = "", per_page: int = 50) -> list[dict[str, Any]]:
        """Categories as {id, name, slug, count}"""

    @abstractmethod
    async def list_variations(self, product_id: int, per_page: int = 50) -> list[dict[str, Any]]:
        """Variations as {id, price, stock_status, attributes}"""

    @abstractmethod
    async def list_shipping_options(self, district: str = "") -> list[ShippingOption]:
        """Every shipping method the customer may choose from"""

    @abstractmethod
    async def choose_shipping(self, district: str) -> ShippingOption:
        """Best shipping method for a district; never raises"""

    @abstractmethod
    async def create_order(
        self,
        customer: CustomerProfile,
        lines: list[OrderLine],
        shipping: ShippingOption,
    ) -> CreatedOrder:
        """Create a cash-on-delivery order"""

    @abstractmethod
    async def get_order(self, order_id: str) -> dict[str, Any]:
        """Raw order document (must carry date_created_gmt or date_created)"""

    @abstractmethod
    async def update_order_status(self, order_id: str, status: str) -> CreatedOrder:
        """Set the order status"""
