"""
WooCommerce Provider

BaseCatalogProvider over the WooCommerce REST API (wc/v3). Calls go through
the catalog circuit breaker; product searches and shipping zones are cached
in Redis when it is reachable.
"""
from __future__ import annotations

import hashlib
import re
from typing import Any, Optional

import httpx

from app.conversation.session import CustomerProfile
from app.core.circuit_breaker import CircuitBreaker, get_catalog_circuit_breaker
from app.core.config import settings
from app.core.exceptions import (
    CatalogError,
    CatalogNotConfiguredError,
    ExternalServiceException,
    ServiceTimeoutError,
)
from app.core.logging import get_logger
from app.core.redis_client import cache_get_json, cache_set_json
from app.core.validation import EmailValidator, split_full_name
from app.domain.services.catalog.base import (
    BaseCatalogProvider,
    CreatedOrder,
    OrderLine,
    ShippingOption,
)

logger = get_logger(__name__)

_NUMBER_CHARS = re.compile(r"[^0-9.]")


def compact_product(product: dict[str, Any]) -> dict[str, Any]:
    """The product fields the assistant needs (at most three images)"""
    images = product.get("images") if isinstance(product.get("images"), list) else []
    categories = product.get("categories") if isinstance(product.get("categories"), list) else []
    return {
        "id": product.get("id"),
        "name": product.get("name"),
        "type": product.get("type"),
        "price": product.get("price"),
        "regular_price": product.get("regular_price"),
        "sale_price": product.get("sale_price"),
        "on_sale": product.get("on_sale"),
        "permalink": product.get("permalink"),
        "images": [{"src": i.get("src"), "alt": i.get("alt")} for i in images[:3]],
        "short_description": product.get("short_description"),
        "stock_status": product.get("stock_status"),
        "categories": [c.get("name") for c in categories],
    }


def product_price(product: dict[str, Any]) -> Optional[float]:
    """Numeric price of a compact product (price, then sale, then regular)"""
    raw = product.get("price") or product.get("sale_price") or product.get("regular_price")
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        cleaned = _NUMBER_CHARS.sub("", str(raw))
        try:
            return float(cleaned) if cleaned else None
        except ValueError:
            return None


def _filter_by_price(
    products: list[dict[str, Any]],
    min_price: Optional[float],
    max_price: Optional[float],
) -> list[dict[str, Any]]:
    filtered = []
    for product in products:
        price = product_price(product)
        if min_price is not None and (price is None or price < min_price):
            continue
        if max_price is not None and (price is None or price > max_price):
            continue
        filtered.append(product)
    return filtered


def _method_option(method: dict[str, Any]) -> ShippingOption:
    method_settings = method.get("settings") or {}
    title = (method_settings.get("title") or {}).get("value") or method.get("title") or settings.WC_SHIPPING_TITLE
    cost = method_settings.get("cost")
    if isinstance(cost, dict):
        cost = cost.get("value")
    return ShippingOption(
        method_id=str(method.get("method_id") or settings.WC_SHIPPING_METHOD_ID),
        method_title=str(title),
        total=str(cost if cost not in (None, "") else "0.00"),
    )


def _created_order(data: Any, operation: str) -> CreatedOrder:
    """Order reference from an orders response; the body must be an order object"""
    if not isinstance(data, dict) or data.get("id") is None:
        raise CatalogError(f"{operation} returned no order")
    return CreatedOrder(
        id=str(data["id"]),
        number=str(data.get("number") or data["id"]),
        status=str(data.get("status") or ""),
    )


class WooCommerceProvider(BaseCatalogProvider):
    """WooCommerce REST API client"""

    def __init__(
        self,
        circuit_breaker: CircuitBreaker | None = None,
        *,
        base_url: str | None = None,
        consumer_key: str | None = None,
        consumer_secret: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._circuit_breaker = circuit_breaker or get_catalog_circuit_breaker()
        self._base_url = (base_url if base_url is not None else settings.WC_BASE_URL).rstrip("/")
        self._consumer_key = consumer_key if consumer_key is not None else settings.WC_CONSUMER_KEY
        self._consumer_secret = consumer_secret if consumer_secret is not None else settings.WC_CONSUMER_SECRET
        self._timeout = settings.WC_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "woocommerce"

    @property
    def configured(self) -> bool:
        return bool(self._consumer_key and self._consumer_secret)

    def _default_shipping(self) -> ShippingOption:
        return ShippingOption(
            method_id=settings.WC_SHIPPING_METHOD_ID,
            method_title=settings.WC_SHIPPING_TITLE,
            total=settings.WC_SHIPPING_FEE,
        )

    def _cache_key(self, *parts: Any) -> str:
        digest = hashlib.sha1("|".join(str(p) for p in parts).encode("utf-8")).hexdigest()[:16]
        return f"catalog:{digest}"

    # ── HTTP ──

    async def _send(
        self,
        method: str,
        path: str,
        operation: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        query = {k: v for k, v in (params or {}).items() if v not in (None, "")}
        query["consumer_key"] = self._consumer_key
        query["consumer_secret"] = self._consumer_secret

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    f"{self._base_url}/wp-json/wc/v3{path}",
                    params=query,
                    json=json,
                )
        except httpx.TimeoutException as e:
            raise ServiceTimeoutError("woocommerce", self._timeout) from e
        except httpx.HTTPError as e:
            raise CatalogError(f"{operation} transport error: {e}") from e

        if response.status_code >= 400:
            logger.warning(
                "WooCommerce request failed",
                extra_data={"operation": operation, "status_code": response.status_code}
            )
            raise CatalogError.from_response(operation, response)
        try:
            return response.json()
        except ValueError as e:
            logger.warning(
                "WooCommerce returned a non-JSON body",
                extra_data={"operation": operation, "status_code": response.status_code}
            )
            raise CatalogError(
                f"{operation} returned invalid JSON",
                details={"status_code": response.status_code},
            ) from e

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        if not self.configured:
            raise CatalogNotConfiguredError()
        return await self._circuit_breaker.execute(self._send, method, path, operation, params, json)

    # ── Catalog ──

    async def search_products(
        self,
        search: str = "",
        per_page: int = 12,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        category: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        per_page = min(50, max(1, int(per_page)))
        cache_key = self._cache_key("products", search, per_page, min_price, max_price, category)
        cached = await cache_get_json(cache_key)
        if cached is not None:
            return cached

        data = await self._request(
            "GET",
            "/products",
            "products.search",
            params={"search": search, "per_page": per_page, "status": "publish", "category": category},
        )
        products = [compact_product(p) for p in data] if isinstance(data, list) else []
        # price filtering is done locally; older WC versions ignore min/max params
        products = _filter_by_price(products, min_price, max_price)

        await cache_set_json(cache_key, products, settings.CATALOG_CACHE_TTL_SECONDS)
        return products

    async def get_product(self, product_id: int) -> Optional[dict[str, Any]]:
        try:
            data = await self._request("GET", f"/products/{int(product_id)}", "products.get")
        except CatalogError as e:
            if e.details.get("status_code") == 404:
                return None
            raise
        return compact_product(data) if isinstance(data, dict) else None

    async def list_categories(self, search: str = "", per_page: int = 50) -> list[dict[str, Any]]:
        data = await self._request(
            "GET",
            "/products/categories",
            "categories.list",
            params={"search": search, "per_page": min(100, max(1, int(per_page)))},
        )
        return [
            {"id": c.get("id"), "name": c.get("name"), "slug": c.get("slug"), "count": c.get("count")}
            for c in (data if isinstance(data, list) else [])
        ]

    async def list_variations(self, product_id: int, per_page: int = 50) -> list[dict[str, Any]]:
        data = await self._request(
            "GET",
            f"/products/{int(product_id)}/variations",
            "variations.list",
            params={"per_page": per_page},
        )
        return [
            {
                "id": v.get("id"),
                "price": v.get("price"),
                "stock_status": v.get("stock_status"),
                "attributes": [
                    {"name": a.get("name"), "option": a.get("option")}
                    for a in (v.get("attributes") or [])
                ],
            }
            for v in (data if isinstance(data, list) else [])
        ]

    # ── Shipping ──

    async def _zone_methods(self) -> list[dict[str, Any]]:
        """Methods of the first shipping zone (the store ships to one country)"""
        cache_key = self._cache_key("shipping-methods", self._base_url)
        cached = await cache_get_json(cache_key)
        if cached is not None:
            return cached

        zones = await self._request("GET", "/shipping/zones", "shipping.zones")
        if not isinstance(zones, list) or not zones:
            return []
        zone_id = zones[0].get("id") if isinstance(zones[0], dict) else None
        if zone_id is None:
            raise CatalogError("shipping.zones returned a zone without an id")
        methods = await self._request("GET", f"/shipping/zones/{zone_id}/methods", "shipping.methods")
        methods = methods if isinstance(methods, list) else []
        await cache_set_json(cache_key, methods, settings.SHIPPING_CACHE_TTL_SECONDS)
        return methods

    async def list_shipping_options(self, district: str = "") -> list[ShippingOption]:
        try:
            methods = await self._zone_methods()
        except (ExternalServiceException, CatalogNotConfiguredError) as e:
            logger.warning("Listing shipping options failed", extra_data={"error": str(e)})
            return [self._default_shipping()]
        return [_method_option(m) for m in methods] or [self._default_shipping()]

    async def choose_shipping(self, district: str) -> ShippingOption:
        """
        Pick a zone method by its title.

        "ঢাকা ভেতর" / "inside dhaka" titles serve Dhaka districts, "ঢাকার বাইরে" /
        "outside" titles everything else; otherwise the first flat rate method.
        """
        if not settings.WC_USE_ZONE_SHIPPING:
            return self._default_shipping()
        try:
            methods = await self._zone_methods()
        except (ExternalServiceException, CatalogNotConfiguredError) as e:
            logger.warning(
                "Choosing shipping by district failed, using defaults",
                extra_data={"error": str(e)}
            )
            return self._default_shipping()
        if not methods:
            return self._default_shipping()

        d = (district or "").lower()
        in_dhaka = any(k in d for k in settings.home_district_keywords)
        preferred = None
        for method in methods:
            title = _method_option(method).method_title.lower()
            if in_dhaka and ("ঢাকা ভেতর" in title or ("dhaka" in title and "inside" in title)):
                preferred = method
                break
            if d and not in_dhaka and ("ঢাকার বাইরে" in title or "outside" in title):
                preferred = method

        chosen = preferred or next((m for m in methods if m.get("method_id") == "flat_rate"), methods[0])
        return _method_option(chosen)

    # ── Orders ──

    async def create_order(
        self,
        customer: CustomerProfile,
        lines: list[OrderLine],
        shipping: ShippingOption,
    ) -> CreatedOrder:
        first_name, last_name = split_full_name(customer.name)
        address = {
            "first_name": first_name,
            "last_name": last_name,
            "address_1": customer.address,
            "city": customer.district,
            "state": customer.upazila,
            "country": "BD",
            "postcode": "",
        }
        billing = {**address, "phone": customer.phone}
        email = EmailValidator.clean(customer.email)
        if email:
            billing["email"] = email

        payload = {
            "payment_method": "cod",
            "payment_method_title": "Cash on Delivery",
            "set_paid": False,
            "billing": billing,
            "shipping": address,
            "line_items": [line.to_payload() for line in lines],
            "shipping_lines": [shipping.to_dict()],
        }
        data = await self._request("POST", "/orders", "orders.create", json=payload)
        return _created_order(data, "orders.create")

    async def get_order(self, order_id: str) -> dict[str, Any]:
        data = await self._request("GET", f"/orders/{order_id}", "orders.get")
        if not isinstance(data, dict):
            raise CatalogError("orders.get returned no order")
        return data

    async def update_order_status(self, order_id: str, status: str) -> CreatedOrder:
        data = await self._request("PUT", f"/orders/{order_id}", "orders.update", json={"status": status})
        return _created_order(data, "orders.update")
