"""
Tool Catalog

The closed set of capabilities the model may call. Each entry pairs a
pydantic argument model with an async handler and the token budget of the
reply that follows the tool result. Handlers never raise for domain or
backend failures: those are folded into an `{"ok": false, "error": ...}`
result the model can talk about.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from app.conversation.session import ChatSession, CustomerProfile
from app.core.config import settings
from app.core.exceptions import AppException
from app.core.logging import get_logger
from app.domain.services.catalog.base import BaseCatalogProvider
from app.domain.services.catalog.search import search_with_variants
from app.domain.services.order_service import OrderService
from app.domain.services.shipping import estimate_eta

logger = get_logger(__name__)


class ToolName(str, Enum):
    SEARCH_PRODUCTS = "search_products"
    GET_CATEGORIES = "get_categories"
    GET_PRODUCT_DETAILS = "get_product_details"
    GET_VARIATIONS = "get_variations"
    GET_CURRENT_OFFER = "get_current_offer"
    ESTIMATE_SHIPPING_ETA = "estimate_shipping_eta"
    PLACE_ORDER = "place_order"
    CANCEL_ORDER = "cancel_order"
    GET_SAVED_CUSTOMER = "get_saved_customer"


UNKNOWN_TOOL = "UNKNOWN_TOOL"
INVALID_ARGUMENTS = "INVALID_ARGUMENTS"


def _clamped_int(value: Any, default: int, low: int, high: int) -> int:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return default
    return min(high, max(low, number))


# ── Argument models ──

class SearchProductsArgs(BaseModel):
    query: str = Field(description="Search query like watch, phone, earbuds")
    per_page: int = Field(default=3, description="How many results to return (1-20)")
    min_price: Optional[float] = Field(default=None, description="Minimum budget in Taka")
    max_price: Optional[float] = Field(default=None, description="Maximum budget in Taka")
    category: Optional[str] = Field(default=None, description="WooCommerce category slug or id")

    @field_validator("per_page", mode="before")
    @classmethod
    def clamp_per_page(cls, v: Any) -> int:
        return _clamped_int(v, 3, 1, 20)

    @field_validator("category", mode="before")
    @classmethod
    def category_as_text(cls, v: Any) -> Optional[str]:
        return None if v in (None, "") else str(v)


class GetCategoriesArgs(BaseModel):
    search: str = ""
    per_page: int = 20

    @field_validator("per_page", mode="before")
    @classmethod
    def clamp_per_page(cls, v: Any) -> int:
        return _clamped_int(v, 20, 1, 100)


class GetProductDetailsArgs(BaseModel):
    id: int = Field(description="WooCommerce product ID")


class GetVariationsArgs(BaseModel):
    product_id: int


class NoArgs(BaseModel):
    pass


class EstimateShippingArgs(BaseModel):
    district: str = Field(description="Customer district in Bangladesh")


class OrderItemArgs(BaseModel):
    product_id: Optional[int] = None
    variation_id: Optional[int] = None
    quantity: int = 1


class PlaceOrderArgs(BaseModel):
    name: str
    phone: str
    address: str
    district: str
    upazila: str = ""
    items: list[OrderItemArgs]

    @field_validator("phone", mode="before")
    @classmethod
    def phone_as_text(cls, v: Any) -> str:
        return "" if v is None else str(v)


class CancelOrderArgs(BaseModel):
    order_id: str = Field(min_length=1)

    @field_validator("order_id", mode="before")
    @classmethod
    def order_id_as_text(cls, v: Any) -> str:
        return "" if v is None else str(v).strip().lstrip("#").strip()


# ── Results ──

@dataclass
class ToolResult:
    """JSON payload handed back to the model as the tool message"""
    payload: dict[str, Any]

    @property
    def ok(self) -> bool:
        return bool(self.payload.get("ok"))

    @property
    def error(self) -> Optional[str]:
        return self.payload.get("error")

    @classmethod
    def success(cls, **data: Any) -> "ToolResult":
        return cls({"ok": True, **data})

    @classmethod
    def failure(cls, error: str, **data: Any) -> "ToolResult":
        return cls({"ok": False, **data, "error": error})

    def to_content(self) -> str:
        return json.dumps(self.payload, ensure_ascii=False, default=str)


@dataclass
class ToolContext:
    """What a handler may touch while serving one turn"""
    session: ChatSession
    catalog: Optional[BaseCatalogProvider] = None
    orders: Optional[OrderService] = None
    offer_text: str = field(default_factory=lambda: settings.CURRENT_OFFER_TEXT)
    offer_code: str = field(default_factory=lambda: settings.CURRENT_OFFER_CODE)

    @property
    def catalog_ready(self) -> bool:
        return self.catalog is not None and self.catalog.configured


Handler = Callable[[ToolContext, Any], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    args_model: type[BaseModel]
    handler: Handler
    reply_max_tokens: int
    mutating: bool = False

    def schema(self) -> dict[str, Any]:
        parameters = self.args_model.model_json_schema()
        parameters.pop("title", None)
        parameters.setdefault("properties", {})
        parameters.setdefault("required", [])
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": parameters,
            },
        }


# ── Handlers ──

async def search_products(ctx: ToolContext, args: SearchProductsArgs) -> ToolResult:
    if not ctx.catalog_ready:
        return ToolResult.success(products=[])

    async def fetch(keyword: str) -> list[dict[str, Any]]:
        return await ctx.catalog.search_products(
            keyword,
            per_page=args.per_page,
            min_price=args.min_price,
            max_price=args.max_price,
            category=args.category,
        )

    try:
        products = await search_with_variants(fetch, args.query, args.per_page)
    except AppException as e:
        logger.warning("Product search failed", extra_data={"query": args.query, "error": e.code})
        return ToolResult.failure(e.code, products=[])
    return ToolResult.success(products=products)


async def get_categories(ctx: ToolContext, args: GetCategoriesArgs) -> ToolResult:
    if not ctx.catalog_ready:
        return ToolResult.success(categories=[])
    try:
        categories = await ctx.catalog.list_categories(args.search, per_page=args.per_page)
    except AppException as e:
        return ToolResult.failure(e.code, categories=[])
    return ToolResult.success(categories=categories)


async def get_product_details(ctx: ToolContext, args: GetProductDetailsArgs) -> ToolResult:
    if not ctx.catalog_ready:
        return ToolResult({"ok": False, "product": None})
    try:
        product = await ctx.catalog.get_product(args.id)
    except AppException as e:
        return ToolResult.failure(e.code, product=None)
    return ToolResult({"ok": product is not None, "product": product})


async def get_variations(ctx: ToolContext, args: GetVariationsArgs) -> ToolResult:
    if not ctx.catalog_ready:
        return ToolResult.success(variations=[])
    try:
        variations = await ctx.catalog.list_variations(args.product_id)
    except AppException as e:
        return ToolResult.failure(e.code, variations=[])
    return ToolResult.success(variations=variations)


async def get_current_offer(ctx: ToolContext, args: NoArgs) -> ToolResult:
    return ToolResult.success(offer={"text": ctx.offer_text, "code": ctx.offer_code, "expires": None})


async def estimate_shipping_eta(ctx: ToolContext, args: EstimateShippingArgs) -> ToolResult:
    return ToolResult.success(eta=estimate_eta(args.district, settings.home_district_keywords))


async def place_order(ctx: ToolContext, args: PlaceOrderArgs) -> ToolResult:
    if ctx.orders is None:
        return ToolResult.failure("WC_NOT_CONFIGURED", placed=None)

    customer = CustomerProfile(
        name=args.name,
        phone=args.phone,
        address=args.address,
        district=args.district,
        upazila=args.upazila,
        email=ctx.session.customer.email if ctx.session.customer else "",
    )
    try:
        placed = await ctx.orders.place_order(customer, [item.model_dump() for item in args.items])
    except AppException as e:
        logger.warning(
            "Tool order placement failed",
            extra_data={"session_id": ctx.session.session_id, "error": e.code}
        )
        return ToolResult.failure(e.code, placed=None)

    ctx.session.customer = placed.customer or customer
    return ToolResult({"ok": True, "placed": {"orderId": placed.order_id, "eta": placed.eta}, "error": None})


async def cancel_order(ctx: ToolContext, args: CancelOrderArgs) -> ToolResult:
    if ctx.orders is None:
        return ToolResult.failure("WC_NOT_CONFIGURED", cancelled=None)
    try:
        result = await ctx.orders.cancel_order(args.order_id)
    except AppException as e:
        return ToolResult.failure(e.code, cancelled=None)
    return ToolResult({
        "ok": True,
        "cancelled": {"orderId": result.number or args.order_id, "status": result.status},
        "error": None,
    })


async def get_saved_customer(ctx: ToolContext, args: NoArgs) -> ToolResult:
    customer = ctx.session.customer
    return ToolResult({"ok": customer is not None, "customer": customer.to_dict() if customer else None})


TOOLS: dict[ToolName, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec(
            ToolName.SEARCH_PRODUCTS,
            "Search WooCommerce products and return concise info for recommendations",
            SearchProductsArgs, search_products, 220,
        ),
        ToolSpec(
            ToolName.GET_CATEGORIES,
            "List WooCommerce product categories (optional search and limit)",
            GetCategoriesArgs, get_categories, 200,
        ),
        ToolSpec(
            ToolName.GET_PRODUCT_DETAILS,
            "Get a single product by ID for price, stock, and image",
            GetProductDetailsArgs, get_product_details, 220,
        ),
        ToolSpec(
            ToolName.GET_VARIATIONS,
            "Fetch variations for a variable product to ask user for size/color",
            GetVariationsArgs, get_variations, 220,
        ),
        ToolSpec(
            ToolName.GET_CURRENT_OFFER,
            "Get a simple current offer like free delivery or discount",
            NoArgs, get_current_offer, 200,
        ),
        ToolSpec(
            ToolName.ESTIMATE_SHIPPING_ETA,
            "Rough delivery ETA in Bangladesh by district",
            EstimateShippingArgs, estimate_shipping_eta, 200,
        ),
        ToolSpec(
            ToolName.PLACE_ORDER,
            "Place a WooCommerce COD order with customer details and line items",
            PlaceOrderArgs, place_order, 240, mutating=True,
        ),
        ToolSpec(
            ToolName.CANCEL_ORDER,
            "Cancel a WooCommerce order within 1 day of placement",
            CancelOrderArgs, cancel_order, 240, mutating=True,
        ),
        ToolSpec(
            ToolName.GET_SAVED_CUSTOMER,
            "Get previously saved customer details to reuse for new orders",
            NoArgs, get_saved_customer, 220,
        ),
    )
}

DEFAULT_REPLY_MAX_TOKENS = 200


def tool_schemas() -> list[dict[str, Any]]:
    return [spec.schema() for spec in TOOLS.values()]


def resolve(name: str) -> Optional[ToolSpec]:
    try:
        return TOOLS[ToolName(name)]
    except ValueError:
        return None


async def execute_tool(ctx: ToolContext, name: str, arguments: dict[str, Any]) -> ToolResult:
    """
    Validate the arguments and run one tool.

    Unknown names and invalid arguments come back as failed results.
    """
    spec = resolve(name)
    if spec is None:
        logger.warning("Model requested an unknown tool", extra_data={"tool": name})
        return ToolResult.failure(UNKNOWN_TOOL)

    try:
        args = spec.args_model.model_validate(arguments)
    except ValidationError as e:
        logger.warning(
            "Tool arguments failed validation",
            extra_data={"tool": name, "errors": e.error_count()}
        )
        return ToolResult.failure(INVALID_ARGUMENTS, details=[err["loc"] for err in e.errors()])

    return await spec.handler(ctx, args)
