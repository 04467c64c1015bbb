"""
Order Service - placing and cancelling cash-on-delivery orders.

Validation happens here, before the catalog backend is called: an order with
bad customer fields or without a single valid line item never reaches the
backend, and a cancellation outside the window never issues the update.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from app.conversation.session import CustomerProfile
from app.core.exceptions import (
    AppException,
    CancelWindowExceededError,
    EmptyOrderError,
    OrderNotFoundError,
    OrderValidationError,
    CatalogError,
)
from app.core.logging import get_logger
from app.core.validation import EmailValidator, PhoneNumberValidator, TextSanitizer
from app.conversation import texts
from app.domain.services.catalog.base import (
    BaseCatalogProvider,
    CreatedOrder,
    OrderLine,
    ShippingOption,
)
from app.domain.services.shipping import confirmation_eta

logger = get_logger(__name__)


@dataclass
class PlacedOrder:
    """Result of a successful placement"""
    order_id: str
    eta: str
    status: str
    number: str = ""
    customer: Optional[CustomerProfile] = None


@dataclass
class OrderOutcome:
    """Success or a described failure of an order operation"""
    ok: bool
    placed: Optional[PlacedOrder] = None
    error_code: Optional[str] = None
    message: str = ""
    field: Optional[str] = None

    @classmethod
    def success(cls, placed: PlacedOrder) -> "OrderOutcome":
        return cls(ok=True, placed=placed)

    @classmethod
    def failure(cls, error_code: str, message: str, field: Optional[str] = None) -> "OrderOutcome":
        return cls(ok=False, error_code=error_code, message=message, field=field)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_order_date(order: dict[str, Any]) -> Optional[datetime]:
    """Creation time of a WooCommerce order; naive values are taken as UTC"""
    raw = order.get("date_created_gmt") or order.get("date_created")
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sanitize_lines(items: Iterable[Any] | None) -> list[OrderLine]:
    """Keep items with a positive product id; quantity is at least one"""
    lines: list[OrderLine] = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        try:
            product_id = int(float(item.get("product_id")))
        except (TypeError, ValueError, OverflowError):
            continue
        if product_id <= 0:
            continue

        try:
            quantity = max(1, int(float(item.get("quantity") or 1)))
        except (TypeError, ValueError, OverflowError):
            quantity = 1

        try:
            variation_id = int(float(item.get("variation_id"))) if item.get("variation_id") else None
        except (TypeError, ValueError, OverflowError):
            variation_id = None

        lines.append(OrderLine(product_id=product_id, quantity=quantity, variation_id=variation_id or None))
    return lines


def validate_customer(customer: CustomerProfile) -> CustomerProfile:
    """
    Check the fields an order needs and return a cleaned copy.

    Raises:
        OrderValidationError: phone is not a BD mobile, or name/address is empty
    """
    phone = PhoneNumberValidator.normalize(customer.phone)
    if not PhoneNumberValidator.validate(phone):
        raise OrderValidationError("phone", texts.INVALID_PHONE)

    name = TextSanitizer.sanitize(customer.name, max_length=200)
    address = TextSanitizer.sanitize(customer.address, max_length=500)
    if not name:
        raise OrderValidationError("name", texts.MISSING_NAME_OR_ADDRESS)
    if not address:
        raise OrderValidationError("address", texts.MISSING_NAME_OR_ADDRESS)

    return CustomerProfile(
        name=name,
        phone=phone,
        address=address,
        district=TextSanitizer.sanitize(customer.district, max_length=100),
        upazila=TextSanitizer.sanitize(customer.upazila, max_length=100),
        email=EmailValidator.clean(customer.email),
    )


class OrderService:
    """Order placement and cancellation against the catalog backend"""

    def __init__(
        self,
        catalog: BaseCatalogProvider,
        *,
        cancel_window_hours: int = 24,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.catalog = catalog
        self.cancel_window_hours = cancel_window_hours
        self._clock = clock

    async def place_order(
        self,
        customer: CustomerProfile,
        items: Iterable[Any] | None,
        shipping: Optional[ShippingOption] = None,
    ) -> PlacedOrder:
        """
        Validate and create a COD order.

        Raises:
            OrderValidationError: a customer field is invalid
            EmptyOrderError: no valid line item remains
            CatalogError / CatalogNotConfiguredError: the backend failed
        """
        cleaned = validate_customer(customer)
        lines = sanitize_lines(items)
        if not lines:
            raise EmptyOrderError()

        chosen = shipping or await self.catalog.choose_shipping(cleaned.district)
        created = await self.catalog.create_order(cleaned, lines, chosen)

        logger.info(
            "Order placed",
            extra_data={
                "order_id": created.id,
                "lines": len(lines),
                "shipping_method": chosen.method_id,
                "phone": PhoneNumberValidator.mask(cleaned.phone),
            }
        )
        return PlacedOrder(
            order_id=created.number or created.id,
            eta=confirmation_eta(cleaned.district),
            status=created.status,
            number=created.number,
            customer=cleaned,
        )

    async def try_place_order(
        self,
        customer: CustomerProfile,
        items: Iterable[Any] | None,
        shipping: Optional[ShippingOption] = None,
    ) -> OrderOutcome:
        """place_order with failures folded into an OrderOutcome"""
        try:
            placed = await self.place_order(customer, items, shipping)
        except OrderValidationError as e:
            return OrderOutcome.failure(e.code, e.message, field=e.field)
        except EmptyOrderError as e:
            return OrderOutcome.failure(e.code, texts.NO_ITEMS_SELECTED)
        except AppException as e:
            logger.warning(
                "Order placement failed",
                extra_data={"error_code": e.code, "error": e.message}
            )
            return OrderOutcome.failure(e.code, texts.ORDER_FORM_FAILED)
        return OrderOutcome.success(placed)

    async def cancel_order(self, order_id: str, now: Optional[datetime] = None) -> CreatedOrder:
        """
        Cancel an order placed within the cancellation window.

        Raises:
            OrderNotFoundError: the backend does not know the order
            CancelWindowExceededError: the order is older than the window or
                its age cannot be determined
        """
        order_id = str(order_id or "").strip().lstrip("#").strip()
        if not order_id:
            raise OrderNotFoundError(order_id)
        try:
            order = await self.catalog.get_order(order_id)
        except CatalogError as e:
            if e.details.get("status_code") == 404:
                raise OrderNotFoundError(order_id) from e
            raise
        if not isinstance(order, dict) or not order:
            raise OrderNotFoundError(order_id)

        created_at = _parse_order_date(order)
        current = now or self._clock()
        age_hours = (current - created_at).total_seconds() / 3600 if created_at else None

        if age_hours is None or age_hours > self.cancel_window_hours:
            logger.info(
                "Order cancellation refused",
                extra_data={"order_id": order_id, "age_hours": age_hours}
            )
            raise CancelWindowExceededError(order_id, age_hours, self.cancel_window_hours)

        result = await self.catalog.update_order_status(order_id, "cancelled")
        logger.info("Order cancelled", extra_data={"order_id": order_id, "status": result.status})
        return result
