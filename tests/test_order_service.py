"""
Tests for order placement and cancellation.
"""
from datetime import datetime, timedelta, timezone

import pytest

from app.conversation import texts
from app.conversation.session import CustomerProfile
from app.core.exceptions import (
    CancelWindowExceededError,
    CatalogError,
    EmptyOrderError,
    OrderNotFoundError,
    OrderValidationError,
)
from app.domain.services.catalog.base import ShippingOption
from app.domain.services.order_service import OrderService, sanitize_lines, validate_customer
from tests.conftest import FakeCatalog

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _customer(**overrides) -> CustomerProfile:
    data = {
        "name": "Rahim Uddin",
        "phone": "01712345678",
        "address": "House 1, Road 2, Mirpur",
        "district": "Dhaka",
        "upazila": "Mirpur",
    }
    data.update(overrides)
    return CustomerProfile(**data)


def _order_placed(hours_ago: float) -> dict:
    created = NOW - timedelta(hours=hours_ago)
    return {"id": 1001, "date_created_gmt": created.strftime("%Y-%m-%dT%H:%M:%S")}


@pytest.fixture
def service(catalog: FakeCatalog) -> OrderService:
    return OrderService(catalog, cancel_window_hours=24, clock=lambda: NOW)


class TestSanitizeLines:
    """Tests for sanitize_lines"""

    @pytest.mark.unit
    def test_keeps_valid_items(self):
        lines = sanitize_lines([
            {"product_id": 11, "quantity": 2},
            {"product_id": "12", "variation_id": "501"},
        ])

        assert [(l.product_id, l.quantity, l.variation_id) for l in lines] == [
            (11, 2, None),
            (12, 1, 501),
        ]

    @pytest.mark.unit
    @pytest.mark.parametrize("item", [
        {"product_id": 0},
        {"product_id": -3},
        {"product_id": None},
        {"product_id": "abc"},
        {"quantity": 2},
        "11",
    ])
    def test_drops_invalid_items(self, item):
        assert sanitize_lines([item]) == []

    @pytest.mark.unit
    def test_quantity_is_at_least_one(self):
        lines = sanitize_lines([{"product_id": 11, "quantity": 0}, {"product_id": 12, "quantity": -4}])

        assert [l.quantity for l in lines] == [1, 1]

    @pytest.mark.unit
    def test_none_is_empty(self):
        assert sanitize_lines(None) == []


class TestValidateCustomer:
    """Tests for validate_customer"""

    @pytest.mark.unit
    def test_valid_customer_is_cleaned(self):
        cleaned = validate_customer(_customer(phone="017 1234-5678", name="  Rahim  ", email="bad-email"))

        assert cleaned.phone == "01712345678"
        assert cleaned.name == "Rahim"
        assert cleaned.email == ""

    @pytest.mark.unit
    @pytest.mark.parametrize("phone", ["", "12345", "02712345678", "0171234567"])
    def test_invalid_phone(self, phone: str):
        with pytest.raises(OrderValidationError) as exc:
            validate_customer(_customer(phone=phone))

        assert exc.value.field == "phone"
        assert exc.value.message == texts.INVALID_PHONE

    @pytest.mark.unit
    @pytest.mark.parametrize("field", ["name", "address"])
    def test_missing_name_or_address(self, field: str):
        with pytest.raises(OrderValidationError) as exc:
            validate_customer(_customer(**{field: "   "}))

        assert exc.value.field == field
        assert exc.value.message == texts.MISSING_NAME_OR_ADDRESS


class TestPlaceOrder:
    """Tests for OrderService.place_order"""

    @pytest.mark.unit
    async def test_places_order_with_chosen_shipping(self, service, catalog):
        placed = await service.place_order(_customer(), [{"product_id": 11, "quantity": 2}])

        assert placed.order_id == "1001"
        assert placed.eta == "১–২ দিন"
        customer, lines, shipping = catalog.created[0]
        assert customer.name == "Rahim Uddin"
        assert placed.customer == customer
        assert lines[0].quantity == 2
        assert shipping == catalog.shipping[0]

    @pytest.mark.unit
    async def test_explicit_shipping_is_used(self, service, catalog):
        outside = ShippingOption("flat_rate", "ঢাকার বাইরে", "120.00")

        placed = await service.place_order(_customer(district="Sylhet"), [{"product_id": 11}], outside)

        assert catalog.created[0][2] == outside
        assert placed.eta == "২–৪ দিন"

    @pytest.mark.unit
    async def test_empty_items_never_reach_backend(self, service, catalog):
        with pytest.raises(EmptyOrderError):
            await service.place_order(_customer(), [{"product_id": 0}, {"quantity": 3}])

        assert catalog.created == []

    @pytest.mark.unit
    async def test_try_place_order_folds_failures(self, service, catalog):
        bad_phone = await service.try_place_order(_customer(phone="123"), [{"product_id": 11}])
        no_items = await service.try_place_order(_customer(), [])

        assert bad_phone.ok is False
        assert bad_phone.error_code == "VALIDATION"
        assert bad_phone.field == "phone"
        assert no_items.error_code == "NO_ITEMS"
        assert no_items.message == texts.NO_ITEMS_SELECTED
        assert catalog.created == []

    @pytest.mark.unit
    async def test_try_place_order_backend_error(self, service, catalog):
        async def broken(*args, **kwargs):
            raise CatalogError("orders.create returned status 500", details={"status_code": 500})

        catalog.create_order = broken

        outcome = await service.try_place_order(_customer(), [{"product_id": 11}])

        assert outcome.ok is False
        assert outcome.error_code == "WC_ERROR"
        assert outcome.message == texts.ORDER_FORM_FAILED


class TestCancelOrder:
    """Tests for OrderService.cancel_order"""

    @pytest.mark.unit
    async def test_cancels_order_within_window(self, service, catalog):
        catalog.orders["1001"] = _order_placed(hours_ago=23)

        result = await service.cancel_order("#1001")

        assert result.status == "cancelled"
        assert catalog.updated == [("1001", "cancelled")]

    @pytest.mark.unit
    async def test_refuses_order_outside_window(self, service, catalog):
        catalog.orders["1001"] = _order_placed(hours_ago=25)

        with pytest.raises(CancelWindowExceededError) as exc:
            await service.cancel_order("1001")

        assert exc.value.details["age_hours"] == 25.0
        assert catalog.updated == []

    @pytest.mark.unit
    async def test_unknown_age_is_refused(self, service, catalog):
        catalog.orders["1001"] = {"id": 1001}

        with pytest.raises(CancelWindowExceededError):
            await service.cancel_order("1001")

        assert catalog.updated == []

    @pytest.mark.unit
    async def test_zulu_timestamp_is_understood(self, service, catalog):
        catalog.orders["1001"] = {
            "id": 1001,
            "date_created": (NOW - timedelta(hours=1)).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }

        await service.cancel_order("1001")

        assert catalog.updated == [("1001", "cancelled")]

    @pytest.mark.unit
    async def test_missing_order(self, service, catalog):
        with pytest.raises(OrderNotFoundError):
            await service.cancel_order("4040")

    @pytest.mark.unit
    @pytest.mark.parametrize("order_id", ["", "  ", "#", None])
    async def test_blank_order_id_never_reaches_backend(self, service, catalog, order_id):
        lookups: list[str] = []

        async def get_order(order_id):
            lookups.append(order_id)
            return [{"id": 1001}]

        catalog.get_order = get_order

        with pytest.raises(OrderNotFoundError):
            await service.cancel_order(order_id)

        assert lookups == []
        assert catalog.updated == []

    @pytest.mark.unit
    async def test_non_object_order_body_is_not_found(self, service, catalog):
        async def get_order(order_id):
            return [_order_placed(hours_ago=1)]

        catalog.get_order = get_order

        with pytest.raises(OrderNotFoundError):
            await service.cancel_order("1001")

        assert catalog.updated == []
