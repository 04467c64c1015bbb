"""
Domain Services
"""
from app.domain.services.order_service import OrderService, OrderOutcome, PlacedOrder

__all__ = [
    "OrderService",
    "OrderOutcome",
    "PlacedOrder",
]
