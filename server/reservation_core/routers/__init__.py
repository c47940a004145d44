"""FastAPI routers package."""

from .booking import router as booking_router
from .cancellation import router as cancellation_router
from .health import router as health_router
from .inventory import router as inventory_router
from .metrics import router as metrics_router
from .payment import router as payment_router

__all__ = [
    "booking_router",
    "cancellation_router",
    "health_router",
    "inventory_router",
    "metrics_router",
    "payment_router",
]
