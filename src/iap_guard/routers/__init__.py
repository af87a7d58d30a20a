# Routers package
from . import (
    admin_router,
    apple_webhook_router,
    purchase_router,
)

__all__ = [
    "admin_router",
    "apple_webhook_router",
    "purchase_router",
]
