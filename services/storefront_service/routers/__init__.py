"""Storefront service routers."""

from services.storefront_service.routers.admin import router as admin_router
from services.storefront_service.routers.internal import router as internal_router
from services.storefront_service.routers.webhooks import router as webhooks_router

__all__ = [
    "admin_router",
    "internal_router",
    "webhooks_router",
]
