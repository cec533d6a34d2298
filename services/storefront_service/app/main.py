"""FastAPI application for the Storefront Service."""

from fastapi import FastAPI
from libs.common.logging import configure_logging
from libs.common.middleware import add_request_context_middleware
from services.storefront_service.routers import (
    admin_router,
    internal_router,
    webhooks_router,
)


def create_app() -> FastAPI:
    """Create and configure the Storefront Service FastAPI app."""
    configure_logging()
    app = FastAPI(
        title="Storefront Service",
        version="0.1.0",
        description="GCoin ledger, digital inventory and order fulfilment for the storefront bot.",
    )
    add_request_context_middleware(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "storefront"}

    # Bot transport routes (internal API key)
    app.include_router(internal_router)

    # Admin panel routes (admin API key)
    app.include_router(admin_router)

    # Payment provider callbacks (signature-checked)
    app.include_router(webhooks_router)

    return app


app = create_app()
