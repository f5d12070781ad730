"""Main entry point for the UThread application."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from uthread.api.v1 import (
    messages_router,
    notifications_router,
    push_router,
    realtime_router,
)
from uthread.core.logging import configure_logging
from uthread.core.settings import settings
from uthread.services import (
    DeliveryRouter,
    NotificationFanout,
    PushChannel,
    SessionRegistry,
)
from uthread.services.push import PushTransport

logger = configure_logging(settings.log_level)

# Initialize FastAPI app
app = FastAPI(
    title=f"{settings.app_name} API",
    description="Realtime presence, direct messaging and notification delivery",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(messages_router, prefix="/api/v1")
app.include_router(notifications_router, prefix="/api/v1")
app.include_router(push_router, prefix="/api/v1")
app.include_router(realtime_router, prefix="/api/v1")


def install_realtime(target: FastAPI, push_transport: PushTransport | None = None) -> DeliveryRouter:
    """Build the realtime components and attach them to ``target.state``.

    A fresh registry is created on every call, so re-installing drops all
    known sessions.
    """
    registry = SessionRegistry()
    push_channel = PushChannel(push_transport)
    router = DeliveryRouter(registry, push_channel)

    target.state.session_registry = registry
    target.state.push_channel = push_channel
    target.state.delivery_router = router
    target.state.notification_fanout = NotificationFanout(router)
    return router


@app.on_event("startup")
async def on_startup() -> None:
    router = install_realtime(app)
    if not router.push_channel.enabled:
        logger.warning("VAPID keys not configured; offline recipients will not get push notifications")
    logger.info("%s %s started", settings.app_name, settings.app_version)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    registry: SessionRegistry | None = getattr(app.state, "session_registry", None)
    if registry is not None:
        logger.info("Shutting down with %d connected user(s)", len(registry.online_users))


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint with basic information about the API."""
    registry: SessionRegistry | None = getattr(app.state, "session_registry", None)
    return {
        "name": f"{settings.app_name} API",
        "version": settings.app_version,
        "online_users": len(registry.online_users) if registry is not None else 0,
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("uthread.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
