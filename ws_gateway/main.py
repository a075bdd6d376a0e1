"""
WebSocket Gateway main application.

Transport boundary between the realtime event bus and clients: authenticates
sockets, authorizes channel subscriptions and fans transport events out to
subscribed sockets.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from shared.config.logging import setup_logging, ws_gateway_logger as logger
from shared.config.settings import settings
from shared.infrastructure.events import RealtimeServices
from shared.security.auth import current_principal
from shared.security.roles import Principal, Role, role_dominates
from shared.utils.exceptions import ForbiddenError
from ws_gateway.connection_manager import ConnectionManager
from ws_gateway.constants import DEFAULT_ALLOWED_ORIGINS
from ws_gateway.endpoint import GatewayEndpoint


# Global connection manager, bound to the realtime services at startup
manager = ConnectionManager()


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Builds and starts the realtime services (transport, publisher, counter)
    and binds them to the connection manager; closes everything on shutdown.
    """
    setup_logging()
    logger.info(
        "Starting WebSocket Gateway",
        port=settings.ws_gateway_port,
        env=settings.environment,
        transport=settings.realtime_transport,
    )

    errors = settings.validate_production_secrets()
    if errors:
        for error in errors:
            logger.error("Configuration error", error=error)
        raise RuntimeError("Invalid production configuration")

    services = RealtimeServices.build(settings)
    await services.start()
    manager.bind(services)
    app.state.realtime = services

    yield

    logger.info("Shutting down WebSocket Gateway")
    await manager.close_all()
    await services.close()


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Cafeteria Realtime Gateway",
    description="Real-time notifications for cafeteria users, staff and admins",
    version="1.0.0",
    lifespan=lifespan,
)

DEFAULT_WS_ORIGINS = list(DEFAULT_ALLOWED_ORIGINS)

ws_allowed_origins = (
    [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    if settings.allowed_origins
    else DEFAULT_WS_ORIGINS
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ws_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


# =============================================================================
# HTTP Endpoints
# =============================================================================


@app.get("/ws/health")
def health_check():
    """Basic health check endpoint."""
    services = getattr(app.state, "realtime", None)
    transport_ok = services is not None and services.transport.is_connected
    return {
        "status": "healthy" if transport_ok else "degraded",
        "service": "ws-gateway",
        "version": app.version,
        "environment": settings.environment,
        "transport": settings.realtime_transport,
        "transport_connected": transport_ok,
        **manager.get_stats(),
    }


@app.get("/ws/connections")
async def connection_count(principal: Principal = Depends(current_principal)):
    """Live connection count across every gateway instance (admins only)."""
    if not role_dominates(principal.role, Role.ADMIN):
        raise ForbiddenError(
            "view connection counts",
            user_id=principal.principal_id,
            role=principal.role.value,
        )
    services: RealtimeServices = app.state.realtime
    return {
        "connections": await services.counter.value(),
        "local_connections": manager.connection_count(),
        "publisher": services.publisher.circuit_breaker.get_stats(),
    }


# =============================================================================
# WebSocket Endpoint
# =============================================================================


@app.websocket("/ws")
async def gateway_websocket(
    websocket: WebSocket,
    token: str = Query(..., description="JWT token"),
):
    """WebSocket endpoint for every role; channels are authorized per subscribe."""
    endpoint = GatewayEndpoint(websocket, manager, token)
    await endpoint.run()


# =============================================================================
# Development entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ws_gateway.main:app",
        host="0.0.0.0",
        port=settings.ws_gateway_port,
        reload=True,
    )
