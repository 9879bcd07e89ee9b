"""ASGI application for standalone deployment."""

import contextlib
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware

from parley_core.observability import get_logger

if TYPE_CHECKING:
    from parley_core.client import ChatClient

logger = get_logger(__name__)


def create_app(client: "ChatClient") -> Starlette:
    """Create the ASGI application.

    Args:
        client: The configured ChatClient instance

    Returns:
        Starlette application
    """
    from parley_core.server.routes import create_routes

    routes = create_routes(client)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Server starting")
        yield
        aborted = len(client.registry)
        await client.aclose()
        logger.info("Server stopped", context={"aborted_requests": aborted})

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=client.config.server.cors_origins or ["*"],
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID"],
        ),
    ]

    return Starlette(
        routes=routes,
        middleware=middleware,
        lifespan=lifespan,
    )
