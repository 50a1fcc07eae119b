from contextlib import asynccontextmanager
from os import getenv

import httpx
from fastapi import FastAPI, Request

from .config import DEFAULT_CONFIG_FILE, GatewayConfig, resolve_config
from .forwarder import Forwarder
from .handler import GatewayHandler
from .rules import RuleSet

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown logic."""
    #---- Startup ----
    config: GatewayConfig = app.state.config
    if not hasattr(app.state, 'http_client'):
        app.state.http_client = httpx.AsyncClient(timeout=httpx.Timeout(config.timeout))

    forwarder = Forwarder(
        app.state.http_client,
        follow_redirects=app.state.rule_set.follow_redirects,
        timeout=config.timeout,
    )
    app.state.handler = GatewayHandler(
        app.state.rule_set,
        forwarder,
        max_replay_body_bytes=config.max_replay_body_bytes,
    )

    try:
        yield
    finally:
        #---- Shutdown ----
        await app.state.http_client.aclose()


def create_app(config: GatewayConfig | None = None) -> FastAPI:
    """
    Build the gateway application.

    The rule set is compiled here, so an invalid configuration fails before
    anything is served.
    :raises ConfigurationError: invalid mapping pattern or default host
    """
    if config is None:
        config = GatewayConfig()
    rule_set = RuleSet.from_config(config)

    # no docs routes, every path belongs to the upstreams
    application = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    application.state.config = config
    application.state.rule_set = rule_set

    @application.api_route(path="/{path:path}", methods=PROXY_METHODS)
    async def proxy(path: str, request: Request):
        return await request.app.state.handler.handle(request)

    return application


def create_app_from_env() -> FastAPI:
    """Factory for `uvicorn --factory`, configured from CONFIG_FILE / FOLLOW_REDIRECTS."""
    config = resolve_config(
        getenv("CONFIG_FILE", DEFAULT_CONFIG_FILE),
        follow_redirects=getenv("FOLLOW_REDIRECTS") == "true",
    )
    return create_app(config)
