# Centralized pytest configuration file (fixtures, hooks, plugins, etc.)
from contextlib import AsyncExitStack

import pytest
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from rewrite_gateway.config import GatewayConfig
from rewrite_gateway.main import create_app
from rewrite_gateway.testing.fake_upstreams import RoutingTransport, echo_upstream


@pytest.fixture
async def gateway_factory():
    """
    Builds gateway test clients.

    Outbound traffic of the gateway goes through a RoutingTransport to the
    given fake upstream apps; the transport is returned to inspect calls.
    """
    async with AsyncExitStack() as stack:
        async def build(config: GatewayConfig, upstreams: dict[str, FastAPI]):
            transport = RoutingTransport(upstreams)
            gateway_app = create_app(config)
            # Lifespan keeps a client that is already on app.state
            gateway_app.state.http_client = AsyncClient(transport=transport)

            await stack.enter_async_context(LifespanManager(gateway_app))
            client = await stack.enter_async_context(AsyncClient(
                transport=ASGITransport(app=gateway_app),
                base_url="http://gateway",
            ))
            return client, transport

        yield build


@pytest.fixture
async def gateway_client(gateway_factory):
    """Gateway with a default host pointing at a single echo upstream."""
    client, _ = await gateway_factory(
        GatewayConfig(default_host="http://upstream"),
        {"upstream": echo_upstream("upstream")},
    )
    return client
