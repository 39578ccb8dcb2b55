"""
Shared fixtures for the edge proxy tests.

The upstream API is replaced by an httpx.MockTransport so every forwarded
request is captured and no network traffic leaves the test process.
"""

from typing import Callable, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from edge_proxy.config import Settings
from edge_proxy.main import create_app
from edge_proxy.models import ProxyConfig
from edge_proxy.proxy.handler import ProxyHandler


class UpstreamStub:
    """
    Callable MockTransport handler recording every upstream request.

    Attributes:
        calls: Upstream requests in arrival order
        responder: Function producing the upstream response (or raising)
    """

    def __init__(self):
        self.calls: List[httpx.Request] = []
        self.responder: Callable = lambda request: httpx.Response(
            200,
            content=b'{"x":1}',
            headers={"Content-Type": "application/json"},
        )

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        response = self.responder(request)
        if hasattr(response, "__await__"):
            response = await response
        return response

    @property
    def last(self) -> Optional[httpx.Request]:
        return self.calls[-1] if self.calls else None


@pytest.fixture
def upstream():
    """Upstream API stub"""
    return UpstreamStub()


@pytest.fixture
def test_settings():
    """Settings isolated from the developer's .env file"""
    return Settings(_env_file=None)


@pytest.fixture
def make_client(upstream, test_settings):
    """
    Factory building a TestClient around a ProxyHandler with the given
    ProxyConfig overrides.
    """

    def _make(**overrides) -> TestClient:
        config = ProxyConfig(**overrides)
        app = create_app(test_settings)
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        app.state.app_state.proxy_handler = ProxyHandler(
            config,
            http_client,
            disconnect_poll_interval=0.01,
        )
        app.state.app_state.http_client = http_client
        return TestClient(app, raise_server_exceptions=False)

    return _make


@pytest.fixture
def client(make_client):
    """Client for an unauthenticated deployment with default settings"""
    return make_client()


@pytest.fixture
def auth_client(make_client):
    """Client for the authenticated deployment (credential + no-store)"""
    return make_client(
        credential="server-secret",
        require_credential=True,
        no_store=True,
    )
