import pytest
from fastapi.testclient import TestClient

from confproxy.models import ProxyConfig
from confproxy.server import create_app
from confproxy.utils_tests.upstream_mock import RecordingUpstream


@pytest.fixture
def upstream():
    """A recording upstream; set ``upstream.responder`` to change its answers."""
    return RecordingUpstream()


@pytest.fixture
def make_config():
    def _make(routes=None, **fields) -> ProxyConfig:
        payload = {"ownAddress": "https://proxy.example.com", "httpPort": ":8080"}
        payload.update(fields)
        payload["routeTable"] = routes or {}
        return ProxyConfig.model_validate(payload)

    return _make


@pytest.fixture
def proxy_client(upstream, make_config):
    """TestClient over the routed app for the given route table."""

    def _client(routes) -> TestClient:
        app = create_app(make_config(routes), client=upstream.client())
        return TestClient(app)

    return _client
