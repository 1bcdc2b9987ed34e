"""End-to-end tests for the gateway app against a mocked provider."""

from __future__ import annotations

import json

import httpx
from fastapi.testclient import TestClient

from data_plane.gateway.config import GatewayConfig
from data_plane.gateway.routing import create_app


class FakeProvider:
    """In-memory provider API: replica status, scale requests and function invocation."""

    def __init__(self, replicas: dict[str, int], ready_after_scale: bool = True) -> None:
        self.replicas = replicas
        self.ready_after_scale = ready_after_scale
        self.scale_requests: list[dict] = []
        self.invocations: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/system/function/"):
            name = path.rsplit("/", 1)[-1]
            if name not in self.replicas:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, json={"name": name, "availableReplicas": self.replicas[name]})
        if path.startswith("/system/scale-function/"):
            body = json.loads(request.content)
            self.scale_requests.append(body)
            if self.ready_after_scale:
                self.replicas[body["serviceName"]] = body["replicas"]
            return httpx.Response(202)
        if path.startswith("/function/"):
            self.invocations.append(request)
            return httpx.Response(200, text=f"hello from {path}", headers={"x-served-by": "replica-0"})
        return httpx.Response(500)


def _config(**overrides) -> GatewayConfig:
    values = {
        "functions_provider_url": "http://provider:8081",
        "max_poll_count": 2,
        "function_poll_interval": 0.0,
        "cache_expiry": 1.0,
    }
    values.update(overrides)
    return GatewayConfig(**values)


def test_healthz_reports_ok() -> None:
    """The health endpoint should answer without touching the provider."""
    provider = FakeProvider({})
    with TestClient(create_app(_config(), transport=httpx.MockTransport(provider))) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_invocation_scales_function_from_zero_then_proxies() -> None:
    """A cold function is scaled to one replica and then invoked."""
    provider = FakeProvider({"echo": 0})
    app = create_app(_config(), transport=httpx.MockTransport(provider))

    with TestClient(app) as client:
        response = client.post("/function/echo/run?verbose=1", content=b"payload")

    assert response.status_code == 200
    assert response.text == "hello from /function/echo/run"
    assert response.headers["x-served-by"] == "replica-0"
    assert provider.scale_requests == [{"serviceName": "echo", "replicas": 1}]
    forwarded = provider.invocations[0]
    assert forwarded.method == "POST"
    assert forwarded.url.query == b"verbose=1"
    assert forwarded.content == b"payload"


def test_invocation_of_warm_function_skips_scaling() -> None:
    """A function with replicas is proxied without a scale request."""
    provider = FakeProvider({"echo": 2})

    with TestClient(create_app(_config(), transport=httpx.MockTransport(provider))) as client:
        response = client.get("/function/echo")

    assert response.status_code == 200
    assert provider.scale_requests == []


def test_unknown_function_returns_not_found() -> None:
    """Invoking a function the provider does not know yields 404."""
    provider = FakeProvider({})

    with TestClient(create_app(_config(), transport=httpx.MockTransport(provider))) as client:
        response = client.get("/function/ghost")

    assert response.status_code == 404
    assert response.text.startswith("error finding function ghost:")
    assert provider.invocations == []


def test_function_that_never_becomes_ready_times_out() -> None:
    """Exhausting the poll budget answers 504 instead of hanging."""
    provider = FakeProvider({"echo": 0}, ready_after_scale=False)

    with TestClient(create_app(_config(), transport=httpx.MockTransport(provider))) as client:
        response = client.get("/function/echo")

    assert response.status_code == 504
    assert provider.invocations == []


def test_scale_from_zero_disabled_proxies_directly() -> None:
    """With scaling off the gateway forwards without querying replicas."""
    provider = FakeProvider({"echo": 0})
    app = create_app(_config(scale_from_zero=False), transport=httpx.MockTransport(provider))

    with TestClient(app) as client:
        response = client.get("/function/echo")

    assert response.status_code == 200
    assert provider.scale_requests == []
    assert app.state.scaler is None


def test_unreachable_upstream_returns_bad_gateway() -> None:
    """Transport failures while proxying map to 502."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/system/function/"):
            return httpx.Response(200, json={"availableReplicas": 1})
        raise httpx.ConnectError("connection refused", request=request)

    with TestClient(create_app(_config(), transport=httpx.MockTransport(handler))) as client:
        response = client.get("/function/echo")

    assert response.status_code == 502


def test_malformed_labels_do_not_break_invocation() -> None:
    """Provider labels that are not a mapping are ignored and the call is proxied."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/system/function/"):
            return httpx.Response(200, json={"availableReplicas": 1, "labels": ["x"]})
        return httpx.Response(200, text="ok")

    with TestClient(create_app(_config(), transport=httpx.MockTransport(handler))) as client:
        response = client.get("/function/echo")

    assert response.status_code == 200
    assert response.text == "ok"


def test_malformed_status_returns_plaintext_not_found() -> None:
    """An unreadable status body is answered by the gate with the function name."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["echo"])

    with TestClient(create_app(_config(), transport=httpx.MockTransport(handler))) as client:
        response = client.get("/function/echo")

    assert response.status_code == 404
    assert response.text.startswith("error finding function echo:")


def test_encoded_path_is_forwarded_unchanged() -> None:
    """Percent-escapes in the path reach the provider as sent."""
    provider = FakeProvider({"echo": 1})

    with TestClient(create_app(_config(), transport=httpx.MockTransport(provider))) as client:
        response = client.get("/function/echo/a%2Fb%3Fc?x=1")

    assert response.status_code == 200
    forwarded = provider.invocations[0]
    assert forwarded.url.raw_path == b"/function/echo/a%2Fb%3Fc?x=1"
