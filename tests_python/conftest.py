"""Shared fixtures for the injection helper test suite."""

from __future__ import annotations

import typing as typ
from pathlib import Path

import httpx
import pytest
from inject_test_helpers import NODE_PAYLOAD, WORKER_PAYLOAD, FakeEngine


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create an isolated workspace and set ``GITHUB_WORKSPACE`` accordingly."""
    root = tmp_path / "workspace"
    root.mkdir()
    monkeypatch.setenv("GITHUB_WORKSPACE", str(root))
    monkeypatch.delenv("GITHUB_OUTPUT", raising=False)
    monkeypatch.delenv("ENGINE", raising=False)
    return root


@pytest.fixture
def engine() -> FakeEngine:
    """Return a fake container engine whose builds and runs succeed."""
    return FakeEngine()


@pytest.fixture
def http_requests() -> list[httpx.Request]:
    """Collect the requests served by :func:`http_client`."""
    return []


@pytest.fixture
def http_client(http_requests: list[httpx.Request]) -> typ.Iterator[httpx.Client]:
    """Serve ``/node`` and ``/worker`` from memory; everything else is a 404."""

    payloads = {
        "/node": NODE_PAYLOAD,
        "/worker": WORKER_PAYLOAD,
        "/empty": b"",
    }

    def handler(request: httpx.Request) -> httpx.Response:
        http_requests.append(request)
        if request.url.path == "/latest/node":
            return httpx.Response(302, headers={"Location": "http://example/node"})
        if (payload := payloads.get(request.url.path)) is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, content=payload)

    with httpx.Client(
        transport=httpx.MockTransport(handler), follow_redirects=True
    ) as client:
        yield client
