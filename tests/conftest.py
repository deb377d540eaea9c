"""
Pytest configuration for the relay tests.

Every outbound httpx client is replaced by one backed by ``httpx.MockTransport`` so no test talks to a
real CDN or mirror. Local overrides can still be placed in a .env file at the project root.
"""

import asyncio
from pathlib import Path

import httpx
import pytest
from dotenv import load_dotenv
from fastapi.testclient import TestClient

project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")

from mediarelay.configs import settings  # noqa: E402
from mediarelay.main import app  # noqa: E402


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line("markers", "asyncio: mark test as async")


class UnreadStream(httpx.AsyncByteStream):
    """Serves already known bytes as a fresh stream, so the relay can read it with aiter_raw."""

    def __init__(self, content: bytes):
        self.content = content

    async def __aiter__(self):
        yield self.content


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    monkeypatch.setattr(settings, "api_password", None)
    monkeypatch.setattr(settings, "relay_extra_headers", {})
    monkeypatch.setattr(settings, "allowed_media_hosts", ["googlevideo.com", "youtube.com"])
    monkeypatch.setattr(settings, "manifest_rewrite_domains", ["googlevideo.com"])
    monkeypatch.setattr(
        settings,
        "mirror_instances",
        ["https://mirror-a.example", "https://mirror-b.example", "https://mirror-c.example"],
    )
    monkeypatch.setattr(settings, "mirror_timeout", 1.0)
    monkeypatch.setattr(settings, "enable_streaming_progress", False)


@pytest.fixture
def mock_upstream(monkeypatch):
    """
    Factory fixture routing all outbound requests to a handler.

    Usage:
        def test_something(mock_upstream):
            requests = mock_upstream(lambda request: httpx.Response(200, content=b"ok"))
            ...
            assert requests[0].url == ...
    """

    def _install(handler):
        seen = []

        async def dispatch(request: httpx.Request):
            seen.append(request)
            result = handler(request)
            if not isinstance(result, httpx.Response):
                result = await result
            if result.is_stream_consumed:
                # httpx reads bytes content eagerly; a real transport hands over an unread stream.
                result = httpx.Response(
                    result.status_code, headers=result.headers, stream=UnreadStream(result.content)
                )
            return result

        def factory(follow_redirects: bool = True, **kwargs):
            return httpx.AsyncClient(
                transport=httpx.MockTransport(dispatch),
                follow_redirects=follow_redirects,
                timeout=kwargs.get("timeout", 5),
            )

        monkeypatch.setattr("mediarelay.handlers.create_httpx_client", factory)
        monkeypatch.setattr("mediarelay.utils.http_utils.create_httpx_client", factory)
        monkeypatch.setattr("mediarelay.metadata.create_httpx_client", factory)
        return seen

    return _install


@pytest.fixture
def client():
    """Test client without lifespan: the metadata client stays uninitialized."""
    return TestClient(app)


@pytest.fixture
def asgi_request():
    """
    Call the app directly and return every ASGI message it sent.

    The client side stays connected until ``disconnect`` is set, then reports ``http.disconnect``.
    """

    async def _call(path: str, query: str = "", disconnect: asyncio.Event | None = None) -> list:
        disconnect = disconnect or asyncio.Event()
        sent = []
        request_delivered = False

        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": query.encode(),
            "headers": [(b"host", b"relay.test")],
            "client": ("127.0.0.1", 50000),
            "server": ("relay.test", 80),
        }

        async def receive():
            nonlocal request_delivered
            if not request_delivered:
                request_delivered = True
                return {"type": "http.request", "body": b"", "more_body": False}
            await disconnect.wait()
            return {"type": "http.disconnect"}

        async def send(message):
            sent.append(message)

        await app(scope, receive, send)
        return sent

    return _call
