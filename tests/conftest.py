"""
Pytest configuration and shared fixtures for Pomoflow tests.

This file contains:
- Settings / database / Flask app fixtures backed by tmp_path
- An httpx transport that forwards client calls into the Flask test client
- A wrapper transport for injecting failures and pausing requests
"""
import asyncio
import sys
from pathlib import Path
from typing import Callable, Optional

import httpx
import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app import create_app  # noqa: E402
from pomoflow.config import Settings  # noqa: E402
from pomoflow.database import Database  # noqa: E402
from pomoflow.notify import NullNotifier  # noqa: E402
from pomoflow.session import PomoflowSession  # noqa: E402


class FlaskTransport(httpx.AsyncBaseTransport):
    """Route httpx requests into a Flask test client (cookies live in the test client)."""

    def __init__(self, app):
        self.client = app.test_client()
        self.requests = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        content = await request.aread()
        path = request.url.raw_path.decode()
        self.requests.append((request.method, path))
        response = self.client.open(
            path,
            method=request.method,
            data=content,
            headers={"Content-Type": request.headers.get("content-type", "application/json")},
        )
        return httpx.Response(
            response.status_code,
            headers={"Content-Type": response.headers.get("Content-Type", "application/json")},
            content=response.get_data(),
        )


class ControlledTransport(httpx.AsyncBaseTransport):
    """Wrap another transport to fail or hold specific requests."""

    def __init__(self, inner: httpx.AsyncBaseTransport):
        self.inner = inner
        self.fail_when: Optional[Callable[[httpx.Request], bool]] = None
        self.fail_status = 500
        self.raise_error: Optional[Exception] = None
        self.hold_when: Optional[Callable[[httpx.Request], bool]] = None
        self.release = asyncio.Event()
        self.held = 0
        self.requests = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if self.hold_when and self.hold_when(request):
            self.held += 1
            await self.release.wait()
        if self.fail_when and self.fail_when(request):
            if self.raise_error is not None:
                raise self.raise_error
            return httpx.Response(self.fail_status, json={"msg": "Injected failure"})
        return await self.inner.handle_async_request(request)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_base_url="http://testserver/api",
        request_timeout=5.0,
        cache_path=str(tmp_path / "cache.db"),
        db_path=str(tmp_path / "server.db"),
        secret_key="test-secret",
        focus_minutes=25,
        short_break_minutes=5,
        long_break_minutes=15,
        long_break_interval=4,
    )


@pytest.fixture
def server_db(settings):
    return Database(settings.db_path)


@pytest.fixture
def flask_app(settings, server_db):
    app = create_app(settings, server_db)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def transport(flask_app):
    return ControlledTransport(FlaskTransport(flask_app))


@pytest.fixture
def make_session(settings, transport):
    """Build independent client sessions sharing one server."""
    def factory(cache_name: str = "cache.db", transport_override=None) -> PomoflowSession:
        session_settings = Settings(**{**settings.__dict__})
        session_settings.cache_path = str(Path(settings.cache_path).with_name(cache_name))
        return PomoflowSession(
            session_settings,
            transport=transport_override or transport,
            notifier=NullNotifier(),
            tick_interval=0,
        )
    return factory


@pytest.fixture
def session(make_session):
    return make_session()
