"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files — pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from tortoise import Tortoise, connections

from app.deps import (
    can_read_or_manage_booking,
    can_write_booking,
    get_catalog_client,
    get_current_user,
    get_promo_catalog,
    require_booking_admin,
)
from app.exceptions import register_exception_handlers
from app.main import TORTOISE_MODULES
from app.routers import booking, provider

from .factories import make_admin, make_customer, make_provider, promo_catalog

# ---------------------------------------------------------------------------
# Default no-op collaborators — prevent real HTTP / Redis calls in tests
# ---------------------------------------------------------------------------


def _noop_catalog_client():
    mock = MagicMock()
    mock.get_service = AsyncMock(return_value=None)
    return mock


@pytest.fixture(autouse=True)
def _no_redis():
    """Ledger cache is a miss and writes are dropped unless a test patches it."""
    with (
        patch("app.routers.booking.invalidate_ledger_cache", AsyncMock()),
        patch("app.routers.provider.invalidate_ledger_cache", AsyncMock()),
        patch("app.routers.provider.get_ledger_cache", AsyncMock(return_value=None)),
        patch("app.routers.provider.set_ledger_cache", AsyncMock()),
    ):
        yield


# ---------------------------------------------------------------------------
# App builder — used by all client fixtures
# ---------------------------------------------------------------------------


def bare_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(booking.router)
    app.include_router(provider.router)
    return app


def build_app(current_user, catalog_client=None, promos=None) -> FastAPI:
    """
    Fresh FastAPI app with auth/scope dependencies overridden to return
    `current_user` unconditionally.

    Pass `catalog_client` to inject a custom mock; defaults to a no-op mock
    for which every service is absent.
    """
    app = bare_app()

    async def _user():
        return current_user

    for dep in (
        can_read_or_manage_booking,
        can_write_booking,
        require_booking_admin,
        get_current_user,
    ):
        app.dependency_overrides[dep] = _user

    cc = catalog_client if catalog_client is not None else _noop_catalog_client()
    pc = promos if promos is not None else promo_catalog()
    app.dependency_overrides[get_catalog_client] = lambda: cc
    app.dependency_overrides[get_promo_catalog] = lambda: pc

    return app


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def customer_client():
    return TestClient(build_app(make_customer()), raise_server_exceptions=True)


@pytest.fixture()
def provider_client():
    return TestClient(build_app(make_provider()), raise_server_exceptions=True)


@pytest.fixture()
def admin_client():
    return TestClient(build_app(make_admin()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    Bare app with NO dependency overrides.
    Use this when you want real scope/auth deps to run so you can assert 401/403/422.
    """
    return bare_app()


@pytest.fixture()
def client_factory():
    def _make(current_user, catalog_client=None, promos=None) -> TestClient:
        return TestClient(
            build_app(current_user, catalog_client=catalog_client, promos=promos),
            raise_server_exceptions=True,
        )

    return _make


# ---------------------------------------------------------------------------
# Database: in-memory sqlite per test for CRUD / ledger tests
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def db():
    await Tortoise.init(db_url="sqlite://:memory:", modules=TORTOISE_MODULES)
    await Tortoise.generate_schemas()
    yield
    await connections.close_all(discard=True)
