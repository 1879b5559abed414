"""Test fixtures for tenant operator tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import respx
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook

from tenantoperator.config import Config
from tenantoperator.factory import Factory
from tenantoperator.main import create_app

from .support.certificates import MockCertificateAuthority
from .support.config import configure
from .support.kubernetes import MockTenantKubernetesApi, patch_kubernetes

TEST_BASE_URL = "https://tenants.example.com/"
"""Base URL of the test application."""


@pytest_asyncio.fixture
async def config() -> Config:
    """Construct default configuration for tests."""
    return await configure("standard")


@pytest_asyncio.fixture
async def app(
    config: Config, mock_kubernetes: MockTenantKubernetesApi
) -> AsyncIterator[FastAPI]:
    """Return a configured test application.

    Wraps the application in a lifespan manager so that startup and shutdown
    events are sent during test execution.
    """
    app = create_app()
    async with LifespanManager(app):
        yield app


@pytest.fixture
def ca() -> MockCertificateAuthority:
    """Certificate authority standing in for the cluster signer."""
    return MockCertificateAuthority()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Return an ``httpx.AsyncClient`` configured to talk to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url=TEST_BASE_URL
    ) as client:
        yield client


@pytest_asyncio.fixture
async def factory(
    config: Config, mock_kubernetes: MockTenantKubernetesApi
) -> AsyncIterator[Factory]:
    """Create a component factory for tests."""
    async with Factory.standalone(config) as factory:
        yield factory


@pytest.fixture
def mock_kubernetes() -> Iterator[MockTenantKubernetesApi]:
    yield from patch_kubernetes()


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> Iterator[MockSlackWebhook]:
    config.slack_webhook = SecretStr("https://slack.example.com/webhook")
    yield mock_slack_webhook(
        config.slack_webhook.get_secret_value(), respx_mock
    )
    config.slack_webhook = None
