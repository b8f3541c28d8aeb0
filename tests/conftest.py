"""Test fixtures for EFK operator tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import respx
import structlog
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook

from efkoperator.config import Config
from efkoperator.dependencies.config import config_dependency
from efkoperator.factory import Factory
from efkoperator.main import create_app
from efkoperator.services.reconciler import EFKStackReconciler

from .support.data import config_path
from .support.helm import MockHelm
from .support.kubernetes import MockKubernetesApi, patch_kubernetes


@pytest.fixture
def config() -> Config:
    """Construct default configuration for tests."""
    config_dependency.set_path(config_path("base"))
    return config_dependency.config


@pytest_asyncio.fixture
async def app(
    config: Config, mock_kubernetes: MockKubernetesApi
) -> AsyncIterator[FastAPI]:
    """Return a configured test application.

    Wraps the application in a lifespan manager so that startup and shutdown
    events are sent during test execution.
    """
    app = create_app()
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Return an ``httpx.AsyncClient`` configured to talk to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="https://example.com/"
    ) as client:
        yield client


@pytest_asyncio.fixture
async def factory(
    config: Config, mock_kubernetes: MockKubernetesApi
) -> AsyncIterator[Factory]:
    """Create a component factory for tests."""
    async with Factory.standalone(config) as factory:
        yield factory


@pytest.fixture
def mock_helm() -> dict[str, MockHelm]:
    """Mock Helm clients, keyed by namespace, created on first use."""
    return {}


@pytest.fixture
def mock_kubernetes() -> Iterator[MockKubernetesApi]:
    yield from patch_kubernetes()


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> Iterator[MockSlackWebhook]:
    url = "https://slack.example.com/webhook"
    config.slack_webhook = SecretStr(url)
    yield mock_slack_webhook(url, respx_mock)
    config.slack_webhook = None


@pytest.fixture
def reconciler(
    config: Config, factory: Factory, mock_helm: dict[str, MockHelm]
) -> EFKStackReconciler:
    """Create a reconciler that uses mock Helm clients."""

    def helm_factory(namespace: str) -> MockHelm:
        return mock_helm.setdefault(namespace, MockHelm(namespace))

    return EFKStackReconciler(
        charts_path=config.charts_path,
        efkstack_storage=factory.create_efkstack_storage(),
        values_builder=factory.create_values_builder(),
        drift_detector=factory.create_drift_detector(),
        helm_factory=helm_factory,
        logger=structlog.get_logger(__name__),
    )
