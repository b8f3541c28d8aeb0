"""Test the routes for the root path both internally and externally."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from efkoperator.config import Config


@pytest.mark.asyncio
async def test_get_external_index(client: AsyncClient, config: Config) -> None:
    response = await client.get("/efk-operator")
    assert response.status_code == 200
    data = response.json()
    metadata = data["metadata"]
    assert metadata["name"] == config.name
    assert isinstance(metadata["version"], str)
    assert isinstance(metadata["description"], str)
    assert data["watch_namespace"] == "logging"
    assert data["workers"] == 2


@pytest.mark.asyncio
async def test_get_internal_index(client: AsyncClient, config: Config) -> None:
    response = await client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == config.name
    assert isinstance(data["version"], str)
    assert isinstance(data["description"], str)
