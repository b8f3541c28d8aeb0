"""Tests for the Helm client."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
import structlog
import yaml

from efkoperator.exceptions import HelmError
from efkoperator.models.domain.helm import HelmRelease
from efkoperator.storage.helm import HelmClient

from ..support.helm import write_fake_helm


@pytest.fixture
def helm_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    log = tmp_path / "helm.log"
    monkeypatch.setenv("FAKE_HELM_LOG", str(log))
    monkeypatch.delenv("FAKE_HELM_FAIL", raising=False)
    monkeypatch.delenv("FAKE_HELM_STATUS", raising=False)
    return log


@pytest.fixture
def helm(tmp_path: Path, helm_log: Path) -> HelmClient:
    return HelmClient(
        "logging",
        binary=str(write_fake_helm(tmp_path)),
        timeout=timedelta(minutes=10),
        driver="configmap",
        logger=structlog.get_logger(__name__),
    )


@pytest.mark.asyncio
async def test_install(helm: HelmClient, helm_log: Path) -> None:
    values = {"version": "8.5.1", "replicas": 3, "resources": {}}
    release = await helm.install_or_upgrade(
        "logs-elasticsearch", Path("/charts/elasticsearch"), values
    )

    assert release == HelmRelease(
        name="logs-elasticsearch",
        namespace="logging",
        revision=1,
        status="deployed",
        chart="elasticsearch-1.0.0",
        app_version="8.5.1",
    )
    assert helm_log.read_text().splitlines() == [
        "configmap:upgrade logs-elasticsearch /charts/elasticsearch --install"
        " --namespace logging --create-namespace --wait --wait-for-jobs"
        " --timeout 600s --values - --output json"
    ]
    values_path = helm_log.parent / (helm_log.name + ".values")
    with values_path.open("r") as f:
        assert yaml.safe_load(f) == values


@pytest.mark.asyncio
async def test_install_failure(
    helm: HelmClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("FAKE_HELM_FAIL", "timed out waiting for the condition")

    with pytest.raises(HelmError) as excinfo:
        await helm.install_or_upgrade("logs-kibana", Path("/charts"), {})
    error = excinfo.value
    assert error.returncode == 1
    assert error.command
    assert error.command[1:3] == ["upgrade", "logs-kibana"]
    assert error.stderr == "Error: timed out waiting for the condition\n"
    assert str(error) == (
        "Helm command failed (exit status 1): Error: timed out waiting for"
        " the condition"
    )


@pytest.mark.asyncio
async def test_status(
    helm: HelmClient, helm_log: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    assert await helm.get_release_status("logs-kibana") == "deployed"
    assert helm_log.read_text().splitlines() == [
        "configmap:status logs-kibana --namespace logging --output json"
    ]

    monkeypatch.setenv("FAKE_HELM_STATUS", "pending-upgrade")
    assert await helm.get_release_status("logs-kibana") == "pending-upgrade"

    monkeypatch.setenv("FAKE_HELM_STATUS", "NotFound")
    assert await helm.get_release_status("logs-kibana") == "NotFound"


@pytest.mark.asyncio
async def test_status_failure(tmp_path: Path, helm_log: Path) -> None:
    helm = HelmClient(
        "logging",
        binary=str(write_fake_helm(tmp_path)),
        logger=structlog.get_logger(__name__),
    )
    helm._helm = "/bin/false"

    with pytest.raises(HelmError) as excinfo:
        await helm.get_release_status("logs-kibana")
    assert excinfo.value.returncode == 1


def test_missing_binary(tmp_path: Path) -> None:
    with pytest.raises(HelmError):
        HelmClient(
            "logging",
            binary=str(tmp_path / "helm"),
            logger=structlog.get_logger(__name__),
        )
    client = HelmClient(
        "logging",
        binary=str(write_fake_helm(tmp_path)),
        logger=structlog.get_logger(__name__),
    )
    assert client.namespace == "logging"
