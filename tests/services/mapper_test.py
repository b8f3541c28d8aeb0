"""Tests for mapping configuration objects to logging stacks."""

from __future__ import annotations

import pytest
from kubernetes_asyncio.client import ApiException, V1ConfigMap, V1ObjectMeta

from efkoperator.factory import Factory
from efkoperator.models.domain.reconcile import ReconcileRequest

from ..support.data import make_config_map, make_secret, read_input_stack
from ..support.kubernetes import MockKubernetesApi


@pytest.mark.asyncio
async def test_map_label(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    mock_kubernetes.add_stack_for_test(read_input_stack("basic"))
    mock_kubernetes.add_stack_for_test(read_input_stack("ingress"))
    mapper = factory.create_watch_mapper()

    config_map = make_config_map(
        "unrelated-name", "logging", {}, release="prod-kibana"
    )
    assert await mapper.map(config_map) == [
        ReconcileRequest(name="prod", namespace="logging")
    ]
    secret = make_secret(
        "some-secret", "logging", {}, release="logs-elasticsearch"
    )
    assert await mapper.map(secret) == [
        ReconcileRequest(name="logs", namespace="logging")
    ]

    # If the label is present, it alone decides, even if the name matches.
    config_map = make_config_map(
        "logs-fluentbit-config", "logging", {}, release="other-fluentbit"
    )
    assert await mapper.map(config_map) == []


@pytest.mark.asyncio
async def test_map_name(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    mock_kubernetes.add_stack_for_test(read_input_stack("basic"))
    mapper = factory.create_watch_mapper()
    expected = [ReconcileRequest(name="logs", namespace="logging")]

    for name in (
        "logs-fluentbit",
        "logs-fluentbit-config",
        "logs-kibana-kibana-config",
        "logs-elasticsearch-certs",
    ):
        config_map = make_config_map(name, "logging", {})
        assert await mapper.map(config_map) == expected

    for name in ("logs", "logs-config", "other-fluentbit-config"):
        secret = make_secret(name, "logging", {})
        assert await mapper.map(secret) == []


@pytest.mark.asyncio
async def test_map_namespace(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    mock_kubernetes.add_stack_for_test(read_input_stack("basic"))
    mapper = factory.create_watch_mapper()

    # Only stacks in the namespace of the object are considered.
    config_map = make_config_map(
        "logs-fluentbit-config", "other", {}, release="logs-fluentbit"
    )
    assert await mapper.map(config_map) == []

    # Objects without a name or namespace are ignored.
    config_map = V1ConfigMap(metadata=V1ObjectMeta(name="logs-kibana"))
    assert await mapper.map(config_map) == []


@pytest.mark.asyncio
async def test_map_error(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    mock_kubernetes.add_stack_for_test(read_input_stack("basic"))
    mapper = factory.create_watch_mapper()

    def error(method: str, *args: str) -> None:
        if method == "list_namespaced_custom_object":
            raise ApiException(status=500, reason="Internal error")

    mock_kubernetes.error_callback = error
    config_map = make_config_map(
        "logs-fluentbit-config", "logging", {}, release="logs-fluentbit"
    )
    assert await mapper.map(config_map) == []
