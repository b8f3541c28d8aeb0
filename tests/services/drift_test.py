"""Tests for detection of configuration changes."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from kubernetes_asyncio.client import ApiException
from safir.datetime import parse_isodatetime

from efkoperator.constants import (
    CONFIG_HASH_ANNOTATION,
    CONFIG_UPDATED_ANNOTATION,
)
from efkoperator.factory import Factory
from efkoperator.services.drift import compute_fingerprint

from ..support.data import (
    make_config_map,
    make_deployment,
    make_secret,
)
from ..support.kubernetes import MockKubernetesApi


def test_fingerprint() -> None:
    first = make_config_map("logs-fluentbit-config", "logging", {"a": "1"})
    second = make_config_map(
        "logs-fluentbit-extra",
        "logging",
        {"b": "2", "c": "3"},
        binary_data={"blob": b"\x00\x01"},
    )
    secret = make_secret("logs-fluentbit-auth", "logging", {"pw": "hunter2"})

    fingerprint = compute_fingerprint([first, second], [secret])
    assert len(fingerprint) == 16
    assert int(fingerprint, 16) >= 0

    # Order of objects does not matter.
    assert compute_fingerprint([second, first], [secret]) == fingerprint

    # Order of keys does not matter.
    second.data = {"c": "3", "b": "2"}
    assert compute_fingerprint([first, second], [secret]) == fingerprint

    # Any change to the data does matter.
    changed = make_secret("logs-fluentbit-auth", "logging", {"pw": "other"})
    assert compute_fingerprint([first, second], [changed]) != fingerprint
    second.binary_data = None
    assert compute_fingerprint([first, second], [secret]) != fingerprint

    # The same data in a Secret instead of a ConfigMap is different.
    as_secret = make_secret("logs-fluentbit-config", "logging", {"a": "1"})
    assert compute_fingerprint([], [as_secret]) != compute_fingerprint(
        [first], []
    )


def test_fingerprint_structure() -> None:
    text = make_config_map("logs-kibana-config", "logging", {"k": "v"})
    binary = make_config_map(
        "logs-kibana-config", "logging", {}, binary_data={"k": b"v"}
    )
    assert compute_fingerprint([text], []) != compute_fingerprint(
        [binary], []
    )

    # Keys of one object cannot be confused with the start of another.
    merged = make_config_map("a", "logging", {"k": "v", "z": "logging"})
    first = make_config_map("a", "logging", {"k": "v"})
    second = make_config_map("z", "logging", {})
    assert compute_fingerprint([merged], []) != compute_fingerprint(
        [first, second], []
    )

    # Values cannot spill over into the next key.
    joined = make_config_map("a", "logging", {"k": "v\0x"})
    split = make_config_map("a", "logging", {"k": "v", "x": ""})
    assert compute_fingerprint([joined], []) != compute_fingerprint(
        [split], []
    )


@pytest.mark.asyncio
async def test_check_stack(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    release = "logs-fluentbit"
    config_map = make_config_map(
        "logs-fluentbit-config",
        "logging",
        {"fluent-bit.conf": "[INPUT]"},
        release=release,
    )
    mock_kubernetes.add_object_for_test("ConfigMap", config_map)
    deployment = make_deployment("logs-fluentbit", "logging", release)
    mock_kubernetes.add_object_for_test("Deployment", deployment)
    other = make_deployment("logs-kibana", "logging", "logs-kibana")
    mock_kubernetes.add_object_for_test("Deployment", other)
    detector = factory.create_drift_detector()

    assert await detector.check_stack("logs", "logging") == 1
    assert mock_kubernetes.replaced == [
        ("Deployment", "logging", "logs-fluentbit")
    ]
    stored = mock_kubernetes.get_object_for_test(
        "Deployment", "logging", "logs-fluentbit"
    )
    annotations = stored.spec.template.metadata.annotations
    expected = compute_fingerprint([config_map], [])
    assert annotations[CONFIG_HASH_ANNOTATION] == expected
    updated = parse_isodatetime(annotations[CONFIG_UPDATED_ANNOTATION])
    assert datetime.now(tz=UTC) - updated < timedelta(seconds=5)

    # A second pass with no changes writes nothing.
    assert await detector.check_stack("logs", "logging") == 0
    assert len(mock_kubernetes.replaced) == 1

    # Changing the ConfigMap triggers another update.
    config_map.data = {"fluent-bit.conf": "[OUTPUT]"}
    mock_kubernetes.add_object_for_test("ConfigMap", config_map)
    assert await detector.check_stack("logs", "logging") == 1
    assert len(mock_kubernetes.replaced) == 2
    stored = mock_kubernetes.get_object_for_test(
        "Deployment", "logging", "logs-fluentbit"
    )
    annotations = stored.spec.template.metadata.annotations
    assert annotations[CONFIG_HASH_ANNOTATION] != expected


@pytest.mark.asyncio
async def test_no_config(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    deployment = make_deployment("logs-kibana", "logging", "logs-kibana")
    mock_kubernetes.add_object_for_test("Deployment", deployment)
    detector = factory.create_drift_detector()

    assert await detector.check_release("logs-kibana", "logging") == 0
    assert mock_kubernetes.replaced == []


@pytest.mark.asyncio
async def test_replace_failure(
    factory: Factory, mock_kubernetes: MockKubernetesApi
) -> None:
    release = "logs-elasticsearch"
    secret = make_secret(
        "logs-elasticsearch-auth", "logging", {"pw": "x"}, release=release
    )
    mock_kubernetes.add_object_for_test("Secret", secret)
    for name in ("logs-elasticsearch-a", "logs-elasticsearch-b"):
        deployment = make_deployment(name, "logging", release)
        mock_kubernetes.add_object_for_test("Deployment", deployment)

    def error(method: str, *args: str) -> None:
        if method == "replace_namespaced_deployment":
            if args[0] == "logs-elasticsearch-a":
                raise ApiException(status=409, reason="Conflict")

    mock_kubernetes.error_callback = error
    detector = factory.create_drift_detector()

    assert await detector.check_release(release, "logging") == 1
    assert mock_kubernetes.replaced == [
        ("Deployment", "logging", "logs-elasticsearch-b")
    ]
