"""Utilities for reading and building test data."""

from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any

from kubernetes_asyncio.client import (
    V1ConfigMap,
    V1Deployment,
    V1DeploymentSpec,
    V1LabelSelector,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
    V1Secret,
)

from efkoperator.constants import INSTANCE_LABEL
from efkoperator.models.v1.efkstack import EFKStack

__all__ = [
    "config_path",
    "make_config_map",
    "make_deployment",
    "make_secret",
    "read_input_stack",
    "read_stack",
]


def config_path(name: str) -> Path:
    """Return the path to a test configuration file.

    Parameters
    ----------
    name
        Name of the configuration (the file name under ``tests/data/config``
        without the ``.yaml`` extension).
    """
    base_path = Path(__file__).parent.parent / "data" / "config"
    return base_path / f"{name}.yaml"


def read_input_stack(name: str) -> dict[str, Any]:
    """Read an ``EFKStack`` custom object.

    Parameters
    ----------
    name
        Name of the file under ``tests/data/stacks`` without the ``.json``
        extension.

    Returns
    -------
    dict of Any
        Custom object as it would be returned by Kubernetes.
    """
    base_path = Path(__file__).parent.parent / "data" / "stacks"
    with (base_path / f"{name}.json").open("r") as f:
        return json.load(f)


def read_stack(name: str) -> EFKStack:
    """Read an ``EFKStack`` custom object and parse it."""
    return EFKStack.model_validate(read_input_stack(name))


def make_config_map(
    name: str,
    namespace: str,
    data: dict[str, str],
    *,
    release: str | None = None,
    binary_data: dict[str, bytes] | None = None,
) -> V1ConfigMap:
    """Construct a ``ConfigMap``, optionally labeled with a release."""
    labels = {INSTANCE_LABEL: release} if release else None
    encoded = None
    if binary_data:
        encoded = {
            k: base64.b64encode(v).decode() for k, v in binary_data.items()
        }
    return V1ConfigMap(
        metadata=V1ObjectMeta(name=name, namespace=namespace, labels=labels),
        data=data,
        binary_data=encoded,
    )


def make_secret(
    name: str,
    namespace: str,
    data: dict[str, str],
    *,
    release: str | None = None,
) -> V1Secret:
    """Construct a ``Secret``, optionally labeled with a release.

    The values of ``data`` are given in clear text and are encoded.
    """
    labels = {INSTANCE_LABEL: release} if release else None
    encoded = {
        k: base64.b64encode(v.encode()).decode() for k, v in data.items()
    }
    return V1Secret(
        metadata=V1ObjectMeta(name=name, namespace=namespace, labels=labels),
        data=encoded,
    )


def make_deployment(name: str, namespace: str, release: str) -> V1Deployment:
    """Construct a ``Deployment`` belonging to a release."""
    labels = {INSTANCE_LABEL: release}
    return V1Deployment(
        metadata=V1ObjectMeta(name=name, namespace=namespace, labels=labels),
        spec=V1DeploymentSpec(
            selector=V1LabelSelector(match_labels=labels),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=labels),
                spec=V1PodSpec(containers=[]),
            ),
        ),
    )
