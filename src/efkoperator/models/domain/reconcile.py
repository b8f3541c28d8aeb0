"""Domain models for reconciling ``EFKStack`` objects."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

__all__ = [
    "COMPONENT_ORDER",
    "Component",
    "ReconcileRequest",
    "ReconcileResult",
]


class Component(Enum):
    """One of the three components of a logging stack.

    The value is the suffix used for the Helm release name and the name of
    the chart directory.
    """

    ELASTICSEARCH = "elasticsearch"
    FLUENT_BIT = "fluentbit"
    KIBANA = "kibana"

    @property
    def display_name(self) -> str:
        """Human-readable name of the component, used in status messages."""
        names = {
            Component.ELASTICSEARCH: "Elasticsearch",
            Component.FLUENT_BIT: "FluentBit",
            Component.KIBANA: "Kibana",
        }
        return names[self]

    def release_name(self, stack: str) -> str:
        """Name of the Helm release of this component.

        This is also the value of the ``app.kubernetes.io/instance`` label on
        every object the chart creates.

        Parameters
        ----------
        stack
            Name of the ``EFKStack``.

        Returns
        -------
        str
            Helm release name.
        """
        return f"{stack}-{self.value}"


COMPONENT_ORDER = (
    Component.ELASTICSEARCH,
    Component.FLUENT_BIT,
    Component.KIBANA,
)
"""Dependency order in which components are reconciled.

Fluent Bit and Kibana both talk to Elasticsearch, so Elasticsearch must be
ready before either of them is deployed.
"""


@dataclass(frozen=True, slots=True)
class ReconcileRequest:
    """Request to reconcile one ``EFKStack``."""

    name: str
    """Name of the ``EFKStack``."""

    namespace: str
    """Namespace of the ``EFKStack``."""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    """Result of a successful reconcile pass."""

    requeue_after: timedelta | None = None
    """When to reconcile the stack again, or `None` to not requeue."""
