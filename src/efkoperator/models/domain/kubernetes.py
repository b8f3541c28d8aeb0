"""Data types for interacting with Kubernetes."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Protocol, Self

from kubernetes_asyncio.client import V1ObjectMeta, V1PodTemplateSpec
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "KubernetesModel",
    "TaintEffect",
    "Toleration",
    "TolerationOperator",
    "WatchEventType",
    "WorkloadModel",
]


class KubernetesModel(Protocol):
    """Protocol for Kubernetes object models.

    kubernetes-asyncio_ doesn't currently expose type information, so this
    tells mypy that all the object models we deal with will have a metadata
    attribute. Code that only needs the name, namespace, and labels of an
    object, such as the mapping of changed ``ConfigMap`` and ``Secret``
    objects back to their ``EFKStack``, is written against this protocol.
    """

    metadata: V1ObjectMeta

    def to_dict(self, *, serialize: bool = False) -> dict[str, Any]: ...


class WorkloadSpec(Protocol):
    """Protocol for the spec of a workload with a pod template."""

    template: V1PodTemplateSpec


class WorkloadModel(KubernetesModel, Protocol):
    """Protocol for workloads (``Deployment``, ``DaemonSet``, etc.)."""

    spec: WorkloadSpec


class TaintEffect(Enum):
    """Possible effects of a pod toleration."""

    NO_SCHEDULE = "NoSchedule"
    PREFER_NO_SCHEDULE = "PreferNoSchedule"
    NO_EXECUTE = "NoExecute"


class TolerationOperator(Enum):
    """Possible operators for a toleration."""

    EQUAL = "Equal"
    EXISTS = "Exists"


class Toleration(BaseModel):
    """Represents a single pod toleration rule.

    Toleration rules describe what Kubernetes node taints a pod will tolerate,
    meaning that the pod can still be scheduled on that node even though the
    node is marked as tainted.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    effect: Annotated[
        TaintEffect | None,
        Field(
            title="Taint effect",
            description=(
                "Taint effect to match. If `None`, match all taint effects."
            ),
        ),
    ] = None

    key: Annotated[
        str | None,
        Field(
            title="Taint key",
            description=(
                "Taint key to match. If `None`, `operator` must be `Exists`,"
                " and this combination is used to match all taints."
            ),
        ),
    ] = None

    operator: Annotated[
        TolerationOperator,
        Field(
            title="Match operator",
            description=(
                "`Exists` is equivalent to a wildcard for value and matches"
                " all possible taints of a given category."
            ),
        ),
    ] = TolerationOperator.EQUAL

    toleration_seconds: Annotated[
        int | None,
        Field(
            title="Duration of toleration",
            description=(
                "Defines the length of time a `NoExecute` taint is tolerated"
                " and is ignored for other taint effects. `None` says to"
                " tolerate the taint forever."
            ),
        ),
    ] = None

    value: Annotated[
        str | None,
        Field(
            title="Taint value",
            description=(
                "Taint value to match. Must be `None` if the operator is"
                " `Exists`."
            ),
        ),
    ] = None

    @model_validator(mode="after")
    def _validate(self) -> Self:
        if self.operator == TolerationOperator.EXISTS:
            if self.value:
                raise ValueError("Toleration value not supported with Exists")
        elif not self.key:
            raise ValueError("Toleration key must be specified")
        return self

    def to_values(self) -> dict[str, Any]:
        """Convert to the form used in Kubernetes manifests and Helm values.

        Returns
        -------
        dict of Any
            Toleration with camel-case keys and unset fields omitted.
        """
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class WatchEventType(Enum):
    """Possible values of the ``type`` field of Kubernetes watch events."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
