"""Models for the ``EFKStack`` custom resource."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ...constants import (
    EFKSTACK_GROUP,
    EFKSTACK_KIND,
    EFKSTACK_VERSION,
)
from ..domain.kubernetes import Toleration
from ..domain.reconcile import Component

__all__ = [
    "ComponentSpec",
    "ComponentState",
    "ComponentStatus",
    "Condition",
    "ConditionStatus",
    "EFKStack",
    "EFKStackSpec",
    "EFKStackStatus",
    "ElasticsearchMode",
    "ElasticsearchSpec",
    "FluentBitConfig",
    "FluentBitSpec",
    "GlobalSpec",
    "GlobalTLSSpec",
    "IngressSpec",
    "IngressTLS",
    "KibanaSpec",
    "ObjectMetadata",
    "ResourceRequirements",
    "SecuritySpec",
    "StackPhase",
    "StorageSpec",
]


class CustomResourceModel(BaseModel):
    """Base class for models parsed from the ``EFKStack`` custom resource.

    Unknown fields are ignored rather than rejected, since schema validation
    is done by the Kubernetes API server using the CRD.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )


class ResourceRequirements(CustomResourceModel):
    """Compute resource requests and limits for a component."""

    requests: Annotated[
        dict[str, str],
        Field(
            title="Resource requests",
            description="Minimum resources, such as ``cpu`` and ``memory``",
            examples=[{"cpu": "500m", "memory": "1Gi"}],
        ),
    ] = {}

    limits: Annotated[
        dict[str, str],
        Field(
            title="Resource limits",
            description="Maximum resources, such as ``cpu`` and ``memory``",
            examples=[{"cpu": "1", "memory": "2Gi"}],
        ),
    ] = {}

    @field_validator("requests", "limits", mode="before")
    @classmethod
    def _validate_quantities(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v
        return {k: str(q) for k, q in v.items() if q is not None}

    def to_values(self) -> dict[str, dict[str, str]]:
        """Convert to Helm values, omitting anything not declared."""
        values = {}
        if self.requests:
            values["requests"] = dict(self.requests)
        if self.limits:
            values["limits"] = dict(self.limits)
        return values


class ElasticsearchMode(Enum):
    """Deployment mode of Elasticsearch."""

    SINGLETON = "singleton"
    CLUSTER = "cluster"


class StorageSpec(CustomResourceModel):
    """Persistent storage for Elasticsearch."""

    storage_class_name: Annotated[
        str | None, Field(title="Storage class name")
    ] = None

    size: Annotated[
        str | None,
        Field(
            title="Volume size",
            pattern="^[0-9]+(Gi|Mi)$",
            examples=["30Gi"],
        ),
    ] = None

    volume_type: Annotated[
        str | None,
        Field(
            title="Volume type",
            description="Such as ``persistentVolumeClaim`` or ``emptyDir``",
        ),
    ] = None

    path: Annotated[
        str | None,
        Field(
            title="Custom volume path",
            description="Path on a shared filesystem such as EFS",
            examples=["/prod/elasticsearch"],
        ),
    ] = None


class SecuritySpec(CustomResourceModel):
    """Security settings for Elasticsearch."""

    tls_enabled: Annotated[bool, Field(title="Enable TLS")] = True

    auth_enabled: Annotated[bool, Field(title="Enable authentication")] = True

    tls_secret_name: Annotated[
        str | None, Field(title="Secret holding TLS certificates")
    ] = None

    auth_secret_name: Annotated[
        str | None, Field(title="Secret holding credentials")
    ] = None


class ComponentSpec(CustomResourceModel):
    """Settings common to all components."""

    version: Annotated[
        str,
        Field(title="Version", description="Version of the component to run"),
    ]

    resources: Annotated[
        ResourceRequirements, Field(title="Resource requirements")
    ] = ResourceRequirements()

    node_selector: Annotated[
        dict[str, str],
        Field(
            title="Node selector",
            description="Only schedule pods on nodes with these labels",
        ),
    ] = {}

    tolerations: Annotated[
        list[Toleration],
        Field(
            title="Tolerations",
            description="Node taints the pods of this component tolerate",
        ),
    ] = []


class ElasticsearchSpec(ComponentSpec):
    """Configuration of Elasticsearch."""

    mode: Annotated[
        ElasticsearchMode,
        Field(
            title="Deployment mode",
            description=(
                "``singleton`` runs a single node regardless of ``replicas``,"
                " ``cluster`` runs a multi-node cluster"
            ),
        ),
    ] = ElasticsearchMode.CLUSTER

    replicas: Annotated[int, Field(title="Number of nodes", ge=1)] = 3

    storage: Annotated[StorageSpec, Field(title="Storage")] = StorageSpec()

    security: Annotated[SecuritySpec, Field(title="Security")] = (
        SecuritySpec()
    )

    config: Annotated[
        dict[str, str],
        Field(title="Additional Elasticsearch configuration settings"),
    ] = {}

    @property
    def effective_replicas(self) -> int:
        """Number of nodes to actually run, taking the mode into account."""
        if self.mode == ElasticsearchMode.SINGLETON:
            return 1
        return self.replicas


class FluentBitConfig(CustomResourceModel):
    """Fluent Bit pipeline configuration sections."""

    input: Annotated[str | None, Field(title="Input section")] = None

    filter: Annotated[str | None, Field(title="Filter section")] = None

    output: Annotated[str | None, Field(title="Output section")] = None

    service: Annotated[str | None, Field(title="Service section")] = None

    def to_values(self) -> dict[str, str]:
        """Convert to Helm values, omitting empty sections."""
        values = self.model_dump(exclude_none=True)
        return {k: v for k, v in values.items() if v}


class FluentBitSpec(ComponentSpec):
    """Configuration of Fluent Bit.

    Fluent Bit runs as a ``DaemonSet`` with one pod per eligible node, so it
    has no replica count.
    """

    config: Annotated[
        FluentBitConfig, Field(title="Pipeline configuration")
    ] = FluentBitConfig()


class IngressTLS(CustomResourceModel):
    """TLS configuration for one set of ingress hosts."""

    hosts: Annotated[list[str], Field(title="Hosts")] = []

    secret_name: Annotated[
        str | None, Field(title="Secret holding the TLS certificate")
    ] = None


class IngressSpec(CustomResourceModel):
    """Exposure of Kibana outside the cluster."""

    enabled: Annotated[bool, Field(title="Whether to create an ingress")] = (
        False
    )

    host: Annotated[
        str | None, Field(title="Hostname", examples=["kibana.example.com"])
    ] = None

    annotations: Annotated[
        dict[str, str], Field(title="Annotations for the ingress")
    ] = {}

    tls: Annotated[list[IngressTLS], Field(title="TLS configuration")] = []


class KibanaSpec(ComponentSpec):
    """Configuration of Kibana."""

    replicas: Annotated[int, Field(title="Number of pods", ge=1)] = 2

    ingress: Annotated[IngressSpec, Field(title="Ingress")] = IngressSpec()


class GlobalTLSSpec(CustomResourceModel):
    """Stack-wide TLS configuration."""

    enabled: Annotated[bool, Field(title="Enable TLS")] = False

    secret_name: Annotated[
        str | None, Field(title="Secret holding certificates")
    ] = None


class GlobalSpec(CustomResourceModel):
    """Settings shared by all components."""

    storage_class: Annotated[
        str | None,
        Field(
            title="Default storage class",
            description="Used if Elasticsearch sets no storage class",
        ),
    ] = None

    image_registry: Annotated[
        str | None,
        Field(title="Image registry", examples=["registry.example.com"]),
    ] = None

    tls: Annotated[GlobalTLSSpec, Field(title="TLS")] = GlobalTLSSpec()


class EFKStackSpec(CustomResourceModel):
    """Desired state of a logging stack."""

    version: Annotated[str | None, Field(title="Version of the stack")] = None

    namespace: Annotated[
        str | None,
        Field(
            title="Deployment namespace",
            description=(
                "Namespace into which to install the components. Defaults to"
                " the namespace of the ``EFKStack``."
            ),
        ),
    ] = None

    elasticsearch: Annotated[ElasticsearchSpec, Field(title="Elasticsearch")]

    fluent_bit: Annotated[FluentBitSpec, Field(title="Fluent Bit")]

    kibana: Annotated[KibanaSpec, Field(title="Kibana")]

    global_: Annotated[GlobalSpec, Field(alias="global", title="Global")] = (
        GlobalSpec()
    )

    def component(self, component: Component) -> ComponentSpec:
        """Return the spec of one component."""
        if component == Component.ELASTICSEARCH:
            return self.elasticsearch
        elif component == Component.FLUENT_BIT:
            return self.fluent_bit
        elif component == Component.KIBANA:
            return self.kibana
        else:
            raise ValueError(f"Unknown component {component}")


class ComponentState(Enum):
    """State of one component of the stack."""

    PENDING = "Pending"
    DEPLOYING = "Deploying"
    READY = "Ready"
    ERROR = "Error"


class StackPhase(Enum):
    """Overall phase of the stack, derived from the component states."""

    PENDING = "Pending"
    DEPLOYING = "Deploying"
    READY = "Ready"


class ConditionStatus(Enum):
    """Status of a Kubernetes condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ComponentStatus(CustomResourceModel):
    """Observed state of one component."""

    state: Annotated[ComponentState, Field(title="State")] = (
        ComponentState.PENDING
    )

    ready_replicas: Annotated[
        int | None, Field(title="Number of ready pods")
    ] = None

    version: Annotated[str | None, Field(title="Deployed version")] = None

    message: Annotated[
        str | None, Field(title="Error or progress message")
    ] = None

    url: Annotated[str | None, Field(title="URL of the component")] = None


class Condition(CustomResourceModel):
    """A Kubernetes status condition."""

    type: Annotated[str, Field(title="Condition type", examples=["Ready"])]

    status: Annotated[ConditionStatus, Field(title="Condition status")]

    reason: Annotated[str, Field(title="Machine-readable reason")]

    message: Annotated[str, Field(title="Human-readable message")]

    observed_generation: Annotated[
        int | None,
        Field(title="Generation of the spec the condition is based on"),
    ] = None

    last_transition_time: Annotated[
        datetime, Field(title="When the status last changed")
    ]


class EFKStackStatus(CustomResourceModel):
    """Observed state of a logging stack."""

    phase: Annotated[StackPhase | None, Field(title="Overall phase")] = None

    conditions: Annotated[list[Condition], Field(title="Conditions")] = []

    elasticsearch: Annotated[
        ComponentStatus,
        Field(default_factory=ComponentStatus, title="Elasticsearch status"),
    ]

    fluent_bit: Annotated[
        ComponentStatus,
        Field(default_factory=ComponentStatus, title="Fluent Bit status"),
    ]

    kibana: Annotated[
        ComponentStatus,
        Field(default_factory=ComponentStatus, title="Kibana status"),
    ]

    def component(self, component: Component) -> ComponentStatus:
        """Return the status of one component.

        Parameters
        ----------
        component
            Component whose status to return.

        Returns
        -------
        ComponentStatus
            Status of that component. This is the object stored in the
            status, so changes to it change the stack status.
        """
        if component == Component.ELASTICSEARCH:
            return self.elasticsearch
        elif component == Component.FLUENT_BIT:
            return self.fluent_bit
        elif component == Component.KIBANA:
            return self.kibana
        else:
            raise ValueError(f"Unknown component {component}")

    def compute_phase(self) -> StackPhase:
        """Compute the overall phase from the component states.

        Returns
        -------
        StackPhase
            ``Ready`` if all components are ready, otherwise ``Deploying`` if
            any component is deploying, otherwise ``Pending``.
        """
        states = {
            self.elasticsearch.state,
            self.fluent_bit.state,
            self.kibana.state,
        }
        if states == {ComponentState.READY}:
            return StackPhase.READY
        elif ComponentState.DEPLOYING in states:
            return StackPhase.DEPLOYING
        else:
            return StackPhase.PENDING

    def get_condition(self, condition_type: str) -> Condition | None:
        """Return the condition of the given type, if present."""
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def set_condition(self, condition: Condition) -> None:
        """Add or replace a condition.

        There is at most one condition of each type. If a condition of the
        same type already exists, it is replaced in place, but its last
        transition time is kept unless the status changed.

        Parameters
        ----------
        condition
            New condition.
        """
        for i, existing in enumerate(self.conditions):
            if existing.type != condition.type:
                continue
            if existing.status == condition.status:
                transition = existing.last_transition_time
                condition.last_transition_time = transition
            self.conditions[i] = condition
            return
        self.conditions.append(condition)

    def update_phase(self, generation: int | None, now: datetime) -> None:
        """Recompute the phase and the ``Ready`` condition.

        Parameters
        ----------
        generation
            Generation of the ``EFKStack`` spec that was reconciled.
        now
            Current time, used as the transition time if the condition
            status changed.
        """
        self.phase = self.compute_phase()
        if self.phase == StackPhase.READY:
            status = ConditionStatus.TRUE
            reason = "AllComponentsReady"
            message = "All components are ready"
        else:
            status = ConditionStatus.FALSE
            reason = "Reconciling"
            message = ", ".join(
                f"{c.display_name}: {self.component(c).state.value}"
                for c in Component
            )
        condition = Condition(
            type="Ready",
            status=status,
            reason=reason,
            message=message,
            observed_generation=generation,
            last_transition_time=now,
        )
        self.set_condition(condition)


class ObjectMetadata(CustomResourceModel):
    """Metadata of the ``EFKStack`` object.

    Only the fields used by the operator are parsed. Everything else is
    preserved so that the object can be written back unchanged.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="allow", populate_by_name=True
    )

    name: Annotated[str, Field(title="Name")]

    namespace: Annotated[str | None, Field(title="Namespace")] = None

    generation: Annotated[int | None, Field(title="Generation")] = None

    resource_version: Annotated[
        str | None, Field(title="Resource version")
    ] = None


class EFKStack(CustomResourceModel):
    """An ``EFKStack`` custom object."""

    api_version: Annotated[str, Field(title="API version")] = (
        f"{EFKSTACK_GROUP}/{EFKSTACK_VERSION}"
    )

    kind: Annotated[str, Field(title="Kind")] = EFKSTACK_KIND

    metadata: Annotated[ObjectMetadata, Field(title="Metadata")]

    spec: Annotated[EFKStackSpec, Field(title="Desired state")]

    status: Annotated[
        EFKStackStatus,
        Field(default_factory=EFKStackStatus, title="Observed state"),
    ]

    @property
    def name(self) -> str:
        """Name of the stack."""
        return self.metadata.name

    def to_kubernetes(self) -> dict[str, Any]:
        """Convert to the custom object body used by the Kubernetes API.

        Returns
        -------
        dict of Any
            Custom object with camel-case keys and unset fields omitted.
        """
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
