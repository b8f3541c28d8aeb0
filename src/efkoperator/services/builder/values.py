"""Construction of Helm values for the components of a logging stack."""

from __future__ import annotations

from typing import Any

from ...constants import (
    DEFAULT_TOLERATED_EFFECTS,
    ELASTICSEARCH_INDEX,
    ELASTICSEARCH_PORT,
    INGRESS_CLASS_ANNOTATION,
)
from ...models.domain.kubernetes import Toleration
from ...models.domain.reconcile import Component
from ...models.v1.efkstack import (
    ComponentSpec,
    EFKStack,
    IngressSpec,
)

__all__ = ["ReleaseValuesBuilder"]


class ReleaseValuesBuilder:
    """Construct the Helm values for each component of a logging stack.

    This is a pure translation from the ``EFKStack`` spec to the values
    expected by the charts. Optional settings are omitted entirely rather
    than sent as empty collections, so that chart defaults apply and Helm
    does not report spurious differences.
    """

    def build(self, component: Component, stack: EFKStack) -> dict[str, Any]:
        """Construct the values for one component.

        Parameters
        ----------
        component
            Component whose release values to build.
        stack
            Logging stack.

        Returns
        -------
        dict of Any
            Helm values for the chart of that component.
        """
        if component == Component.ELASTICSEARCH:
            return self.build_elasticsearch(stack)
        elif component == Component.FLUENT_BIT:
            return self.build_fluent_bit(stack)
        elif component == Component.KIBANA:
            return self.build_kibana(stack)
        else:
            raise ValueError(f"Unknown component {component}")

    def build_elasticsearch(self, stack: EFKStack) -> dict[str, Any]:
        """Construct the values for the Elasticsearch chart.

        Parameters
        ----------
        stack
            Logging stack.

        Returns
        -------
        dict of Any
            Helm values for Elasticsearch.
        """
        spec = stack.spec.elasticsearch
        storage_class = (
            spec.storage.storage_class_name
            or stack.spec.global_.storage_class
        )
        storage = {
            "storageClassName": storage_class,
            "size": spec.storage.size,
            "volumeType": spec.storage.volume_type,
            "path": spec.storage.path,
        }
        security: dict[str, Any] = {
            "tlsEnabled": spec.security.tls_enabled,
            "authEnabled": spec.security.auth_enabled,
        }
        if spec.security.tls_secret_name:
            security["tlsSecretName"] = spec.security.tls_secret_name
        if spec.security.auth_secret_name:
            security["authSecretName"] = spec.security.auth_secret_name
        values = {
            "version": spec.version,
            "mode": spec.mode.value,
            "replicas": spec.effective_replicas,
            "resources": spec.resources.to_values(),
            "storage": {k: v for k, v in storage.items() if v is not None},
            "security": security,
        }
        if spec.config:
            values["config"] = dict(spec.config)
        values.update(self._build_scheduling(spec))
        values.update(self._build_global(stack))
        return values

    def build_fluent_bit(self, stack: EFKStack) -> dict[str, Any]:
        """Construct the values for the Fluent Bit chart.

        Fluent Bit has to run on every node to collect its logs, so if no
        tolerations were given, it tolerates all taints with the common
        scheduling effects.

        Parameters
        ----------
        stack
            Logging stack.

        Returns
        -------
        dict of Any
            Helm values for Fluent Bit.
        """
        spec = stack.spec.fluent_bit
        host = Component.ELASTICSEARCH.release_name(stack.name)
        values = {
            "version": spec.version,
            "resources": spec.resources.to_values(),
            "elasticsearch": {
                "host": host,
                "port": ELASTICSEARCH_PORT,
                "index": ELASTICSEARCH_INDEX,
            },
        }
        config = spec.config.to_values()
        if config:
            values["config"] = config
        tolerations = spec.tolerations or self._default_tolerations()
        values.update(self._build_scheduling(spec, tolerations))
        values.update(self._build_global(stack))
        return values

    def build_kibana(self, stack: EFKStack) -> dict[str, Any]:
        """Construct the values for the Kibana chart.

        Parameters
        ----------
        stack
            Logging stack.

        Returns
        -------
        dict of Any
            Helm values for Kibana.
        """
        spec = stack.spec.kibana
        host = Component.ELASTICSEARCH.release_name(stack.name)
        values = {
            "version": spec.version,
            "replicas": spec.replicas,
            "resources": spec.resources.to_values(),
            "elasticsearch": {
                "hosts": [f"http://{host}:{ELASTICSEARCH_PORT}"]
            },
        }
        if spec.ingress.enabled:
            values["ingress"] = self._build_ingress(spec.ingress)
        values.update(self._build_scheduling(spec))
        values.update(self._build_global(stack))
        return values

    def _build_global(self, stack: EFKStack) -> dict[str, Any]:
        """Construct the values shared by all components."""
        values: dict[str, Any] = {}
        if stack.spec.global_.image_registry:
            values["imageRegistry"] = stack.spec.global_.image_registry
        tls = stack.spec.global_.tls
        if tls.enabled:
            values["tls"] = {"enabled": True}
            if tls.secret_name:
                values["tls"]["secretName"] = tls.secret_name
        return values

    def _build_ingress(self, ingress: IngressSpec) -> dict[str, Any]:
        """Expand the ingress settings into the form used by the chart.

        Parameters
        ----------
        ingress
            Ingress settings for Kibana.

        Returns
        -------
        dict of Any
            Ingress values, with the host expanded into a host and path list
            and the ingress class, if any, promoted out of the annotations.
        """
        hosts = []
        if ingress.host:
            path = {"path": "/", "pathType": "Prefix"}
            hosts.append({"host": ingress.host, "paths": [path]})
        tls = []
        for entry in ingress.tls:
            tls_values: dict[str, Any] = {"hosts": list(entry.hosts)}
            if entry.secret_name:
                tls_values["secretName"] = entry.secret_name
            tls.append(tls_values)
        values: dict[str, Any] = {"enabled": True, "hosts": hosts, "tls": tls}
        if ingress.annotations:
            values["annotations"] = dict(ingress.annotations)
            class_name = ingress.annotations.get(INGRESS_CLASS_ANNOTATION)
            if class_name:
                values["className"] = class_name
        return values

    def _build_scheduling(
        self,
        spec: ComponentSpec,
        tolerations: list[Toleration] | None = None,
    ) -> dict[str, Any]:
        """Construct the node selector and toleration values, if any.

        Parameters
        ----------
        spec
            Component spec.
        tolerations
            Tolerations to use instead of those from the spec.

        Returns
        -------
        dict of Any
            Values to merge into the component values. Empty settings are
            omitted.
        """
        values: dict[str, Any] = {}
        if spec.node_selector:
            values["nodeSelector"] = dict(spec.node_selector)
        if tolerations is None:
            tolerations = spec.tolerations
        if tolerations:
            values["tolerations"] = [t.to_values() for t in tolerations]
        return values

    def _default_tolerations(self) -> list[Toleration]:
        """Construct tolerations for all taints with common effects."""
        return [
            Toleration.model_validate({"operator": "Exists", "effect": e})
            for e in DEFAULT_TOLERATED_EFFECTS
        ]
