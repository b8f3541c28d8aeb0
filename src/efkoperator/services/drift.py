"""Detection of configuration changes not yet rolled out to workloads."""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Iterable
from datetime import UTC, datetime

from kubernetes_asyncio.client import V1ConfigMap, V1ObjectMeta, V1Secret
from safir.datetime import isodatetime
from structlog.stdlib import BoundLogger

from ..constants import (
    CONFIG_HASH_ANNOTATION,
    CONFIG_UPDATED_ANNOTATION,
    FINGERPRINT_LENGTH,
    INSTANCE_LABEL,
    KUBERNETES_REQUEST_TIMEOUT,
)
from ..exceptions import KubernetesError
from ..models.domain.reconcile import Component
from ..storage.kubernetes.objects import (
    ConfigMapStorage,
    SecretStorage,
    WorkloadStorage,
)
from ..timeout import Timeout

__all__ = ["ConfigDriftDetector", "compute_fingerprint"]


def compute_fingerprint(
    config_maps: Iterable[V1ConfigMap], secrets: Iterable[V1Secret]
) -> str:
    """Compute a fingerprint of the contents of configuration objects.

    The objects and their keys are sorted before hashing, so the result does
    not depend on the order in which Kubernetes returned them. Binary data
    and secret data is decoded from base64 and hashed as bytes.

    Every field is prefixed with its length, and every object and data
    section is tagged with its kind, so distinct sets of objects never hash
    the same input.

    Parameters
    ----------
    config_maps
        ``ConfigMap`` objects to include.
    secrets
        ``Secret`` objects to include.

    Returns
    -------
    str
        Short hex digest of the contents.
    """
    digest = hashlib.sha256()

    def add(value: str | bytes) -> None:
        if isinstance(value, str):
            value = value.encode()
        digest.update(len(value).to_bytes(8, "big"))
        digest.update(value)

    def add_section(
        section: str, data: dict[str, str] | None, *, encoded: bool
    ) -> None:
        data = data or {}
        add(section)
        add(str(len(data)))
        for key in sorted(data):
            add(key)
            value = data[key] or ""
            add(base64.b64decode(value) if encoded else value)

    def sort_key(obj: V1ConfigMap | V1Secret) -> tuple[str, str]:
        return (obj.metadata.name or "", obj.metadata.namespace or "")

    for config_map in sorted(config_maps, key=sort_key):
        add("ConfigMap")
        add(config_map.metadata.name or "")
        add(config_map.metadata.namespace or "")
        add_section("data", config_map.data, encoded=False)
        add_section("binaryData", config_map.binary_data, encoded=True)
    for secret in sorted(secrets, key=sort_key):
        add("Secret")
        add(secret.metadata.name or "")
        add(secret.metadata.namespace or "")
        add_section("data", secret.data, encoded=True)
    return digest.hexdigest()[:FINGERPRINT_LENGTH]


class ConfigDriftDetector:
    """Restart workloads whose configuration has changed.

    The workloads of a Helm release mount ``ConfigMap`` and ``Secret``
    objects that may be changed without changing the workload itself, in
    which case Kubernetes does not restart its pods. This service records a
    fingerprint of the configuration objects of each release in the pod
    template of its workloads. When the fingerprint changes, rewriting the
    pod template causes Kubernetes to roll out new pods.

    Parameters
    ----------
    config_map_storage
        Storage for ``ConfigMap`` objects.
    secret_storage
        Storage for ``Secret`` objects.
    workload_storages
        Storage for each kind of workload that may belong to a release.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config_map_storage: ConfigMapStorage,
        secret_storage: SecretStorage,
        workload_storages: list[WorkloadStorage],
        logger: BoundLogger,
    ) -> None:
        self._config_map_storage = config_map_storage
        self._secret_storage = secret_storage
        self._workload_storages = workload_storages
        self._logger = logger

    async def check_stack(self, name: str, namespace: str) -> int:
        """Check all releases of a logging stack for configuration drift.

        Parameters
        ----------
        name
            Name of the ``EFKStack``.
        namespace
            Namespace into which the components are installed.

        Returns
        -------
        int
            Number of workloads that were restarted.

        Raises
        ------
        KubernetesError
            Raised if the configuration objects or workloads of a release
            could not be listed.
        """
        updated = 0
        for component in Component:
            release = component.release_name(name)
            updated += await self.check_release(release, namespace)
        return updated

    async def check_release(self, release: str, namespace: str) -> int:
        """Check one release for configuration drift.

        If the release has no configuration objects, there is nothing to
        fingerprint and nothing is done.

        Parameters
        ----------
        release
            Name of the Helm release.
        namespace
            Namespace of the release.

        Returns
        -------
        int
            Number of workloads that were restarted.

        Raises
        ------
        KubernetesError
            Raised if the configuration objects or workloads of the release
            could not be listed.
        """
        logger = self._logger.bind(release=release, namespace=namespace)
        selector = f"{INSTANCE_LABEL}={release}"
        timeout = Timeout("Checking config drift", KUBERNETES_REQUEST_TIMEOUT)
        async with timeout.enforce():
            config_maps = await self._config_map_storage.list(
                namespace, timeout, label_selector=selector
            )
            secrets = await self._secret_storage.list(
                namespace, timeout, label_selector=selector
            )
        if not config_maps and not secrets:
            return 0
        fingerprint = compute_fingerprint(config_maps, secrets)

        updated = 0
        for storage in self._workload_storages:
            async with timeout.enforce():
                workloads = await storage.list(
                    namespace, timeout, label_selector=selector
                )
            for workload in workloads:
                template = workload.spec.template
                if not template.metadata:
                    template.metadata = V1ObjectMeta()
                annotations = template.metadata.annotations or {}
                if annotations.get(CONFIG_HASH_ANNOTATION) == fingerprint:
                    continue
                annotations[CONFIG_HASH_ANNOTATION] = fingerprint
                now = isodatetime(datetime.now(tz=UTC))
                annotations[CONFIG_UPDATED_ANNOTATION] = now
                template.metadata.annotations = annotations
                try:
                    async with timeout.enforce():
                        await storage.replace(workload, timeout)
                except KubernetesError as e:
                    msg = "Cannot restart workload for configuration change"
                    logger.warning(
                        msg,
                        kind=storage.kind,
                        name=workload.metadata.name,
                        error=str(e),
                    )
                    continue
                logger.info(
                    "Restarting workload for configuration change",
                    kind=storage.kind,
                    name=workload.metadata.name,
                    fingerprint=fingerprint,
                )
                updated += 1
        return updated
