"""Storage layer for ``EFKStack`` custom objects."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from pydantic import ValidationError
from structlog.stdlib import BoundLogger

from ...constants import (
    EFKSTACK_GROUP,
    EFKSTACK_KIND,
    EFKSTACK_PLURAL,
    EFKSTACK_VERSION,
)
from ...exceptions import KubernetesError
from ...models.v1.efkstack import EFKStack
from ...timeout import Timeout
from .watcher import KubernetesWatcher, WatchEvent

__all__ = ["EFKStackStorage"]


class EFKStackStorage:
    """Storage layer for ``EFKStack`` custom objects.

    Objects are returned parsed into `~efkoperator.models.v1.efkstack.EFKStack`
    models, except for watches, which return the raw object so that the
    caller can decide whether the change is interesting without parsing it.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CustomObjectsApi(api_client)
        self._logger = logger

    async def list(
        self, namespace: str | None, timeout: Timeout
    ) -> list[EFKStack]:
        """List ``EFKStack`` objects.

        Objects that cannot be parsed are skipped with a warning.

        Parameters
        ----------
        namespace
            Namespace in which to list objects, or `None` to list objects in
            all namespaces.
        timeout
            Timeout on operation.

        Returns
        -------
        list of EFKStack
            Objects found, in the order returned by Kubernetes.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            if namespace:
                objs = await self._api.list_namespaced_custom_object(
                    EFKSTACK_GROUP,
                    EFKSTACK_VERSION,
                    namespace,
                    EFKSTACK_PLURAL,
                    _request_timeout=timeout.left(),
                )
            else:
                objs = await self._api.list_cluster_custom_object(
                    EFKSTACK_GROUP,
                    EFKSTACK_VERSION,
                    EFKSTACK_PLURAL,
                    _request_timeout=timeout.left(),
                )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects",
                e,
                kind=EFKSTACK_KIND,
                namespace=namespace,
            ) from e
        stacks = []
        for obj in objs["items"]:
            try:
                stacks.append(EFKStack.model_validate(obj))
            except ValidationError as e:
                name = obj.get("metadata", {}).get("name")
                self._logger.warning(
                    f"Ignoring invalid {EFKSTACK_KIND}",
                    name=name,
                    namespace=obj.get("metadata", {}).get("namespace"),
                    error=str(e),
                )
        return stacks

    async def read(
        self, name: str, namespace: str, timeout: Timeout
    ) -> EFKStack | None:
        """Read an ``EFKStack`` object.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.

        Returns
        -------
        EFKStack or None
            Parsed object, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        pydantic.ValidationError
            Raised if the object could not be parsed.
        """
        try:
            obj = await self._api.get_namespaced_custom_object(
                EFKSTACK_GROUP,
                EFKSTACK_VERSION,
                namespace,
                EFKSTACK_PLURAL,
                name,
                _request_timeout=timeout.left(),
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading object",
                e,
                kind=EFKSTACK_KIND,
                namespace=namespace,
                name=name,
            ) from e
        return EFKStack.model_validate(obj)

    async def replace_status(self, stack: EFKStack, timeout: Timeout) -> None:
        """Replace the status of an ``EFKStack`` object.

        Only the status subresource is written, so concurrent changes to the
        spec are not overwritten. The resource version of the stack is
        updated to that of the stored object so that the status can be
        replaced again later in the same reconcile.

        Parameters
        ----------
        stack
            Stack whose status should be stored.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        name = stack.metadata.name
        namespace = stack.metadata.namespace
        self._logger.debug(
            f"Updating {EFKSTACK_KIND} status",
            name=name,
            namespace=namespace,
            phase=stack.status.phase.value if stack.status.phase else None,
        )
        try:
            obj = await self._api.replace_namespaced_custom_object_status(
                EFKSTACK_GROUP,
                EFKSTACK_VERSION,
                namespace,
                EFKSTACK_PLURAL,
                name,
                stack.to_kubernetes(),
                _request_timeout=timeout.left(),
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error updating object status",
                e,
                kind=EFKSTACK_KIND,
                namespace=namespace,
                name=name,
            ) from e
        resource_version = obj.get("metadata", {}).get("resourceVersion")
        if resource_version:
            stack.metadata.resource_version = resource_version

    async def watch(
        self, namespace: str | None
    ) -> AsyncIterator[WatchEvent[dict[str, Any]]]:
        """Watch ``EFKStack`` objects for changes.

        Parameters
        ----------
        namespace
            Namespace to watch, or `None` to watch the whole cluster.

        Yields
        ------
        WatchEvent
            Next change to an ``EFKStack`` object, with the raw object.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        if namespace:
            method = self._api.list_namespaced_custom_object
        else:
            method = self._api.list_cluster_custom_object
        watcher = KubernetesWatcher(
            method=method,
            object_type=dict[str, Any],
            kind=EFKSTACK_KIND,
            namespace=namespace,
            group=EFKSTACK_GROUP,
            version=EFKSTACK_VERSION,
            plural=EFKSTACK_PLURAL,
            logger=self._logger,
        )
        try:
            async for event in watcher.watch():
                yield event
        finally:
            await watcher.close()
