"""Generic Kubernetes object storage supporting list, replace, and watch.

Provides a generic Kubernetes object management class and instantiations of
that class for the Kubernetes object types the operator manipulates directly.
All other objects are created and deleted by Helm, so the operator only needs
to find the objects belonging to a release, patch the pod templates of its
workloads, and watch for changes to its configuration.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1ConfigMap,
    V1DaemonSet,
    V1Deployment,
    V1Secret,
    V1StatefulSet,
)
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import KubernetesModel, WorkloadModel
from ...timeout import Timeout
from .watcher import KubernetesWatcher, WatchEvent

__all__ = [
    "ConfigMapStorage",
    "DaemonSetStorage",
    "DeploymentStorage",
    "KubernetesObjectStorage",
    "SecretStorage",
    "StatefulSetStorage",
    "WorkloadStorage",
]


class KubernetesObjectStorage[T: KubernetesModel]:
    """Generic Kubernetes object storage supporting list and watch.

    This class provides a wrapper around any Kubernetes object type that
    implements list with logging and exception conversion, and a way to
    watch those objects in one namespace or across the cluster.

    This class is not meant to be used directly by code outside of the
    Kubernetes storage layer. Use one of the kind-specific storage classes
    built on top of it instead.

    Parameters
    ----------
    list_method
        Method to list this type of object in a namespace.
    list_all_method
        Method to list this type of object in all namespaces.
    object_type
        Type of object being acted on.
    kind
        Kubernetes kind of object being acted on.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        list_method: Callable[..., Awaitable[Any]],
        list_all_method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        logger: BoundLogger,
    ) -> None:
        self._list = list_method
        self._list_all = list_all_method
        self._type = object_type
        self._kind = kind
        self._logger = logger

    @property
    def kind(self) -> str:
        """Kubernetes kind of the objects managed by this storage."""
        return self._kind

    async def list(
        self,
        namespace: str,
        timeout: Timeout,
        *,
        label_selector: str | None = None,
    ) -> list[T]:
        """List all objects of the appropriate kind in the namespace.

        Parameters
        ----------
        namespace
            Namespace to list.
        timeout
            Timeout on operation.
        label_selector
            Filter the returned list by the given label selector expression.

        Returns
        -------
        list
            List of objects found.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        extra_args: dict[str, str | float] = {
            "_request_timeout": timeout.left()
        }
        if label_selector:
            extra_args["label_selector"] = label_selector
        try:
            objs = await self._list(namespace, **extra_args)
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects",
                e,
                kind=self._kind,
                namespace=namespace,
            ) from e
        return objs.items

    async def watch(
        self, namespace: str | None
    ) -> AsyncIterator[WatchEvent[T]]:
        """Watch objects of this kind for changes.

        Parameters
        ----------
        namespace
            Namespace to watch, or `None` to watch the whole cluster.

        Yields
        ------
        WatchEvent
            Next change to an object of this kind.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        watcher = KubernetesWatcher(
            method=self._list if namespace else self._list_all,
            object_type=self._type,
            kind=self._kind,
            namespace=namespace,
            logger=self._logger,
        )
        try:
            async for event in watcher.watch():
                yield event
        finally:
            await watcher.close()


class WorkloadStorage[T: WorkloadModel](KubernetesObjectStorage[T]):
    """Generic storage for workloads that can have their pod template changed.

    Parameters
    ----------
    list_method
        Method to list this type of object in a namespace.
    list_all_method
        Method to list this type of object in all namespaces.
    replace_method
        Method to replace an object of this type.
    object_type
        Type of object being acted on.
    kind
        Kubernetes kind of object being acted on.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        list_method: Callable[..., Awaitable[Any]],
        list_all_method: Callable[..., Awaitable[Any]],
        replace_method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        logger: BoundLogger,
    ) -> None:
        super().__init__(
            list_method=list_method,
            list_all_method=list_all_method,
            object_type=object_type,
            kind=kind,
            logger=logger,
        )
        self._replace = replace_method

    async def replace(self, body: T, timeout: Timeout) -> None:
        """Replace an existing workload.

        The body must carry the resource version of the object it was based
        on, so a concurrent change to the object causes a conflict error
        rather than being silently overwritten.

        Parameters
        ----------
        body
            Modified object.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        name = body.metadata.name
        namespace = body.metadata.namespace
        msg = f"Replacing {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace)
        try:
            await self._replace(
                name, namespace, body, _request_timeout=timeout.left()
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error replacing object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e


class ConfigMapStorage(KubernetesObjectStorage[V1ConfigMap]):
    """Storage layer for ``ConfigMap`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(
            list_method=api.list_namespaced_config_map,
            list_all_method=api.list_config_map_for_all_namespaces,
            object_type=V1ConfigMap,
            kind="ConfigMap",
            logger=logger,
        )


class SecretStorage(KubernetesObjectStorage[V1Secret]):
    """Storage layer for ``Secret`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(
            list_method=api.list_namespaced_secret,
            list_all_method=api.list_secret_for_all_namespaces,
            object_type=V1Secret,
            kind="Secret",
            logger=logger,
        )


class DaemonSetStorage(WorkloadStorage[V1DaemonSet]):
    """Storage layer for ``DaemonSet`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.AppsV1Api(api_client)
        super().__init__(
            list_method=api.list_namespaced_daemon_set,
            list_all_method=api.list_daemon_set_for_all_namespaces,
            replace_method=api.replace_namespaced_daemon_set,
            object_type=V1DaemonSet,
            kind="DaemonSet",
            logger=logger,
        )


class DeploymentStorage(WorkloadStorage[V1Deployment]):
    """Storage layer for ``Deployment`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.AppsV1Api(api_client)
        super().__init__(
            list_method=api.list_namespaced_deployment,
            list_all_method=api.list_deployment_for_all_namespaces,
            replace_method=api.replace_namespaced_deployment,
            object_type=V1Deployment,
            kind="Deployment",
            logger=logger,
        )


class StatefulSetStorage(WorkloadStorage[V1StatefulSet]):
    """Storage layer for ``StatefulSet`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.AppsV1Api(api_client)
        super().__init__(
            list_method=api.list_namespaced_stateful_set,
            list_all_method=api.list_stateful_set_for_all_namespaces,
            replace_method=api.replace_namespaced_stateful_set,
            object_type=V1StatefulSet,
            kind="StatefulSet",
            logger=logger,
        )
