"""Mapping of changed configuration objects to their logging stack."""

from __future__ import annotations

from structlog.stdlib import BoundLogger

from ..constants import INSTANCE_LABEL, KUBERNETES_REQUEST_TIMEOUT
from ..exceptions import ControllerTimeoutError, KubernetesError
from ..models.domain.kubernetes import KubernetesModel
from ..models.domain.reconcile import Component, ReconcileRequest
from ..models.v1.efkstack import EFKStack
from ..storage.kubernetes.custom import EFKStackStorage
from ..timeout import Timeout

__all__ = ["WatchMapper"]


class WatchMapper:
    """Find the logging stack that owns a ``ConfigMap`` or ``Secret``.

    Objects created by the Helm charts carry the ``app.kubernetes.io/instance``
    label set to the name of their release, which is the name of the stack
    followed by the name of the component. Objects without that label are
    matched by name instead, since by convention their names start with the
    release name.

    Parameters
    ----------
    efkstack_storage
        Storage for ``EFKStack`` objects.
    logger
        Logger to use.
    """

    def __init__(
        self, efkstack_storage: EFKStackStorage, logger: BoundLogger
    ) -> None:
        self._storage = efkstack_storage
        self._logger = logger

    async def map(self, obj: KubernetesModel) -> list[ReconcileRequest]:
        """Determine which logging stack, if any, to reconcile for an object.

        Parameters
        ----------
        obj
            Changed object. Any Kubernetes object model will work.

        Returns
        -------
        list of ReconcileRequest
            Request to reconcile the owning stack, or an empty list if the
            object does not belong to any stack in its namespace.
        """
        name = obj.metadata.name
        namespace = obj.metadata.namespace
        if not name or not namespace:
            return []
        instance = (obj.metadata.labels or {}).get(INSTANCE_LABEL)

        timeout = Timeout("Listing EFKStacks", KUBERNETES_REQUEST_TIMEOUT)
        try:
            async with timeout.enforce():
                stacks = await self._storage.list(namespace, timeout)
        except (ControllerTimeoutError, KubernetesError) as e:
            self._logger.warning(
                "Cannot list EFKStacks to map object",
                name=name,
                namespace=namespace,
                error=str(e),
            )
            return []

        for stack in stacks:
            if self._matches(stack, name, instance):
                stack_namespace = stack.metadata.namespace or namespace
                request = ReconcileRequest(
                    name=stack.name, namespace=stack_namespace
                )
                self._logger.debug(
                    "Mapped object to EFKStack",
                    name=name,
                    namespace=namespace,
                    stack=stack.name,
                )
                return [request]
        return []

    def _matches(
        self, stack: EFKStack, name: str, instance: str | None
    ) -> bool:
        """Whether an object belongs to the given stack.

        Parameters
        ----------
        stack
            Candidate stack.
        name
            Name of the object.
        instance
            Value of the instance label of the object, if any.

        Returns
        -------
        bool
            `True` if the instance label is the name of one of the releases
            of the stack or, if the object has no instance label, if its name
            starts with the name of one of those releases.
        """
        releases = [c.release_name(stack.name) for c in Component]
        if instance:
            return instance in releases
        return any(name.startswith(r) for r in releases)
