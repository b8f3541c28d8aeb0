"""Watch a Kubernetes namespace or cluster for events."""

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Self

from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.watch import Watch
from structlog.stdlib import BoundLogger

from ...constants import WATCH_TIMEOUT
from ...exceptions import KubernetesError
from ...models.domain.kubernetes import WatchEventType

__all__ = [
    "KubernetesWatcher",
    "WatchEvent",
]


@dataclass
class WatchEvent[T]:
    """Parsed event from a Kubernetes watch.

    This model is intended only for use within the Kubernetes storage layer
    and the background tasks that consume watches.
    """

    action: WatchEventType
    """Action the event represents."""

    object: T
    """Affected Kubernetes object."""

    resource_version: str | None = None
    """Resource version of the object after the event."""

    @classmethod
    def from_event(cls, event: dict[str, Any], object_type: type[T]) -> Self:
        """Create a `WatchEvent` from a watch event.

        Parameters
        ----------
        event
            Event as returned by the Kubernetes watch API.
        object_type
            Expected type of the object.

        Raises
        ------
        TypeError
            Raised if the type of the object in the watch event was incorrect.
        """
        action = WatchEventType(event["type"])
        raw = event.get("raw_object") or {}
        resource_version = raw.get("metadata", {}).get("resourceVersion")
        if object_type.__name__ == "dict":
            obj = event["raw_object"]
        else:
            obj = event["object"]
            if not isinstance(obj, object_type):
                real_type = type(obj).__name__
                expected_type = object_type.__name__
                msg = (
                    f"Watch object was of type {real_type}, not"
                    f" {expected_type}"
                )
                raise TypeError(msg)
        return cls(
            action=action, object=obj, resource_version=resource_version
        )


class KubernetesWatcher[T]:
    """Watch Kubernetes for events.

    This wrapper around the watch API of the Kubernetes client restarts the
    watch whenever the API server ends it, resuming from the last resource
    version seen. It therefore only ends if `stop` is called or an error
    other than an expired resource version is returned.

    Parameters
    ----------
    method
        API list method that supports the watch API. To watch the whole
        cluster, pass the ``*_for_all_namespaces`` method or, for custom
        objects, the cluster-wide list method, and no namespace.
    object_type
        Type of object being watched. This cannot be autodiscovered from the
        method because of the problems with docstring parsing and therefore
        must be provided by the caller. For custom objects, this should be a
        `dict` type.
    kind
        Kubernetes kind of object being watched, for error reporting.
    namespace
        Namespace to watch, or `None` to watch all namespaces.
    group
        Group of custom object.
    version
        Version of custom object.
    plural
        Plural of custom object.
    label_selector
        Only watch objects matching this label selector.
    timeout
        How long each individual watch request lasts before it is restarted.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        namespace: str | None = None,
        group: str | None = None,
        version: str | None = None,
        plural: str | None = None,
        label_selector: str | None = None,
        timeout: timedelta = WATCH_TIMEOUT,
        logger: BoundLogger,
    ) -> None:
        self._method = method
        self._type = object_type
        self._kind = kind
        self._namespace = namespace
        self._timeout = timeout
        self._logger = logger
        self._resource_version: str | None = None
        self._stopped = False

        args: dict[str, str | None] = {
            "group": group,
            "version": version,
            "plural": plural,
            "namespace": namespace,
            "label_selector": label_selector,
        }
        self._args = {k: v for k, v in args.items() if v is not None}

        # Passing in an explicit type should not be necessary, but the
        # kubernetes_asyncio module determines the type of a method by parsing
        # its docstring, which breaks if the method has been replaced by a
        # mock.
        self._watch = Watch(return_type=object_type)

    async def close(self) -> None:
        """Close the internal API client used by the watch API."""
        self._watch.stop()
        await self._watch.close()

    def stop(self) -> None:
        """Stop a watch in progress."""
        self._watch.stop()
        self._stopped = True

    async def watch(self) -> AsyncIterator[WatchEvent[T]]:
        """Watch Kubernetes for events.

        The first watch request starts without a resource version, so the API
        server first sends an ``ADDED`` event for every existing object.
        Later requests resume from the last resource version seen. If that
        resource version is too old to still be known to Kubernetes, the API
        call returns a 410 error and the watch is retried without a resource
        version, which again replays all existing objects.

        Yields
        ------
        WatchEvent
            Next event.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server during the
            watch.
        """
        while not self._stopped:
            args: dict[str, Any] = {
                **self._args,
                "timeout_seconds": int(self._timeout.total_seconds()),
            }
            if self._resource_version:
                args["resource_version"] = self._resource_version
            try:
                async with self._watch.stream(self._method, **args) as s:
                    async for event in s:
                        parsed = WatchEvent.from_event(event, self._type)
                        if parsed.resource_version:
                            self._resource_version = parsed.resource_version
                        yield parsed
            except ApiException as e:
                if e.status == 410:
                    rv = self._resource_version
                    if rv:
                        msg = f"Resource version {rv} expired, retrying watch"
                    else:
                        msg = "Watch expired (no resource version), retrying"
                    self._logger.info(msg, kind=self._kind)
                    self._resource_version = None
                    continue
                raise KubernetesError.from_exception(
                    "Error watching objects",
                    e,
                    kind=self._kind,
                    namespace=self._namespace,
                ) from e
