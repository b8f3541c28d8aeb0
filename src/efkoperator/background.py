"""EFK operator background processing."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from aiojobs import Scheduler
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .constants import ERROR_REQUEUE_DELAY, WATCH_RESTART_DELAY
from .exceptions import QueueShutDownError, ReconcileError
from .models.domain.kubernetes import KubernetesModel, WatchEventType
from .models.domain.reconcile import ReconcileRequest
from .services.mapper import WatchMapper
from .services.queue import ReconcileQueue
from .services.reconciler import EFKStackReconciler
from .storage.kubernetes.custom import EFKStackStorage
from .storage.kubernetes.objects import ConfigMapStorage, SecretStorage
from .storage.kubernetes.watcher import WatchEvent

__all__ = ["BackgroundTaskManager"]


class BackgroundTaskManager:
    """Manage EFK operator background tasks.

    While the operator is running, it needs to perform several continuous
    background tasks, namely:

    #. Watch ``EFKStack`` objects and queue them for reconciliation when
       they are created, deleted, or their spec changes.
    #. Watch ``ConfigMap`` and ``Secret`` objects and queue the stack that
       owns them, if any, when they change.
    #. Run workers that take stacks off the queue, reconcile them, and queue
       them again after the delay requested by the reconciler.

    This class manages all of these background tasks. It only does the task
    management; all of the work of these tasks is done by methods on the
    underlying service objects.

    This class is created during startup and tracked as part of the
    `~efkoperator.factory.ProcessContext`.

    Parameters
    ----------
    queue
        Queue of stacks to reconcile.
    reconciler
        Stack reconciler.
    mapper
        Mapper from configuration objects to stacks.
    efkstack_storage
        Storage for ``EFKStack`` objects.
    config_map_storage
        Storage for ``ConfigMap`` objects.
    secret_storage
        Storage for ``Secret`` objects.
    watch_namespace
        Namespace to watch, or `None` to watch the whole cluster.
    workers
        Number of reconcile workers to run.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        queue: ReconcileQueue,
        reconciler: EFKStackReconciler,
        mapper: WatchMapper,
        efkstack_storage: EFKStackStorage,
        config_map_storage: ConfigMapStorage,
        secret_storage: SecretStorage,
        watch_namespace: str | None,
        workers: int,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._queue = queue
        self._reconciler = reconciler
        self._mapper = mapper
        self._efkstack_storage = efkstack_storage
        self._config_map_storage = config_map_storage
        self._secret_storage = secret_storage
        self._namespace = watch_namespace
        self._workers = workers
        self._slack = slack_client
        self._logger = logger

        self._generations: dict[ReconcileRequest, int | None] = {}
        self._scheduler: Scheduler | None = None

    async def start(self) -> None:
        """Start all background tasks.

        Intended to be called during EFK operator startup.
        """
        if self._scheduler:
            msg = "Background tasks already running, cannot start"
            self._logger.warning(msg)
            return
        self._scheduler = Scheduler()
        coros = [
            self._watch_loop(
                lambda: self._efkstack_storage.watch(self._namespace),
                self.handle_efkstack_event,
                "EFKStack",
            ),
            self._watch_loop(
                lambda: self._config_map_storage.watch(self._namespace),
                self.handle_config_event,
                "ConfigMap",
            ),
            self._watch_loop(
                lambda: self._secret_storage.watch(self._namespace),
                self.handle_config_event,
                "Secret",
            ),
        ]
        coros.extend(self._worker() for _ in range(self._workers))
        self._logger.info(
            "Starting background tasks",
            namespace=self._namespace,
            workers=self._workers,
        )
        for coro in coros:
            await self._scheduler.spawn(coro)

    async def stop(self) -> None:
        """Stop the background tasks."""
        if not self._scheduler:
            msg = "Background tasks were already stopped"
            self._logger.warning(msg)
            return
        self._logger.info("Stopping background tasks")
        self._queue.shutdown()
        await self._scheduler.close()
        self._scheduler = None

    async def handle_config_event(
        self, event: WatchEvent[KubernetesModel]
    ) -> None:
        """Queue the stack owning a changed ``ConfigMap`` or ``Secret``.

        Parameters
        ----------
        event
            Watch event for the object.
        """
        for request in await self._mapper.map(event.object):
            self._logger.debug(
                "Configuration changed, queuing EFKStack",
                kind=type(event.object).__name__,
                name=event.object.metadata.name,
                stack=request.name,
                namespace=request.namespace,
            )
            self._queue.add(request)

    async def handle_efkstack_event(
        self, event: WatchEvent[dict[str, Any]]
    ) -> None:
        """Queue a changed ``EFKStack``.

        Changes that don't change the generation of the object, such as the
        status updates made by the reconciler itself, are ignored.

        Parameters
        ----------
        event
            Watch event for the object.
        """
        metadata = event.object.get("metadata", {})
        name = metadata.get("name")
        namespace = metadata.get("namespace")
        if not name or not namespace:
            return
        request = ReconcileRequest(name=name, namespace=namespace)
        generation = metadata.get("generation")
        if event.action == WatchEventType.DELETED:
            self._generations.pop(request, None)
        elif event.action == WatchEventType.MODIFIED:
            if self._generations.get(request) == generation:
                return
            self._generations[request] = generation
        else:
            self._generations[request] = generation
        self._logger.debug(
            "EFKStack changed, queuing",
            action=event.action.value,
            stack=name,
            namespace=namespace,
            generation=generation,
        )
        self._queue.add(request)

    async def _process(self, request: ReconcileRequest) -> None:
        """Reconcile a stack and queue it again if requested.

        Parameters
        ----------
        request
            Stack to reconcile.
        """
        logger = self._logger.bind(
            stack=request.name, namespace=request.namespace
        )
        try:
            result = await self._reconciler.reconcile(request)
        except ReconcileError as e:
            delay = e.requeue_after
            logger.warning(
                "Reconcile failed, retrying",
                error=str(e),
                delay=delay.total_seconds(),
            )
        except Exception as e:
            delay = ERROR_REQUEUE_DELAY
            logger.exception(
                "Uncaught exception reconciling EFKStack",
                delay=delay.total_seconds(),
            )
            if self._slack:
                await self._slack.post_uncaught_exception(e)
        else:
            if not result.requeue_after:
                return
            delay = result.requeue_after
        self._queue.add_after(request, delay)

    async def _watch_loop[T](
        self,
        watch: Callable[[], AsyncIterator[WatchEvent[T]]],
        handler: Callable[[WatchEvent[T]], Awaitable[None]],
        kind: str,
    ) -> None:
        """Run a watch forever, restarting it if it fails.

        Parameters
        ----------
        watch
            Called to start the watch.
        handler
            Called for each event.
        kind
            Kind of object being watched, for logging.
        """
        while True:
            try:
                async for event in watch():
                    await handler(event)
            except Exception as e:
                self._logger.exception(f"Error watching {kind} objects")
                if self._slack:
                    await self._slack.post_uncaught_exception(e)
            await asyncio.sleep(WATCH_RESTART_DELAY.total_seconds())

    async def _worker(self) -> None:
        """Take stacks off the queue and reconcile them until shutdown."""
        while True:
            try:
                request = await self._queue.get()
            except QueueShutDownError:
                return
            try:
                await self._process(request)
            finally:
                self._queue.done(request)
