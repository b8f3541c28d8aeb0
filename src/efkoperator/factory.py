"""Component factory and process-wide context management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass, field
from typing import Self

import structlog
from kubernetes_asyncio.client.api_client import ApiClient
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .background import BackgroundTaskManager
from .config import Config
from .services.builder.values import ReleaseValuesBuilder
from .services.drift import ConfigDriftDetector
from .services.mapper import WatchMapper
from .services.queue import ReconcileQueue
from .services.reconciler import EFKStackReconciler
from .storage.helm import HelmClient
from .storage.kubernetes.custom import EFKStackStorage
from .storage.kubernetes.objects import (
    ConfigMapStorage,
    DaemonSetStorage,
    DeploymentStorage,
    SecretStorage,
    StatefulSetStorage,
)

__all__ = ["Factory", "ProcessContext"]


@dataclass(slots=True)
class ProcessContext:
    """Per-process global application state.

    This object holds all of the per-process singletons. It is used by the
    `Factory` class as a source of dependencies to inject into created
    service and storage objects. The long-lived services are themselves
    built by a `Factory` when the context is created.
    """

    config: Config
    """EFK operator configuration."""

    kubernetes_client: ApiClient
    """Shared Kubernetes client."""

    queue: ReconcileQueue = field(default_factory=ReconcileQueue)
    """Queue of stacks to reconcile."""

    reconciler: EFKStackReconciler = field(init=False)
    """Stack reconciler, which holds the Helm clients for each namespace."""

    background: BackgroundTaskManager = field(init=False)
    """Manager for background tasks."""

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Create a new process context from the operator configuration.

        Parameters
        ----------
        config
            EFK operator configuration.

        Returns
        -------
        ProcessContext
            Shared context for an EFK operator process.
        """
        context = cls(config=config, kubernetes_client=ApiClient())

        # This logger is used only by process-global singletons.
        factory = Factory(context, structlog.get_logger(__name__))
        context.reconciler = factory.create_reconciler()
        context.background = factory.create_background_task_manager()
        return context

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.kubernetes_client.close()

    async def start(self) -> None:
        """Start the background tasks running."""
        await self.background.start()

    async def stop(self) -> None:
        """Stop the background tasks.

        Called during shutdown, or before recreating the process context using
        a different configuration.
        """
        await self.background.stop()


class Factory:
    """Build EFK operator components.

    Uses the contents of a `ProcessContext` to construct the components of
    the application on demand.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use for messages.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Async context manager for EFK operator components.

        Intended for the test suite.

        Parameters
        ----------
        config
            EFK operator configuration.

        Yields
        ------
        Factory
            Newly-created factory. Must be used as a context manager.
        """
        logger = structlog.get_logger(__name__)
        context = await ProcessContext.from_config(config)
        factory = cls(context, logger)
        async with aclosing(factory):
            yield factory

    def __init__(self, context: ProcessContext, logger: BoundLogger) -> None:
        self._context = context
        self._logger = logger
        self._background_services_started = False

    @property
    def queue(self) -> ReconcileQueue:
        """Global reconcile queue, from the `ProcessContext`."""
        return self._context.queue

    @property
    def reconciler(self) -> EFKStackReconciler:
        """Global stack reconciler, from the `ProcessContext`."""
        return self._context.reconciler

    async def aclose(self) -> None:
        """Shut down the factory.

        After this method is called, the factory object is no longer valid and
        must not be used.
        """
        if self._background_services_started:
            await self._context.stop()
        await self._context.aclose()

    def create_background_task_manager(self) -> BackgroundTaskManager:
        """Create the manager for the watches and reconcile workers.

        Uses the reconciler and queue of the `ProcessContext`, so the
        reconciler must already have been created.

        Returns
        -------
        BackgroundTaskManager
            Newly-created manager. It is not started.
        """
        config = self._context.config
        return BackgroundTaskManager(
            queue=self._context.queue,
            reconciler=self._context.reconciler,
            mapper=self.create_watch_mapper(),
            efkstack_storage=self.create_efkstack_storage(),
            config_map_storage=self.create_config_map_storage(),
            secret_storage=self.create_secret_storage(),
            watch_namespace=config.watch_namespace,
            workers=config.workers,
            slack_client=self.create_slack_client(),
            logger=self._logger,
        )

    def create_config_map_storage(self) -> ConfigMapStorage:
        """Create storage for ``ConfigMap`` objects."""
        return ConfigMapStorage(self._context.kubernetes_client, self._logger)

    def create_drift_detector(self) -> ConfigDriftDetector:
        """Create a detector for configuration changes.

        Returns
        -------
        ConfigDriftDetector
            Newly-created detector.
        """
        api_client = self._context.kubernetes_client
        return ConfigDriftDetector(
            config_map_storage=self.create_config_map_storage(),
            secret_storage=self.create_secret_storage(),
            workload_storages=[
                DeploymentStorage(api_client, self._logger),
                DaemonSetStorage(api_client, self._logger),
                StatefulSetStorage(api_client, self._logger),
            ],
            logger=self._logger,
        )

    def create_efkstack_storage(self) -> EFKStackStorage:
        """Create storage for ``EFKStack`` objects.

        Returns
        -------
        EFKStackStorage
            Newly-created storage.
        """
        return EFKStackStorage(self._context.kubernetes_client, self._logger)

    def create_helm_client(self, namespace: str) -> HelmClient:
        """Create a Helm client that installs releases into a namespace.

        Parameters
        ----------
        namespace
            Namespace of the releases.

        Returns
        -------
        HelmClient
            Newly-created Helm client.

        Raises
        ------
        HelmError
            Raised if the Helm binary could not be found.
        """
        helm = self._context.config.helm
        return HelmClient(
            namespace,
            binary=helm.binary,
            timeout=helm.timeout,
            driver=helm.driver,
            logger=self._logger,
        )

    def create_reconciler(self) -> EFKStackReconciler:
        """Create a stack reconciler.

        Returns
        -------
        EFKStackReconciler
            Newly-created reconciler with an empty Helm client cache.
        """
        return EFKStackReconciler(
            charts_path=self._context.config.charts_path,
            efkstack_storage=self.create_efkstack_storage(),
            values_builder=self.create_values_builder(),
            drift_detector=self.create_drift_detector(),
            helm_factory=self.create_helm_client,
            logger=self._logger,
        )

    def create_secret_storage(self) -> SecretStorage:
        """Create storage for ``Secret`` objects."""
        return SecretStorage(self._context.kubernetes_client, self._logger)

    def create_slack_client(self) -> SlackWebhookClient | None:
        """Create a client for Slack alerts, if a webhook is configured.

        Returns
        -------
        SlackWebhookClient or None
            Newly-created client, or `None` if Slack alerts are disabled.
        """
        config = self._context.config
        if not config.slack_webhook:
            return None
        webhook = config.slack_webhook.get_secret_value()
        return SlackWebhookClient(webhook, config.name, self._logger)

    def create_values_builder(self) -> ReleaseValuesBuilder:
        """Create a builder for the Helm values of each component."""
        return ReleaseValuesBuilder()

    def create_watch_mapper(self) -> WatchMapper:
        """Create a mapper from configuration objects to stacks.

        Returns
        -------
        WatchMapper
            Newly-created mapper.
        """
        return WatchMapper(self.create_efkstack_storage(), self._logger)

    async def start_background_services(self) -> None:
        """Start global background services managed by the process context.

        These are normally started by the application lifespan when running as
        a FastAPI app, but the test suite may want the background processes
        running while testing with only a factory.
        """
        await self._context.start()
        self._background_services_started = True
