"""Tests for the background tasks of the EFK operator."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest
import structlog
from safir.slack.webhook import SlackWebhookClient
from safir.testing.slack import MockSlackWebhook

from efkoperator.background import BackgroundTaskManager
from efkoperator.config import Config
from efkoperator.factory import Factory
from efkoperator.models.domain.kubernetes import WatchEventType
from efkoperator.models.domain.reconcile import ReconcileRequest
from efkoperator.services.queue import ReconcileQueue
from efkoperator.services.reconciler import EFKStackReconciler
from efkoperator.storage.kubernetes.objects import (
    ConfigMapStorage,
    SecretStorage,
)
from efkoperator.storage.kubernetes.watcher import WatchEvent

from .support.data import make_config_map, read_input_stack
from .support.helm import MockHelm
from .support.kubernetes import MockKubernetesApi


def make_manager(
    factory: Factory,
    reconciler: EFKStackReconciler,
    queue: ReconcileQueue,
    slack_client: SlackWebhookClient | None = None,
) -> BackgroundTaskManager:
    # The API client is ignored, since the Kubernetes API is mocked.
    api_client = MagicMock()
    logger = structlog.get_logger(__name__)
    return BackgroundTaskManager(
        queue=queue,
        reconciler=reconciler,
        mapper=factory.create_watch_mapper(),
        efkstack_storage=factory.create_efkstack_storage(),
        config_map_storage=ConfigMapStorage(api_client, logger),
        secret_storage=SecretStorage(api_client, logger),
        watch_namespace="logging",
        workers=2,
        slack_client=slack_client,
        logger=logger,
    )


async def wait_for(condition: Callable[[], bool]) -> None:
    async with asyncio.timeout(5):
        while not condition():
            await asyncio.sleep(0.05)


def stack_event(
    action: WatchEventType, name: str, generation: int | None
) -> WatchEvent[dict[str, Any]]:
    metadata: dict[str, Any] = {"name": name, "namespace": "logging"}
    if generation is not None:
        metadata["generation"] = generation
    return WatchEvent(action=action, object={"metadata": metadata})


@pytest.mark.asyncio
async def test_efkstack_events(
    factory: Factory, reconciler: EFKStackReconciler
) -> None:
    queue = ReconcileQueue()
    manager = make_manager(factory, reconciler, queue)
    request = ReconcileRequest(name="logs", namespace="logging")

    async def expect_queued() -> None:
        assert len(queue) == 1
        assert await queue.get() == request
        queue.done(request)

    await manager.handle_efkstack_event(
        stack_event(WatchEventType.ADDED, "logs", 1)
    )
    await expect_queued()

    # Status updates do not change the generation and are ignored.
    await manager.handle_efkstack_event(
        stack_event(WatchEventType.MODIFIED, "logs", 1)
    )
    assert len(queue) == 0

    await manager.handle_efkstack_event(
        stack_event(WatchEventType.MODIFIED, "logs", 2)
    )
    await expect_queued()

    await manager.handle_efkstack_event(
        stack_event(WatchEventType.DELETED, "logs", 2)
    )
    await expect_queued()

    # Objects without a name are ignored.
    event = WatchEvent(
        action=WatchEventType.ADDED,
        object={"metadata": {"namespace": "logging"}},
    )
    await manager.handle_efkstack_event(event)
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_config_events(
    factory: Factory,
    reconciler: EFKStackReconciler,
    mock_kubernetes: MockKubernetesApi,
) -> None:
    mock_kubernetes.add_stack_for_test(read_input_stack("basic"))
    queue = ReconcileQueue()
    manager = make_manager(factory, reconciler, queue)

    config_map = make_config_map(
        "logs-fluentbit-config", "logging", {}, release="logs-fluentbit"
    )
    event = WatchEvent(action=WatchEventType.MODIFIED, object=config_map)
    await manager.handle_config_event(event)
    assert len(queue) == 1
    assert await queue.get() == ReconcileRequest(
        name="logs", namespace="logging"
    )

    config_map = make_config_map("unrelated", "logging", {})
    event = WatchEvent(action=WatchEventType.ADDED, object=config_map)
    await manager.handle_config_event(event)
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_workers(
    factory: Factory,
    reconciler: EFKStackReconciler,
    mock_kubernetes: MockKubernetesApi,
    mock_helm: dict[str, MockHelm],
) -> None:
    mock_kubernetes.add_stack_for_test(read_input_stack("basic"))
    mock_kubernetes.add_stack_for_test(read_input_stack("ingress"))
    queue = ReconcileQueue()
    manager = make_manager(factory, reconciler, queue)

    await manager.start()
    try:
        queue.add(ReconcileRequest(name="logs", namespace="logging"))
        queue.add(ReconcileRequest(name="prod", namespace="logging"))

        def is_ready(name: str) -> bool:
            stack = mock_kubernetes.get_stack_for_test("logging", name)
            assert stack
            return stack.get("status", {}).get("phase") == "Ready"

        await wait_for(lambda: is_ready("logs") and is_ready("prod"))
    finally:
        await manager.stop()

    installed = mock_helm["logging"].installed_releases()
    assert sorted(installed) == [
        "logs-elasticsearch",
        "logs-fluentbit",
        "logs-kibana",
        "prod-elasticsearch",
        "prod-fluentbit",
        "prod-kibana",
    ]


@pytest.mark.asyncio
async def test_uncaught_exception(
    config: Config,
    factory: Factory,
    mock_kubernetes: MockKubernetesApi,
    mock_slack: MockSlackWebhook,
) -> None:
    mock_kubernetes.add_stack_for_test(read_input_stack("basic"))

    def helm_factory(namespace: str) -> MockHelm:
        raise RuntimeError("Something went wrong")

    logger = structlog.get_logger(__name__)
    reconciler = EFKStackReconciler(
        charts_path=config.charts_path,
        efkstack_storage=factory.create_efkstack_storage(),
        values_builder=factory.create_values_builder(),
        drift_detector=factory.create_drift_detector(),
        helm_factory=helm_factory,
        logger=logger,
    )
    assert config.slack_webhook
    slack_client = SlackWebhookClient(
        config.slack_webhook.get_secret_value(), config.name, logger
    )
    queue = ReconcileQueue()
    manager = make_manager(factory, reconciler, queue, slack_client)

    await manager.start()
    try:
        queue.add(ReconcileRequest(name="logs", namespace="logging"))
        await wait_for(lambda: len(mock_slack.messages) > 0)
    finally:
        await manager.stop()

    assert len(mock_slack.messages) == 1
    assert "Something went wrong" in str(mock_slack.messages[0])


@pytest.mark.asyncio
async def test_stop(factory: Factory, reconciler: EFKStackReconciler) -> None:
    queue = ReconcileQueue()
    manager = make_manager(factory, reconciler, queue)

    await manager.start()
    await manager.start()
    await manager.stop()
    await manager.stop()

    # The queue is shut down along with the workers.
    queue.add(ReconcileRequest(name="logs", namespace="logging"))
    assert len(queue) == 0
