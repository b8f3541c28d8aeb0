"""Reconciliation of logging stacks."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError
from structlog.stdlib import BoundLogger

from ..constants import (
    DEFAULT_NAMESPACE,
    ELASTICSEARCH_PORT,
    ERROR_REQUEUE_DELAY,
    HELM_INIT_REQUEUE_DELAY,
    KUBERNETES_REQUEST_TIMEOUT,
    NOT_READY_REQUEUE_DELAY,
    READY_REQUEUE_DELAY,
    RELEASE_DEPLOYED,
)
from ..exceptions import HelmError, ReconcileError
from ..models.domain.reconcile import (
    COMPONENT_ORDER,
    Component,
    ReconcileRequest,
    ReconcileResult,
)
from ..models.v1.efkstack import (
    ComponentState,
    EFKStack,
    StackPhase,
)
from ..storage.helm import HelmClient
from ..storage.kubernetes.custom import EFKStackStorage
from ..timeout import Timeout
from .builder.values import ReleaseValuesBuilder
from .drift import ConfigDriftDetector

__all__ = ["EFKStackReconciler"]


class EFKStackReconciler:
    """Drive logging stacks towards their desired state.

    Each call to `reconcile` performs one convergence step for one stack:
    install or upgrade the Helm release of each component in dependency
    order, record the resulting state in the status of the ``EFKStack``,
    and restart workloads whose configuration has changed. The caller is
    responsible for ensuring that the same stack is never reconciled
    concurrently and for calling `reconcile` again after the returned delay.

    Parameters
    ----------
    charts_path
        Directory containing one chart per component.
    efkstack_storage
        Storage for ``EFKStack`` objects.
    values_builder
        Builder for the Helm values of each component.
    drift_detector
        Detector for configuration changes that require a restart.
    helm_factory
        Called with a namespace to create a Helm client for that namespace.
        Each client is created on first use and then reused.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        charts_path: Path,
        efkstack_storage: EFKStackStorage,
        values_builder: ReleaseValuesBuilder,
        drift_detector: ConfigDriftDetector,
        helm_factory: Callable[[str], HelmClient],
        logger: BoundLogger,
    ) -> None:
        self._charts_path = charts_path
        self._storage = efkstack_storage
        self._builder = values_builder
        self._drift = drift_detector
        self._helm_factory = helm_factory
        self._logger = logger

        self._helm: dict[str, HelmClient] = {}

    async def reconcile(self, request: ReconcileRequest) -> ReconcileResult:
        """Perform one reconcile pass for a stack.

        Parameters
        ----------
        request
            Stack to reconcile.

        Returns
        -------
        ReconcileResult
            When to reconcile the stack again. There is no requeue if the
            stack no longer exists.

        Raises
        ------
        KubernetesError
            Raised if the stack or its status could not be read or written.
        ReconcileError
            Raised if a component could not be installed or a Helm client
            could not be created. The failure has already been recorded in
            the status of the stack where possible.
        """
        logger = self._logger.bind(
            stack=request.name, namespace=request.namespace
        )
        timeout = Timeout("Reading EFKStack", KUBERNETES_REQUEST_TIMEOUT)
        try:
            async with timeout.enforce():
                stack = await self._storage.read(
                    request.name, request.namespace, timeout
                )
        except ValidationError as e:
            # Wait for the object to be changed, which triggers a new request.
            logger.error("Invalid EFKStack, not reconciling", error=str(e))
            return ReconcileResult()
        if not stack:
            logger.info("EFKStack not found, assuming it was deleted")
            return ReconcileResult()
        namespace = (
            stack.spec.namespace or request.namespace or DEFAULT_NAMESPACE
        )
        logger = logger.bind(target_namespace=namespace)
        logger.debug("Reconciling EFKStack")

        if stack.status.phase is None:
            stack.status.phase = StackPhase.PENDING
            await self._update_status(stack)

        helm = self._get_helm(request, namespace)
        await self._reconcile_component(
            Component.ELASTICSEARCH, stack, helm, request, logger
        )
        if stack.status.elasticsearch.state == ComponentState.READY:
            for component in COMPONENT_ORDER[1:]:
                await self._reconcile_component(
                    component, stack, helm, request, logger
                )
        else:
            logger.debug("Waiting for Elasticsearch to become ready")

        now = datetime.now(tz=UTC)
        stack.status.update_phase(stack.metadata.generation, now)
        await self._update_status(stack)

        try:
            await self._drift.check_stack(stack.name, namespace)
        except Exception:
            logger.exception("Unable to check for configuration changes")

        if stack.status.phase == StackPhase.READY:
            delay = READY_REQUEUE_DELAY
        else:
            delay = NOT_READY_REQUEUE_DELAY
        logger.debug(
            "Reconciled EFKStack",
            phase=stack.status.phase.value,
            requeue_after=delay.total_seconds(),
        )
        return ReconcileResult(requeue_after=delay)

    def _get_helm(
        self, request: ReconcileRequest, namespace: str
    ) -> HelmClient:
        """Get the Helm client for a namespace, creating it if necessary.

        Parameters
        ----------
        request
            Stack being reconciled, for error reporting.
        namespace
            Namespace into which the components are installed.

        Returns
        -------
        HelmClient
            Helm client for that namespace.

        Raises
        ------
        ReconcileError
            Raised if the Helm client could not be created.
        """
        if namespace not in self._helm:
            try:
                self._helm[namespace] = self._helm_factory(namespace)
            except HelmError as e:
                raise ReconcileError(
                    "Cannot create Helm client",
                    name=request.name,
                    namespace=request.namespace,
                    requeue_after=HELM_INIT_REQUEUE_DELAY,
                ) from e
        return self._helm[namespace]

    async def _reconcile_component(
        self,
        component: Component,
        stack: EFKStack,
        helm: HelmClient,
        request: ReconcileRequest,
        logger: BoundLogger,
    ) -> None:
        """Install or upgrade one component and record its state.

        Parameters
        ----------
        component
            Component to reconcile.
        stack
            Stack being reconciled. Its status is updated and stored.
        helm
            Helm client for the namespace of the components.
        request
            Reconcile request, for error reporting.
        logger
            Logger to use.

        Raises
        ------
        ReconcileError
            Raised if the Helm install or upgrade failed.
        """
        release = component.release_name(stack.name)
        chart = self._charts_path / component.value
        status = stack.status.component(component)
        logger = logger.bind(component=component.value, release=release)
        values = self._builder.build(component, stack)
        try:
            await helm.install_or_upgrade(release, chart, values)
        except HelmError as e:
            status.state = ComponentState.ERROR
            message = f"Helm install/upgrade failed: {e!s}"
            try:
                release_status = await helm.get_release_status(release)
            except HelmError as status_error:
                msg = "Cannot get status of failed release"
                logger.warning(msg, error=str(status_error))
            else:
                message += f" (Release status: {release_status})"
            status.message = message
            logger.warning("Helm install or upgrade failed", error=str(e))
            await self._update_status(stack)
            raise ReconcileError(
                f"Cannot install {component.display_name}",
                name=request.name,
                namespace=request.namespace,
                requeue_after=ERROR_REQUEUE_DELAY,
            ) from e

        status.version = stack.spec.component(component).version
        try:
            release_status = await helm.get_release_status(release)
        except HelmError as e:
            status.state = ComponentState.DEPLOYING
            status.message = f"Failed to get release status: {e!s}"
            logger.warning("Cannot get release status", error=str(e))
        else:
            if release_status == RELEASE_DEPLOYED:
                status.state = ComponentState.READY
                status.ready_replicas = self._desired_replicas(
                    component, stack
                )
                status.message = None
            else:
                status.state = ComponentState.DEPLOYING
                status.message = f"Release status: {release_status}"
        if status.state == ComponentState.READY:
            status.url = self._build_url(component, stack, helm.namespace)
        logger.info("Reconciled component", state=status.state.value)
        await self._update_status(stack)

    def _build_url(
        self, component: Component, stack: EFKStack, namespace: str
    ) -> str | None:
        """Construct the URL at which a ready component can be reached.

        Elasticsearch is only reachable inside the cluster. Kibana has a URL
        only if it is exposed with an ingress.
        """
        if component == Component.ELASTICSEARCH:
            service = component.release_name(stack.name)
            return f"http://{service}.{namespace}.svc:{ELASTICSEARCH_PORT}"
        elif component == Component.KIBANA:
            ingress = stack.spec.kibana.ingress
            if ingress.enabled and ingress.host:
                return f"https://{ingress.host}"
        return None

    def _desired_replicas(
        self, component: Component, stack: EFKStack
    ) -> int | None:
        """Number of pods a component should have, if it has a fixed number.

        Fluent Bit runs one pod on every node, so it has no fixed number.
        """
        if component == Component.ELASTICSEARCH:
            return stack.spec.elasticsearch.effective_replicas
        elif component == Component.KIBANA:
            return stack.spec.kibana.replicas
        return None

    async def _update_status(self, stack: EFKStack) -> None:
        """Store the status of a stack."""
        timeout = Timeout("Updating EFKStack", KUBERNETES_REQUEST_TIMEOUT)
        async with timeout.enforce():
            await self._storage.replace_status(stack, timeout)
