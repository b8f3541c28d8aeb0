"""Exceptions for the EFK operator."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Self, override

from kubernetes_asyncio.client import ApiException
from safir.datetime import format_datetime_for_logging
from safir.slack.blockkit import (
    SlackBaseField,
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
)

__all__ = [
    "ControllerTimeoutError",
    "HelmError",
    "KubernetesError",
    "QueueShutDownError",
    "ReconcileError",
]


class ControllerTimeoutError(SlackException):
    """Wraps `TimeoutError` with additional context and Slack support.

    Parameters
    ----------
    operation
        Operation that timed out.
    started_at
        Start time of the operation.
    failed_at
        Time at which the operation timed out.
    """

    def __init__(
        self,
        operation: str,
        *,
        started_at: datetime,
        failed_at: datetime,
    ) -> None:
        self.started_at = started_at
        elapsed = failed_at - started_at
        msg = f"{operation} timed out after {elapsed.total_seconds()}s"
        super().__init__(msg, failed_at=failed_at)

    @override
    def to_slack(self) -> SlackMessage:
        """Format the exception as a Slack message.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting with
            `~safir.slack.webhook.SlackWebhookClient`.
        """
        started_at = format_datetime_for_logging(self.started_at)
        failed_at = format_datetime_for_logging(self.failed_at)
        fields: list[SlackBaseField] = [
            SlackTextField(heading="Started at", text=started_at),
            SlackTextField(heading="Failed at", text=failed_at),
        ]
        return SlackMessage(message=str(self), fields=fields)


class HelmError(SlackException):
    """A Helm command failed.

    Parameters
    ----------
    message
        Summary of error.
    command
        Helm command line that failed, if one was run.
    returncode
        Exit status of the command, if it exited.
    stderr
        Standard error of the command, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.command = command
        self.returncode = returncode
        self.stderr = stderr

    @override
    def __str__(self) -> str:
        result = self.message
        if self.returncode is not None:
            result += f" (exit status {self.returncode})"
        if self.stderr:
            result += f": {self.stderr.strip()}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self.message
        if self.returncode is not None:
            text = str(self.returncode)
            message.fields.append(SlackTextField(heading="Status", text=text))
        if self.command:
            command = " ".join(self.command)
            block = SlackCodeBlock(heading="Command", code=command)
            message.blocks.append(block)
        if self.stderr:
            block = SlackCodeBlock(heading="Error", code=self.stderr)
            message.blocks.append(block)
        return message


class KubernetesError(SlackException):
    """An API call to Kubernetes failed.

    Parameters
    ----------
    message
        Summary of error.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    kind
        Kind of object being acted on.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a Kubernetes API exception.

        Parameters
        ----------
        message
            Brief explanation of what was being attempted.
        exc
            Kubernetes API exception.
        kind
            Kind of object being acted on.
        namespace
            Namespace of object being acted on.
        name
            Name of object being acted on.

        Returns
        -------
        KubernetesError
            Newly-created exception.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body if exc.body else exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @override
    def __str__(self) -> str:
        result = self._summary()
        if self.body:
            result += f": {self.body}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if self.name:
            kind = f"{self.kind} " if self.kind else ""
            if self.namespace:
                obj = f"{kind}{self.namespace}/{self.name}"
            else:
                obj = f"{kind}{self.name}"
            message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        elif self.kind:
            if self.namespace:
                obj = f"{self.kind} in namespace {self.namespace}"
            else:
                obj = self.kind
            block = SlackTextBlock(heading="Object", text=obj)
            message.blocks.append(block)
        if self.body:
            code = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(code)
        return message

    def _summary(self) -> str:
        """Summarize the exception.

        Produces a single-line summary, used for the main part of the Slack
        message and part of the stringification.
        """
        result = self.message
        if self.name or self.kind or self.status:
            result += " ("
            if self.name:
                kind = f"{self.kind} " if self.kind else ""
                if self.namespace:
                    result += f"{kind}{self.namespace}/{self.name}"
                else:
                    result += f"{kind}{self.name}"
                if self.status:
                    result += ", "
            elif self.kind:
                result += self.kind
                if self.status:
                    result += ", "
            if self.status:
                result += f"status {self.status}"
            result += ")"
        return result


class QueueShutDownError(Exception):
    """The reconcile queue was shut down while waiting for a request."""


class ReconcileError(SlackException):
    """A reconcile pass failed and should be retried.

    The failure has already been recorded in the status of the ``EFKStack``
    where possible. The caller is expected to requeue the stack after
    ``requeue_after``.

    Parameters
    ----------
    message
        Summary of error.
    name
        Name of the ``EFKStack``.
    namespace
        Namespace of the ``EFKStack``.
    requeue_after
        How long to wait before retrying.
    """

    def __init__(
        self,
        message: str,
        *,
        name: str,
        namespace: str,
        requeue_after: timedelta,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.name = name
        self.namespace = namespace
        self.requeue_after = requeue_after

    @override
    def __str__(self) -> str:
        result = f"{self.message} (EFKStack {self.namespace}/{self.name})"
        if self.__cause__:
            result += f": {self.__cause__!s}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self.message
        obj = f"EFKStack {self.namespace}/{self.name}"
        message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        if self.__cause__:
            code = SlackCodeBlock(heading="Error", code=str(self.__cause__))
            message.blocks.append(code)
        return message
