"""Client for installing and inspecting Helm releases."""

from __future__ import annotations

import asyncio
import json
import os
import shutil
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from structlog.stdlib import BoundLogger

from ..constants import RELEASE_NOT_FOUND
from ..exceptions import HelmError
from ..models.domain.helm import HelmRelease

__all__ = ["HELM_GRACE_PERIOD", "HelmClient"]

HELM_GRACE_PERIOD = timedelta(seconds=30)
"""Extra time given to Helm beyond its own timeout before killing it."""


class HelmClient:
    """Run Helm commands against the releases in one namespace.

    Each client is bound to a single namespace, which is used as the
    namespace of every release it installs and inspects. Helm is run as a
    subprocess, with the values passed on standard input and the results
    requested as JSON.

    Parameters
    ----------
    namespace
        Namespace of the releases.
    binary
        Name or path of the Helm executable.
    timeout
        How long Helm may wait for a release to become ready.
    driver
        Helm storage driver for release information.
    logger
        Logger to use.

    Raises
    ------
    HelmError
        Raised if the Helm executable could not be found.
    """

    def __init__(
        self,
        namespace: str,
        *,
        binary: str = "helm",
        timeout: timedelta = timedelta(minutes=5),
        driver: str = "secret",
        logger: BoundLogger,
    ) -> None:
        path = shutil.which(binary)
        if not path:
            raise HelmError(f"Helm executable {binary} not found")
        self._namespace = namespace
        self._helm = path
        self._timeout = timeout
        self._driver = driver
        self._logger = logger.bind(namespace=namespace)

    @property
    def namespace(self) -> str:
        """Namespace of the releases managed by this client."""
        return self._namespace

    async def get_release_status(self, release: str) -> str:
        """Get the status of a release.

        Parameters
        ----------
        release
            Name of the release.

        Returns
        -------
        str
            Status of the release, such as ``deployed`` or ``failed``, or
            ``NotFound`` if the release does not exist.

        Raises
        ------
        HelmError
            Raised if Helm failed for any reason other than the release not
            existing.
        """
        command = ["status", release, "--namespace", self._namespace]
        try:
            output = await self._run([*command, "--output", "json"])
        except HelmError as e:
            if e.stderr and "not found" in e.stderr:
                return RELEASE_NOT_FOUND
            raise
        return self._parse_release(output, command).status

    async def install_or_upgrade(
        self, release: str, chart: Path, values: dict[str, Any]
    ) -> HelmRelease:
        """Install a release or upgrade it if it already exists.

        Helm waits for the resources of the release, including any jobs, to
        become ready before returning, up to the configured timeout.

        Parameters
        ----------
        release
            Name of the release.
        chart
            Path to the chart.
        values
            Values for the chart.

        Returns
        -------
        HelmRelease
            Release as installed.

        Raises
        ------
        HelmError
            Raised if the install or upgrade failed.
        """
        timeout = int(self._timeout.total_seconds())
        command = [
            "upgrade",
            release,
            str(chart),
            "--install",
            "--namespace",
            self._namespace,
            "--create-namespace",
            "--wait",
            "--wait-for-jobs",
            "--timeout",
            f"{timeout}s",
            "--values",
            "-",
        ]
        logger = self._logger.bind(release=release, chart=str(chart))
        logger.info("Installing or upgrading Helm release")
        stdin = yaml.safe_dump(values, sort_keys=True)
        output = await self._run([*command, "--output", "json"], stdin=stdin)
        result = self._parse_release(output, command)
        logger.info(
            "Helm release installed",
            revision=result.revision,
            status=result.status,
        )
        return result

    def _parse_release(self, output: str, command: list[str]) -> HelmRelease:
        """Parse the JSON release output by Helm."""
        try:
            return HelmRelease.from_json(json.loads(output))
        except (TypeError, ValueError) as e:
            msg = f"Cannot parse Helm output: {e!s}"
            raise HelmError(msg, command=[self._helm, *command]) from e

    async def _run(self, args: list[str], stdin: str | None = None) -> str:
        """Run Helm.

        Parameters
        ----------
        args
            Arguments to Helm.
        stdin
            Data to send to Helm on standard input, if any.

        Returns
        -------
        str
            Standard output of Helm.

        Raises
        ------
        HelmError
            Raised if Helm did not exit successfully or took too long.
        """
        command = [self._helm, *args]
        env = {**os.environ, "HELM_DRIVER": self._driver}
        self._logger.debug("Running Helm", command=command)
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
        data = stdin.encode() if stdin is not None else None
        limit = self._timeout + HELM_GRACE_PERIOD
        try:
            async with asyncio.timeout(limit.total_seconds()):
                stdout, stderr = await proc.communicate(data)
        except TimeoutError as e:
            proc.kill()
            await proc.wait()
            msg = f"Helm timed out after {limit.total_seconds()}s"
            raise HelmError(msg, command=command) from e
        if proc.returncode != 0:
            raise HelmError(
                "Helm command failed",
                command=command,
                returncode=proc.returncode,
                stderr=stderr.decode(errors="replace"),
            )
        return stdout.decode()
