"""Data types for Helm releases."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Self

__all__ = ["HelmRelease"]


@dataclass
class HelmRelease:
    """A Helm release as reported by ``helm --output json``."""

    name: str
    """Name of the release."""

    namespace: str
    """Namespace into which the release was installed."""

    revision: int
    """Revision number of the release."""

    status: str
    """Status of the release, such as ``deployed`` or ``pending-install``."""

    chart: str | None = None
    """Chart name and version, if known."""

    app_version: str | None = None
    """Version of the application packaged by the chart, if known."""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Self:
        """Create from the JSON output of ``helm upgrade`` or ``helm status``.

        Parameters
        ----------
        data
            Parsed JSON release object.

        Returns
        -------
        HelmRelease
            Corresponding release.
        """
        info = data.get("info") or {}
        metadata = (data.get("chart") or {}).get("metadata") or {}
        chart = None
        if metadata.get("name"):
            chart = metadata["name"]
            if metadata.get("version"):
                chart += f"-{metadata['version']}"
        return cls(
            name=str(data.get("name", "")),
            namespace=str(data.get("namespace", "")),
            revision=int(data.get("version", 0)),
            status=str(info.get("status", "")),
            chart=chart,
            app_version=metadata.get("appVersion"),
        )
