"""Global configuration parsing."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.logging import LogLevel, Profile
from safir.pydantic import HumanTimedelta

__all__ = [
    "Config",
    "HelmConfig",
]


class HelmConfig(BaseModel):
    """Configuration for running Helm."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    binary: Annotated[
        str,
        Field(
            title="Helm binary",
            description=(
                "Name or path of the ``helm`` executable. A bare name is"
                " searched for on the ``PATH``."
            ),
            examples=["helm", "/usr/local/bin/helm"],
        ),
    ] = "helm"

    timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Helm timeout",
            description=(
                "How long to wait for a release install or upgrade, including"
                " waiting for its workloads to become ready"
            ),
            examples=["5m"],
        ),
    ] = timedelta(minutes=5)

    driver: Annotated[
        str,
        Field(
            title="Helm storage driver",
            description="Where Helm stores release information",
            examples=["secret", "configmap"],
        ),
    ] = "secret"


class Config(BaseSettings):
    """EFK operator configuration."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    charts_path: Annotated[
        Path,
        Field(
            title="Path to Helm charts",
            description=(
                "Directory containing the ``elasticsearch``, ``fluentbit``,"
                " and ``kibana`` charts"
            ),
        ),
    ] = Path("helm-charts/efk-stack")

    helm: Annotated[HelmConfig, Field(title="Helm configuration")] = (
        HelmConfig()
    )

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            description="Python logging level",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    name: Annotated[
        str,
        Field(
            title="Name of application",
            description="Used when reporting problems to Slack",
        ),
    ] = "efk-operator"

    path_prefix: Annotated[
        str, Field(title="URL prefix for the operator API")
    ] = "/efk-operator"

    profile: Annotated[
        Profile,
        Field(
            title="Application logging profile",
            description=(
                "``production`` uses JSON logging. ``development`` uses"
                " logging that may be easier for humans to read but that"
                " cannot be easily parsed by computers."
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook for alerts",
            description=(
                "If set, failed reconciles and any uncaught exceptions in the"
                " operator will be reported to Slack via this webhook"
            ),
            validation_alias="EFK_OPERATOR_SLACK_WEBHOOK",
        ),
    ] = None

    watch_namespace: Annotated[
        str | None,
        Field(
            title="Namespace to watch",
            description=(
                "If set, only ``EFKStack``, ``ConfigMap``, and ``Secret``"
                " objects in this namespace are watched. Otherwise, the"
                " operator watches the whole cluster."
            ),
        ),
    ] = None

    workers: Annotated[
        int,
        Field(
            title="Number of reconcile workers",
            description=(
                "Maximum number of stacks reconciled in parallel. A given"
                " stack is never reconciled by more than one worker at once."
            ),
            ge=1,
        ),
    ] = 1

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load the operator configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f) or {})
