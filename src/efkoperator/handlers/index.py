"""Metadata and health check routes for the EFK operator."""

from fastapi import APIRouter, Depends
from safir.metadata import Metadata, get_metadata
from safir.slack.webhook import SlackRouteErrorHandler

from ..config import Config
from ..dependencies.config import config_dependency
from ..models.index import Index

internal_router = APIRouter(route_class=SlackRouteErrorHandler)
"""Router to mount at the root of the application URL space."""

external_router = APIRouter(route_class=SlackRouteErrorHandler)
"""Router to mount into the application."""

__all__ = ["external_router", "internal_router"]


@external_router.get(
    "",
    description=(
        "Return metadata about the EFK operator and the scope in which it"
        " reconciles EFKStack objects."
    ),
    response_model=Index,
    response_model_exclude_none=True,
    summary="Operator metadata",
)
async def get_index(
    config: Config = Depends(config_dependency),
) -> Index:
    metadata = get_metadata(
        package_name="efk-operator", application_name=config.name
    )
    return Index(
        metadata=metadata,
        watch_namespace=config.watch_namespace,
        workers=config.workers,
    )


@internal_router.get(
    "/",
    description=(
        "Return metadata about the running operator. Used by Kubernetes as a"
        " liveness check. The reconcile loop runs in background tasks, so"
        " this route only shows that the process is serving requests."
    ),
    include_in_schema=False,
    response_model=Metadata,
    response_model_exclude_none=True,
    summary="Operator metadata (internal)",
)
async def get_internal_index(
    config: Config = Depends(config_dependency),
) -> Metadata:
    return get_metadata(
        package_name="efk-operator", application_name=config.name
    )
