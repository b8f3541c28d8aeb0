"""Models for the metadata routes of the EFK operator."""

from __future__ import annotations

from pydantic import BaseModel, Field
from safir.metadata import Metadata

__all__ = ["Index"]


class Index(BaseModel):
    """Metadata and watch scope of the running operator."""

    metadata: Metadata = Field(..., title="Package metadata")

    watch_namespace: str | None = Field(
        None,
        title="Watched namespace",
        description=(
            "Namespace watched for EFKStack objects. Omitted if the operator"
            " watches the whole cluster."
        ),
        examples=["logging"],
    )

    workers: int = Field(
        ...,
        title="Reconcile workers",
        description="Number of stacks that may be reconciled at once",
        examples=[1],
    )
