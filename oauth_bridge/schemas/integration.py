"""Schemas for the server-to-server endpoints."""

from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class BackgroundCheckRequest(BaseModel):
    """Body posted by the provider's web UI on behalf of an organization."""

    model_config = ConfigDict(populate_by_name=True)

    person_id: Union[int, str] = Field(
        ..., alias="personId", description="Person the check applies to."
    )
    identity: Optional[str] = Field(
        None, description="Signed identity assertion (HS256 JWT)."
    )


class IntegrationStatus(BaseModel):
    status: str


__all__ = ["BackgroundCheckRequest", "IntegrationStatus"]
