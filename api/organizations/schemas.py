"""
Organization/publisher API schemas (request models).
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class CreatePublisherRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    url: str = Field(..., min_length=8, max_length=500)


class UpdatePublisherRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    url: str | None = Field(default=None, min_length=8, max_length=500)


class CreateOrganizationRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class UpdateOrganizationRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
