"""
Draft API schemas (request models).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class CreateDraftRequest(BaseModel):
    author: str = Field(..., min_length=1, max_length=100)
    title: str = Field(..., min_length=1, max_length=300)
    content: dict[str, Any]
    sources: list[str] = Field(default_factory=list, max_length=50)


class UpdateDraftRequest(BaseModel):
    # Omitted fields keep their current value; `sources` replaces the list.
    title: str | None = Field(default=None, min_length=1, max_length=300)
    content: dict[str, Any] | None = None
    sources: list[str] | None = Field(default=None, max_length=50)
