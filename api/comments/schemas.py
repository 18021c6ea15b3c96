"""
Comment API schemas (request models).
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class CreateCommentRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
    # Reply to another comment of the same article.
    parent: str | None = Field(default=None, min_length=1, max_length=100)


class UpdateCommentRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
