"""
Like/bookmark API schemas (request models).
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ReactionRequest(BaseModel):
    article: str = Field(..., min_length=1, max_length=100)
