"""
Article report API schemas (request models).
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class CreateReportRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)
