"""
User API schemas (request models).
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class UpdateUserRequest(BaseModel):
    # Omitted fields keep their current value.
    full_name: str | None = Field(default=None, min_length=1, max_length=100)
    email: str | None = Field(default=None, min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
