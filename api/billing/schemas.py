"""
Bundle/price/subscription API schemas (request models).
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class CreateBundleRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class UpdateBundleRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)


class CreatePriceRequest(BaseModel):
    # Smallest currency unit (cents).
    amount: int = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)


class UpdatePriceRequest(BaseModel):
    active: bool | None = None


class CreateSubscriptionRequest(BaseModel):
    price: str = Field(..., min_length=1, max_length=100)
