"""Pydantic models for order requests and responses."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class SplitConfigSchema(BaseModel):
    """Split configuration for an order."""
    model_config = ConfigDict(extra="forbid")

    num_splits: int = Field(..., ge=2, le=100, strict=True, description="Number of slices to create")
    duration_minutes: int = Field(..., ge=1, le=1440, strict=True, description="Total duration in minutes")
    randomize: bool = Field(True, strict=True, description="Whether to apply randomization")


class CreateOrderRequest(BaseModel):
    """Request body for POST /orders."""
    model_config = ConfigDict(extra="forbid")

    order_unique_key: str = Field(..., min_length=1, max_length=255)
    instrument: str = Field(..., min_length=1)
    side: Literal["BUY", "SELL"]
    total_quantity: int = Field(..., gt=0, strict=True)
    split_config: SplitConfigSchema


class OrderResponse(BaseModel):
    """Response model for order creation."""
    order_id: str
    order_unique_key: str
