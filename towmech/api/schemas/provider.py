"""
Pydantic v2 schemas for provider status reports.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from towmech.models.provider import ProviderRole, VerificationStatus


class ProviderStatusUpdateRequest(BaseModel):
    """A provider's self-reported presence. Omitted fields stay unchanged."""

    is_online: Optional[bool] = None
    latitude: Optional[Decimal] = Field(default=None, ge=-90, le=90)
    longitude: Optional[Decimal] = Field(default=None, ge=-180, le=180)
    tow_truck_types: Optional[list[str]] = None
    car_types_supported: Optional[list[str]] = Field(
        default=None,
        description="Empty list means every vehicle type is supported",
    )
    fcm_token: Optional[str] = Field(default=None, max_length=512)

    @model_validator(mode="after")
    def check_location_pair(self) -> "ProviderStatusUpdateRequest":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class ProviderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    display_name: str
    role: ProviderRole
    is_online: bool
    verification_status: VerificationStatus
    last_latitude: Optional[Decimal] = None
    last_longitude: Optional[Decimal] = None
    last_seen_at: Optional[datetime] = None
    tow_truck_types: list[str] = Field(default_factory=list)
    car_types_supported: list[str] = Field(default_factory=list)
