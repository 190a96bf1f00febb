"""
SQLAlchemy model for providers (tow-truck operators and mechanics).

The dispatch engine only reads this table. Presence, location and
capabilities are written by the provider's own status reports.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from towmech.algorithms.capabilitySet import CapabilitySet

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ProviderRole(str, enum.Enum):
    TOW_TRUCK = "tow_truck"
    MECHANIC = "mechanic"


class VerificationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class Provider(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "providers"

    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    role: Mapped[ProviderRole] = mapped_column(
        Enum(ProviderRole, name="provider_role"),
        nullable=False,
    )

    # Presence
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verification_status: Mapped[VerificationStatus] = mapped_column(
        Enum(VerificationStatus, name="verification_status"),
        nullable=False,
        default=VerificationStatus.PENDING,
    )
    last_latitude: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 7), nullable=True
    )
    last_longitude: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 7), nullable=True
    )
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Capabilities
    tow_truck_types: Mapped[Any] = mapped_column(JSON, nullable=False, default=list)
    car_types_supported: Mapped[Any] = mapped_column(JSON, nullable=False, default=list)

    # Device token for offer push notifications
    fcm_token: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    @property
    def tow_truck_capabilities(self) -> CapabilitySet:
        return CapabilitySet.strict(self.tow_truck_types)

    @property
    def vehicle_capabilities(self) -> CapabilitySet:
        # No declared vehicle types means the provider handles any vehicle.
        return CapabilitySet.universal_when_empty(self.car_types_supported)

    @property
    def has_location(self) -> bool:
        return self.last_latitude is not None and self.last_longitude is not None

    def __repr__(self) -> str:
        return (
            f"<Provider(id={self.id}, role={self.role}, online={self.is_online}, "
            f"verification={self.verification_status})>"
        )
