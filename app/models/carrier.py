from typing import List, Optional
from datetime import datetime
from uuid import UUID
from pydantic import EmailStr, StringConstraints, model_validator
from typing_extensions import Annotated
from sqlmodel import SQLModel, Field

from app.db.schema import (
    SubscriptionStatus, SubscriptionTier, VerificationStatus, VerificationType
)


# ==========================================================================
# PROFILE
# ==========================================================================

class CarrierPublic(SQLModel):
    """Directory card shown to shippers."""
    id: UUID
    company_name: str
    slug: str
    country: str
    city: str
    fleet_size: int
    vehicle_types: List[str] = []
    verified: bool
    rating: float
    total_deliveries: int


class CarrierProfileRead(CarrierPublic):
    user_id: UUID
    vat_number: Optional[str] = None
    address: str
    phone: str
    subscription_tier: SubscriptionTier
    subscription_status: SubscriptionStatus
    trial_ends_at: Optional[datetime] = None
    subscription_ends_at: Optional[datetime] = None
    monthly_bids_used: int
    created_at: datetime


class CarrierProfileUpdate(SQLModel):
    company_name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    vat_number: Optional[str] = None
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    city: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None


# ==========================================================================
# FLEET
# ==========================================================================

class VehicleBase(SQLModel):
    vehicle_type: str = Field(min_length=1, max_length=50)
    license_plate: str = Field(min_length=2, max_length=20)
    max_weight: float = Field(gt=0)
    max_volume: float = Field(default=0, ge=0)


class VehicleCreate(VehicleBase):
    pass


class VehicleUpdate(SQLModel):
    vehicle_type: Optional[str] = Field(default=None, min_length=1, max_length=50)
    license_plate: Optional[str] = Field(default=None, min_length=2, max_length=20)
    max_weight: Optional[float] = Field(default=None, gt=0)
    max_volume: Optional[float] = Field(default=None, ge=0)


class VehicleRead(VehicleBase):
    id: UUID
    carrier_id: UUID
    available: bool
    created_at: datetime


class AvailabilityUpdate(SQLModel):
    available: bool


class DriverCreate(SQLModel):
    """Creates the DRIVER login together with the driver record."""
    email: Annotated[EmailStr, StringConstraints(to_lower=True)] = Field(max_length=255)
    password: str = Field(min_length=8, max_length=128)
    first_name: str
    last_name: str
    phone: Optional[str] = None
    license_number: str = Field(min_length=1, max_length=50)
    license_expiry: Optional[datetime] = None


class DriverUpdate(SQLModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    license_number: Optional[str] = Field(default=None, min_length=1, max_length=50)
    license_expiry: Optional[datetime] = None


class DriverRead(SQLModel):
    id: UUID
    carrier_id: UUID
    user_id: UUID
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    license_number: str
    license_expiry: Optional[datetime] = None
    available: bool


# ==========================================================================
# SUBSCRIPTION
# ==========================================================================

class PlanRead(SQLModel):
    tier: SubscriptionTier
    name: str
    price_per_vehicle: float
    period: str
    min_vehicles: int
    max_vehicles: int
    bids_per_month: Optional[int] = None


class PlansResponse(SQLModel):
    plans: List[PlanRead]
    current_tier: SubscriptionTier
    fleet_size: int
    recommended_tier: SubscriptionTier
    monthly_total: float


class SubscriptionUpdate(SQLModel):
    tier: SubscriptionTier


# ==========================================================================
# VERIFICATION
# ==========================================================================

class VerificationCreate(SQLModel):
    type: VerificationType
    document_url: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)]
    expires_at: Optional[datetime] = None


class VerificationReview(SQLModel):
    status: VerificationStatus
    rejection_reason: Optional[str] = None

    @model_validator(mode="after")
    def check_decision(self):
        if self.status not in (VerificationStatus.APPROVED, VerificationStatus.REJECTED):
            raise ValueError("A review either approves or rejects the document.")
        if self.status == VerificationStatus.REJECTED and not (self.rejection_reason or "").strip():
            raise ValueError("A rejection needs a reason.")
        return self


class VerificationRead(SQLModel):
    """One row of the checklist. Types never submitted come back as MISSING with no id."""
    id: Optional[UUID] = None
    type: VerificationType
    status: VerificationStatus
    document_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class VerificationList(SQLModel):
    verifications: List[VerificationRead]
    approved: int
    total: int
    progress: int = Field(description="Approved share of all document types, in percent.")
    verified: bool
