from typing import List, Optional
from datetime import datetime
from uuid import UUID
from pydantic import model_validator
from sqlmodel import SQLModel, Field

from app.db.schema import BidStatus, ShipmentStatus, UnitStatus


class ShipmentBase(SQLModel):
    cargo_description: str = Field(min_length=1, max_length=2000)
    cargo_type: str = Field(default="GENERAL", max_length=50)
    pickup_address: str = Field(min_length=1)
    pickup_city: str = Field(min_length=1)
    pickup_country: str = Field(min_length=2, max_length=2)
    delivery_address: str = Field(min_length=1)
    delivery_city: str = Field(min_length=1)
    delivery_country: str = Field(min_length=2, max_length=2)
    weight: float = Field(gt=0, description="Total weight in kg.")
    budget: Optional[float] = Field(default=None, ge=0)
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    pickup_date: Optional[datetime] = None
    delivery_deadline: Optional[datetime] = None


class ShipmentCreate(ShipmentBase):
    quantity: int = Field(ge=1, le=500, description="Number of physical units; one QR label each.")

    @model_validator(mode="after")
    def check_dates(self):
        if self.pickup_date and self.delivery_deadline and self.delivery_deadline < self.pickup_date:
            raise ValueError("Delivery deadline cannot be before the pickup date.")
        return self


class UnitSummary(SQLModel):
    id: UUID
    unit_number: int
    total_units: int
    current_status: UnitStatus
    description: str
    weight: float
    qr_token: str
    qr_code_url: Optional[str] = None
    delivered_at: Optional[datetime] = None


class ShipmentRead(ShipmentBase):
    id: UUID
    shipper_id: UUID
    tracking_number: str
    quantity: int
    status: ShipmentStatus
    carrier_id: Optional[UUID] = None
    selected_bid_id: Optional[UUID] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    bid_count: int = 0


class ShipmentDetail(ShipmentRead):
    """Owner view, including the unit labels to print."""
    units: List[UnitSummary] = []


class BidCreate(SQLModel):
    shipment_id: UUID
    total_price: float = Field(gt=0)
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    vehicle_type: str = Field(min_length=1, max_length=50)
    estimated_pickup: datetime
    estimated_delivery: datetime
    notes: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def check_window(self):
        if self.estimated_delivery < self.estimated_pickup:
            raise ValueError("Estimated delivery cannot be before the estimated pickup.")
        return self


class BidRead(SQLModel):
    id: UUID
    shipment_id: UUID
    carrier_id: UUID
    carrier_name: Optional[str] = None
    carrier_rating: Optional[float] = None
    total_price: float
    currency: str
    vehicle_type: str
    estimated_pickup: datetime
    estimated_delivery: datetime
    notes: Optional[str] = None
    status: BidStatus
    created_at: datetime
