from typing import List, Optional
from datetime import datetime
from uuid import UUID
from sqlmodel import SQLModel, Field

from app.db.schema import (
    PhotoType, ScanAction, ShipmentStatus, UnitStatus, UserRole
)


class GeoPoint(SQLModel):
    """Best-effort device location. Omitted entirely when unavailable."""
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class ScanLogRead(SQLModel):
    id: UUID
    action: ScanAction
    previous_status: UnitStatus
    new_status: UnitStatus
    scanned_by_role: UserRole
    scanned_by_name: str
    scanned_at: datetime
    warehouse_name: Optional[str] = None
    has_damage: bool
    damage_description: Optional[str] = None
    quantity_confirmed: Optional[int] = None
    vehicle_plate: Optional[str] = None
    notes: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class PhotoRead(SQLModel):
    id: UUID
    type: PhotoType
    image_url: str
    caption: Optional[str] = None
    uploaded_by_name: str
    uploaded_at: datetime


class UnitRead(SQLModel):
    id: UUID
    unit_number: int
    total_units: int
    current_status: UnitStatus
    description: str
    weight: float
    qr_code_url: Optional[str] = None
    scan_history: List[ScanLogRead] = []
    photos: List[PhotoRead] = []


class ShipmentInfo(SQLModel):
    id: UUID
    tracking_number: str
    status: ShipmentStatus
    pickup_address: str
    pickup_city: str
    pickup_country: str
    delivery_address: str
    delivery_city: str
    delivery_country: str
    cargo_description: str
    cargo_type: str
    weight: float
    quantity: int
    pickup_date: Optional[datetime] = None
    delivery_deadline: Optional[datetime] = None


class TokenInfoResponse(SQLModel):
    unit: UnitRead
    shipment: ShipmentInfo


class AllowedActionsResponse(SQLModel):
    token: str
    current_status: UnitStatus
    allowed_actions: List[ScanAction]


class PhotoUpload(GeoPoint):
    token: str
    type: PhotoType
    image_data: str = Field(description="Data URL: 'data:image/jpeg;base64,...'")
    caption: Optional[str] = Field(default=None, max_length=500)


class PhotoBatchUpload(GeoPoint):
    token: str
    type: PhotoType
    images: List[str] = Field(min_length=1, max_length=20)


class PhotoUploadOutcome(SQLModel):
    index: int
    ok: bool
    photo: Optional[PhotoRead] = None
    code: Optional[str] = None
    error: Optional[str] = None


class PhotoBatchResult(SQLModel):
    uploaded: int
    failed: int
    results: List[PhotoUploadOutcome]


class ScanRequest(GeoPoint):
    token: str
    action: ScanAction
    quantity_confirmed: Optional[int] = Field(default=None, ge=0)
    has_damage: bool = False
    damage_description: Optional[str] = Field(default=None, max_length=2000)
    vehicle_plate: Optional[str] = Field(default=None, max_length=20)
    warehouse_id: Optional[UUID] = None
    notes: Optional[str] = Field(default=None, max_length=2000)

    # Delivery only
    recipient_name: Optional[str] = Field(default=None, max_length=200)
    signature_image: Optional[str] = None


class SignatureRequest(GeoPoint):
    token: str
    recipient_name: str = Field(max_length=200)
    signature_image: str
    delivery_notes: Optional[str] = Field(default=None, max_length=2000)


class ScanResult(SQLModel):
    scan: ScanLogRead
    unit_status: UnitStatus
    new_token: str
    qr_code_url: Optional[str] = None
    dispute_id: Optional[UUID] = None
