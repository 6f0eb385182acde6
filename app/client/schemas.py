"""
Response payloads as seen by API consumers.

Every response body is validated into one of these models before use;
unknown fields are ignored so the client tolerates additive server changes.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.db.schema import (
    DisputeStatus, DisputeType, Liability, PhotoType, ScanAction,
    ShipmentStatus, UnitStatus, UserRole
)


class Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class UserInfo(Payload):
    id: UUID
    email: str
    first_name: str
    last_name: str
    role: UserRole
    language: str = "sq"


class LoginResult(Payload):
    access_token: str
    refresh_token: str
    token_type: str
    user: UserInfo


class ScanLogEntry(Payload):
    id: UUID
    action: ScanAction
    previous_status: UnitStatus
    new_status: UnitStatus
    scanned_by_role: UserRole
    scanned_by_name: str
    scanned_at: datetime
    warehouse_name: Optional[str] = None
    has_damage: bool = False
    damage_description: Optional[str] = None


class Photo(Payload):
    id: UUID
    type: PhotoType
    image_url: str
    caption: Optional[str] = None
    uploaded_by_name: str
    uploaded_at: datetime


class UnitInfo(Payload):
    id: UUID
    unit_number: int
    total_units: int
    current_status: UnitStatus
    description: str
    weight: float
    qr_code_url: Optional[str] = None
    scan_history: List[ScanLogEntry] = []
    photos: List[Photo] = []


class ShipmentInfo(Payload):
    id: UUID
    tracking_number: str
    status: ShipmentStatus
    pickup_city: str
    delivery_city: str
    cargo_description: str
    quantity: int


class TokenInfo(Payload):
    unit: UnitInfo
    shipment: ShipmentInfo


class AllowedActions(Payload):
    token: str
    current_status: UnitStatus
    allowed_actions: List[ScanAction]


class ScanResult(Payload):
    scan: ScanLogEntry
    unit_status: UnitStatus
    new_token: str
    qr_code_url: Optional[str] = None
    dispute_id: Optional[UUID] = None


class Comment(Payload):
    id: UUID
    author_role: UserRole
    author_name: str
    message: str
    is_internal: bool = False
    created_at: datetime


class DisputeSummary(Payload):
    id: UUID
    shipment_id: UUID
    unit_id: UUID
    type: DisputeType
    status: DisputeStatus
    damage_description: str
    is_auto_created: bool = False
    suggested_liability: Optional[Liability] = None
    final_liability: Optional[Liability] = None
    created_at: datetime


class DisputeDetail(DisputeSummary):
    evidence_snapshot: Optional[Dict[str, Any]] = None
    suggested_liability_score: Optional[float] = None
    liability_reason: Optional[str] = None
    resolution_notes: Optional[str] = None
    compensation_amount: Optional[float] = None
    rating_impact_applied: bool = False
    rating_impact_value: Optional[float] = None
    evidence_locked_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    comments: List[Comment] = []


class Pagination(Payload):
    page: int
    limit: int
    total: int
    pages: int

    @property
    def has_previous(self) -> bool:
        """False on the first page: the "previous" control is disabled."""
        return self.page > 1

    @property
    def has_next(self) -> bool:
        """False on the last page: the "next" control is disabled."""
        return self.page < max(self.pages, 1)


class DisputePage(Payload):
    disputes: List[DisputeSummary]
    pagination: Pagination
