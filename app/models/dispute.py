import math
from typing import Any, Dict, List, Optional
from datetime import datetime
from uuid import UUID
from pydantic import field_validator
from sqlmodel import SQLModel, Field

from app.db.schema import DisputeStatus, DisputeType, Liability, UserRole


class DisputeCreate(SQLModel):
    shipment_id: UUID
    unit_id: UUID
    type: DisputeType
    damage_description: str = Field(max_length=5000)
    estimated_value: Optional[float] = Field(default=None, ge=0)
    photos: List[str] = Field(
        default_factory=list,
        max_length=20,
        description="Optional damage photos as data URLs, stored before the photo check."
    )

    @field_validator("damage_description")
    @classmethod
    def description_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Damage description is required.")
        return v.strip()


class CommentCreate(SQLModel):
    message: str = Field(min_length=1, max_length=5000)
    is_internal: bool = False


class CommentRead(SQLModel):
    id: UUID
    author_id: UUID
    author_role: UserRole
    author_name: str
    message: str
    is_internal: bool
    created_at: datetime


class StatusUpdate(SQLModel):
    status: DisputeStatus


class ResolvePayload(SQLModel):
    final_liability: Liability
    resolution_notes: Optional[str] = Field(default=None, max_length=5000)
    compensation_amount: Optional[float] = Field(default=None, ge=0)
    apply_rating_impact: bool = False
    rating_impact_value: Optional[float] = Field(default=None, ge=-5, le=0)


class DisputeSummary(SQLModel):
    id: UUID
    shipment_id: UUID
    unit_id: UUID
    type: DisputeType
    status: DisputeStatus
    damage_description: str
    estimated_value: Optional[float] = None
    is_auto_created: bool
    suggested_liability: Optional[Liability] = None
    final_liability: Optional[Liability] = None
    created_by_role: UserRole
    created_by_name: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None


class DisputeRead(DisputeSummary):
    """Full dispute view: evidence, liability analysis, resolution and comments."""
    evidence_snapshot: Optional[Dict[str, Any]] = None
    suggested_liability_score: Optional[float] = None
    liability_reason: Optional[str] = None
    resolution_notes: Optional[str] = None
    compensation_amount: Optional[float] = None
    rating_impact_applied: bool = False
    rating_impact_value: Optional[float] = None
    created_by_id: UUID
    resolved_by_id: Optional[UUID] = None
    resolved_by_name: Optional[str] = None
    review_started_at: Optional[datetime] = None
    evidence_locked_at: Optional[datetime] = None
    updated_at: datetime
    comments: List[CommentRead] = []


class Pagination(SQLModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=max(1, math.ceil(total / limit)))

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.pages


class DisputePage(SQLModel):
    disputes: List[DisputeSummary]
    pagination: Pagination
