from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional
from uuid import UUID

from app.client.api import ApiClient
from app.client.schemas import DisputeDetail
from app.core.workflow import (
    available_transitions, can_comment, can_post_internal, can_resolve, is_evidence_frozen
)
from app.db.schema import DisputeStatus, DisputeType, UserRole


class WizardStep(IntEnum):
    SHIPMENT = 1
    UNIT = 2
    TYPE = 3
    DESCRIPTION = 4
    PHOTOS = 5
    REVIEW = 6


class DisputeWizard:
    """
    Five ordered steps for filing a dispute. A step can only be filled once
    every step before it is, and changing the shipment drops the unit.
    """

    def __init__(self):
        self.shipment_id: Optional[UUID] = None
        self.unit_id: Optional[UUID] = None
        self.type: Optional[DisputeType] = None
        self.description: str = ""
        self.photos: List[str] = []
        self.estimated_value: Optional[float] = None

    @property
    def current_step(self) -> WizardStep:
        if self.shipment_id is None:
            return WizardStep.SHIPMENT
        if self.unit_id is None:
            return WizardStep.UNIT
        if self.type is None:
            return WizardStep.TYPE
        if not self.description.strip():
            return WizardStep.DESCRIPTION
        if not self.photos:
            return WizardStep.PHOTOS
        return WizardStep.REVIEW

    def _require(self, step: WizardStep) -> None:
        if self.current_step < step:
            raise ValueError(f"Complete step {self.current_step.name} before {step.name}")

    def select_shipment(self, shipment_id: UUID) -> None:
        if shipment_id != self.shipment_id:
            self.unit_id = None
        self.shipment_id = shipment_id

    def select_unit(self, unit_id: UUID) -> None:
        self._require(WizardStep.UNIT)
        self.unit_id = unit_id

    def select_type(self, dispute_type: DisputeType) -> None:
        self._require(WizardStep.TYPE)
        self.type = dispute_type

    def set_description(self, description: str, estimated_value: Optional[float] = None) -> None:
        self._require(WizardStep.DESCRIPTION)
        self.description = description
        self.estimated_value = estimated_value

    def add_photo(self, image: str) -> None:
        self._require(WizardStep.PHOTOS)
        self.photos.append(image)

    def remove_photo(self, index: int) -> None:
        del self.photos[index]

    def can_submit(self) -> bool:
        return self.current_step == WizardStep.REVIEW

    def to_payload(self) -> Dict[str, Any]:
        if not self.can_submit():
            raise ValueError(f"Dispute is incomplete at step {self.current_step.name}")
        payload: Dict[str, Any] = {
            "shipment_id": str(self.shipment_id),
            "unit_id": str(self.unit_id),
            "type": self.type.value,
            "damage_description": self.description.strip(),
            "photos": list(self.photos),
        }
        if self.estimated_value is not None:
            payload["estimated_value"] = self.estimated_value
        return payload

    def submit(self, client: ApiClient) -> DisputeDetail:
        return client.create_dispute(self.to_payload())


@dataclass(frozen=True)
class DisputeActions:
    """What the dispute detail view enables for one viewer."""
    can_comment: bool
    can_post_internal: bool
    transitions: List[DisputeStatus] = field(default_factory=list)
    can_resolve: bool = False
    evidence_frozen: bool = False

    @classmethod
    def for_dispute(cls, status: DisputeStatus, role: UserRole) -> "DisputeActions":
        commentable = can_comment(status)
        return cls(
            can_comment=commentable,
            can_post_internal=commentable and can_post_internal(role),
            transitions=available_transitions(status, role),
            can_resolve=can_resolve(status, role),
            evidence_frozen=is_evidence_frozen(status),
        )
