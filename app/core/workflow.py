"""
Checkpoint scan and dispute state machines.

Pure functions over the status enums, shared by the API services (which
enforce them) and the client package (which gates its forms with them).
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from app.db.schema import (
    DisputeStatus, DisputeType, Liability, PhotoType, ScanAction,
    UnitStatus, UserRole
)


# --- Checkpoint scans ---

TRANSITIONS: Dict[Tuple[UnitStatus, ScanAction], UnitStatus] = {
    (UnitStatus.CREATED, ScanAction.PICKUP): UnitStatus.PICKED_UP,
    (UnitStatus.PICKED_UP, ScanAction.INBOUND): UnitStatus.IN_WAREHOUSE,
    (UnitStatus.IN_WAREHOUSE, ScanAction.OUTBOUND): UnitStatus.OUT_WAREHOUSE,
    (UnitStatus.PICKED_UP, ScanAction.IN_TRANSIT): UnitStatus.IN_TRANSIT,
    (UnitStatus.OUT_WAREHOUSE, ScanAction.IN_TRANSIT): UnitStatus.IN_TRANSIT,
    (UnitStatus.IN_TRANSIT, ScanAction.DELIVERED): UnitStatus.DELIVERED,
}

ACTION_ROLES: Dict[ScanAction, Set[UserRole]] = {
    ScanAction.PICKUP: {UserRole.CARRIER, UserRole.DRIVER},
    ScanAction.INBOUND: {UserRole.WAREHOUSE},
    ScanAction.OUTBOUND: {UserRole.WAREHOUSE},
    ScanAction.IN_TRANSIT: {UserRole.CARRIER, UserRole.DRIVER},
    ScanAction.DELIVERED: {UserRole.CARRIER, UserRole.DRIVER},
    ScanAction.DAMAGE: {UserRole.CARRIER, UserRole.DRIVER, UserRole.WAREHOUSE},
}


def role_may_perform(role: UserRole, action: ScanAction) -> bool:
    return role == UserRole.ADMIN or role in ACTION_ROLES[action]


def next_status(status: UnitStatus, action: ScanAction) -> Optional[UnitStatus]:
    """
    Resulting unit status, or None when the action is not a legal edge.
    A DAMAGE report is a side report and leaves the status unchanged.
    """
    if action == ScanAction.DAMAGE:
        return None if status == UnitStatus.DELIVERED else status
    return TRANSITIONS.get((status, action))


def allowed_actions(status: UnitStatus, role: UserRole) -> List[ScanAction]:
    """Actions offered for a unit in `status` to a user with `role`, in display order."""
    return [
        action for action in ScanAction
        if role_may_perform(role, action) and next_status(status, action) is not None
    ]


def photo_type_for(action: ScanAction, has_damage: bool = False) -> PhotoType:
    if action == ScanAction.PICKUP:
        return PhotoType.DAMAGE if has_damage else PhotoType.ORIGIN
    return {
        ScanAction.INBOUND: PhotoType.WAREHOUSE_IN,
        ScanAction.OUTBOUND: PhotoType.WAREHOUSE_OUT,
        ScanAction.IN_TRANSIT: PhotoType.ORIGIN,
        ScanAction.DELIVERED: PhotoType.DELIVERY,
        ScanAction.DAMAGE: PhotoType.DAMAGE,
    }[action]


@dataclass
class Evidence:
    """What a scanner has collected for one checkpoint action."""
    quantity_confirmed: Optional[int] = None
    has_damage: bool = False
    damage_description: str = ""
    photo_count: int = 0
    recipient_name: str = ""
    signature: str = ""
    vehicle_plate: str = ""


@dataclass(frozen=True)
class MissingEvidence:
    code: str
    hint: str


QUANTITY = MissingEvidence("QUANTITY", "Konfirmo sasinë e marrë.")
DAMAGE_DESCRIPTION = MissingEvidence("DAMAGE_DESCRIPTION", "Përshkruaj dëmtimin.")
RECIPIENT_NAME = MissingEvidence("RECIPIENT_NAME", "Shkruaj emrin e marrësit.")
SIGNATURE = MissingEvidence("SIGNATURE", "Merr firmën e marrësit.")
PHOTO = MissingEvidence("PHOTO", "Shto të paktën një foto.")


def has_signature(signature: Optional[str]) -> bool:
    """A canvas capture counts only if it carries image data."""
    if not signature or not signature.strip():
        return False
    if signature.startswith("data:"):
        return bool(signature.partition(",")[2].strip())
    return True


def missing_evidence(action: ScanAction, evidence: Evidence) -> List[MissingEvidence]:
    """
    Evidence still required before `action` may be submitted, in the order
    the hints are shown. An empty list means the submission is complete.
    """
    missing: List[MissingEvidence] = []

    if action == ScanAction.PICKUP:
        if not evidence.quantity_confirmed or evidence.quantity_confirmed < 1:
            missing.append(QUANTITY)
        if evidence.has_damage:
            if not evidence.damage_description.strip():
                missing.append(DAMAGE_DESCRIPTION)
            if evidence.photo_count < 1:
                missing.append(PHOTO)

    elif action in (ScanAction.INBOUND, ScanAction.OUTBOUND):
        if evidence.photo_count < 1:
            missing.append(PHOTO)

    elif action == ScanAction.DELIVERED:
        if not evidence.recipient_name.strip():
            missing.append(RECIPIENT_NAME)
        if not has_signature(evidence.signature):
            missing.append(SIGNATURE)
        if evidence.photo_count < 1:
            missing.append(PHOTO)

    elif action == ScanAction.DAMAGE:
        if not evidence.damage_description.strip():
            missing.append(DAMAGE_DESCRIPTION)
        if evidence.photo_count < 1:
            missing.append(PHOTO)

    return missing


def dispute_type_for_status(status: UnitStatus) -> DisputeType:
    """Dispute type matching who had custody when damage was reported."""
    if status == UnitStatus.CREATED:
        return DisputeType.DAMAGE_AT_PICKUP
    if status in (UnitStatus.IN_WAREHOUSE, UnitStatus.OUT_WAREHOUSE):
        return DisputeType.DAMAGE_AT_WAREHOUSE
    if status == UnitStatus.DELIVERED:
        return DisputeType.CLIENT_REPORT
    return DisputeType.DAMAGE_IN_TRANSIT


# --- Disputes ---

DISPUTE_FLOW: List[DisputeStatus] = [
    DisputeStatus.OPEN,
    DisputeStatus.UNDER_REVIEW,
    DisputeStatus.EVIDENCE_COMPLETE,
    DisputeStatus.RESOLVED,
]

LOCKED_STATUSES = {DisputeStatus.EVIDENCE_COMPLETE, DisputeStatus.RESOLVED}


def next_dispute_status(status: DisputeStatus) -> Optional[DisputeStatus]:
    index = DISPUTE_FLOW.index(status)
    return DISPUTE_FLOW[index + 1] if index + 1 < len(DISPUTE_FLOW) else None


def available_transitions(status: DisputeStatus, role: UserRole) -> List[DisputeStatus]:
    """
    Status changes an actor may request directly. RESOLVED is only reached
    through a resolution, never through a plain status change.
    """
    if role != UserRole.ADMIN:
        return []
    target = next_dispute_status(status)
    if target is None or target == DisputeStatus.RESOLVED:
        return []
    return [target]


def can_transition(current: DisputeStatus, target: DisputeStatus, role: UserRole) -> bool:
    return target in available_transitions(current, role)


def can_resolve(status: DisputeStatus, role: UserRole) -> bool:
    return role == UserRole.ADMIN and status == DisputeStatus.EVIDENCE_COMPLETE


def can_comment(status: DisputeStatus) -> bool:
    return status not in LOCKED_STATUSES


def can_post_internal(role: UserRole) -> bool:
    return role == UserRole.ADMIN


def is_evidence_frozen(status: DisputeStatus) -> bool:
    return status in LOCKED_STATUSES


# Custody before each checkpoint: who held the unit when damage was first seen
_CUSTODY_BEFORE: Dict[UnitStatus, Liability] = {
    UnitStatus.CREATED: Liability.SHIPPER,
    UnitStatus.PICKED_UP: Liability.CARRIER,
    UnitStatus.IN_WAREHOUSE: Liability.WAREHOUSE,
    UnitStatus.OUT_WAREHOUSE: Liability.WAREHOUSE,
    UnitStatus.IN_TRANSIT: Liability.CARRIER,
    UnitStatus.DELIVERED: Liability.CLIENT,
}

_TYPE_FALLBACK: Dict[DisputeType, Liability] = {
    DisputeType.DAMAGE_AT_PICKUP: Liability.SHIPPER,
    DisputeType.DAMAGE_AT_WAREHOUSE: Liability.WAREHOUSE,
    DisputeType.DAMAGE_IN_TRANSIT: Liability.CARRIER,
    DisputeType.DAMAGE_AT_DELIVERY: Liability.CARRIER,
}


def suggest_liability(
    dispute_type: DisputeType,
    scan_logs: Iterable,
    unit_status: UnitStatus,
) -> Tuple[Liability, float, str]:
    """
    Suggests the liable party from the unit's scan history.

    The first checkpoint that flagged damage decides: the party that held
    custody before that scan is suggested. Without any flagged scan the
    dispute type is used as a weak hint. Returns (liability, score, reason)
    with score in 0..1.
    """
    ordered = sorted(scan_logs, key=lambda log: log.scanned_at)
    first_damage = next((log for log in ordered if log.has_damage), None)

    if first_damage is not None:
        action = ScanAction(first_damage.action)
        previous = UnitStatus(first_damage.previous_status)

        if action == ScanAction.PICKUP:
            return (Liability.SHIPPER, 0.8,
                    "Damage was recorded at pickup, before the carrier took custody.")
        if action == ScanAction.INBOUND:
            return (Liability.CARRIER, 0.75,
                    "Damage was first recorded at warehouse inbound, after carrier transport.")
        if action == ScanAction.DELIVERED:
            return (Liability.CARRIER, 0.8,
                    "Damage was recorded at delivery and not at any earlier checkpoint.")

        liable = _CUSTODY_BEFORE[previous]
        return (liable, 0.7,
                f"Damage was first reported during {action.value} while the unit was {previous.value}.")

    if unit_status == UnitStatus.DELIVERED and dispute_type == DisputeType.CLIENT_REPORT:
        return (Liability.CLIENT, 0.5,
                "The unit was delivered without recorded damage; damage was reported afterwards.")

    fallback = _TYPE_FALLBACK.get(dispute_type)
    if fallback is not None:
        return (fallback, 0.4, "No checkpoint recorded damage; suggestion based on the dispute type.")

    return (Liability.UNKNOWN, 0.0, "No checkpoint recorded damage.")
