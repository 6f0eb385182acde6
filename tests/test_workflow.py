from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from app.core.workflow import (
    PHOTO, QUANTITY, RECIPIENT_NAME, SIGNATURE, DAMAGE_DESCRIPTION, Evidence,
    allowed_actions, available_transitions, can_comment, can_post_internal,
    can_resolve, can_transition, dispute_type_for_status, has_signature,
    missing_evidence, next_dispute_status, next_status, photo_type_for,
    suggest_liability
)
from app.db.schema import (
    DisputeStatus, DisputeType, Liability, PhotoType, ScanAction, UnitStatus, UserRole
)

SIGNATURE_URL = "data:image/png;base64,iVBORw0KGgo="


@pytest.mark.parametrize("status, action, expected", [
    (UnitStatus.CREATED, ScanAction.PICKUP, UnitStatus.PICKED_UP),
    (UnitStatus.PICKED_UP, ScanAction.INBOUND, UnitStatus.IN_WAREHOUSE),
    (UnitStatus.IN_WAREHOUSE, ScanAction.OUTBOUND, UnitStatus.OUT_WAREHOUSE),
    (UnitStatus.PICKED_UP, ScanAction.IN_TRANSIT, UnitStatus.IN_TRANSIT),
    (UnitStatus.OUT_WAREHOUSE, ScanAction.IN_TRANSIT, UnitStatus.IN_TRANSIT),
    (UnitStatus.IN_TRANSIT, ScanAction.DELIVERED, UnitStatus.DELIVERED),
])
def test_legal_transitions(status, action, expected):
    assert next_status(status, action) == expected


@pytest.mark.parametrize("status, action", [
    (UnitStatus.CREATED, ScanAction.INBOUND),
    (UnitStatus.CREATED, ScanAction.DELIVERED),
    (UnitStatus.PICKED_UP, ScanAction.OUTBOUND),
    (UnitStatus.IN_WAREHOUSE, ScanAction.IN_TRANSIT),
    (UnitStatus.IN_TRANSIT, ScanAction.PICKUP),
    (UnitStatus.DELIVERED, ScanAction.DELIVERED),
])
def test_illegal_transitions(status, action):
    assert next_status(status, action) is None


def test_damage_report_keeps_status_until_delivery():
    assert next_status(UnitStatus.IN_TRANSIT, ScanAction.DAMAGE) == UnitStatus.IN_TRANSIT
    assert next_status(UnitStatus.DELIVERED, ScanAction.DAMAGE) is None


def test_allowed_actions_depend_on_role():
    assert allowed_actions(UnitStatus.CREATED, UserRole.DRIVER) == [ScanAction.PICKUP, ScanAction.DAMAGE]
    assert allowed_actions(UnitStatus.PICKED_UP, UserRole.WAREHOUSE) == [ScanAction.INBOUND, ScanAction.DAMAGE]
    assert allowed_actions(UnitStatus.IN_TRANSIT, UserRole.SHIPPER) == []
    assert allowed_actions(UnitStatus.DELIVERED, UserRole.ADMIN) == []


def test_photo_type_follows_action():
    assert photo_type_for(ScanAction.PICKUP) == PhotoType.ORIGIN
    assert photo_type_for(ScanAction.PICKUP, has_damage=True) == PhotoType.DAMAGE
    assert photo_type_for(ScanAction.INBOUND) == PhotoType.WAREHOUSE_IN
    assert photo_type_for(ScanAction.DELIVERED) == PhotoType.DELIVERY


def test_delivery_needs_recipient_signature_and_photo():
    assert missing_evidence(ScanAction.DELIVERED, Evidence()) == [RECIPIENT_NAME, SIGNATURE, PHOTO]

    evidence = Evidence(recipient_name="  ", signature=SIGNATURE_URL, photo_count=1)
    assert missing_evidence(ScanAction.DELIVERED, evidence) == [RECIPIENT_NAME]

    evidence = Evidence(recipient_name="Arben", signature="data:image/png;base64,", photo_count=1)
    assert missing_evidence(ScanAction.DELIVERED, evidence) == [SIGNATURE]

    evidence = Evidence(recipient_name="Arben", signature=SIGNATURE_URL, photo_count=1)
    assert missing_evidence(ScanAction.DELIVERED, evidence) == []


def test_signature_hint_text():
    assert SIGNATURE.hint == "Merr firmën e marrësit."


def test_pickup_with_damage_needs_description():
    evidence = Evidence(quantity_confirmed=3, has_damage=True, damage_description="   ", photo_count=1)
    assert missing_evidence(ScanAction.PICKUP, evidence) == [DAMAGE_DESCRIPTION]

    evidence.damage_description = "Crushed corner"
    assert missing_evidence(ScanAction.PICKUP, evidence) == []


def test_pickup_without_damage_only_needs_quantity():
    assert missing_evidence(ScanAction.PICKUP, Evidence()) == [QUANTITY]
    assert missing_evidence(ScanAction.PICKUP, Evidence(quantity_confirmed=1)) == []


def test_warehouse_scans_need_a_photo():
    assert missing_evidence(ScanAction.INBOUND, Evidence()) == [PHOTO]
    assert missing_evidence(ScanAction.OUTBOUND, Evidence(photo_count=2)) == []
    assert missing_evidence(ScanAction.IN_TRANSIT, Evidence()) == []


def test_has_signature():
    assert not has_signature(None)
    assert not has_signature("")
    assert not has_signature("data:image/png;base64,")
    assert has_signature(SIGNATURE_URL)


def test_dispute_type_by_custody():
    assert dispute_type_for_status(UnitStatus.CREATED) == DisputeType.DAMAGE_AT_PICKUP
    assert dispute_type_for_status(UnitStatus.IN_WAREHOUSE) == DisputeType.DAMAGE_AT_WAREHOUSE
    assert dispute_type_for_status(UnitStatus.IN_TRANSIT) == DisputeType.DAMAGE_IN_TRANSIT


def test_dispute_flow_is_forward_only():
    assert next_dispute_status(DisputeStatus.OPEN) == DisputeStatus.UNDER_REVIEW
    assert next_dispute_status(DisputeStatus.RESOLVED) is None

    assert can_transition(DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW, UserRole.ADMIN)
    assert not can_transition(DisputeStatus.OPEN, DisputeStatus.EVIDENCE_COMPLETE, UserRole.ADMIN)
    assert not can_transition(DisputeStatus.UNDER_REVIEW, DisputeStatus.OPEN, UserRole.ADMIN)
    assert not can_transition(DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW, UserRole.SHIPPER)

    # Resolution has its own operation
    assert available_transitions(DisputeStatus.EVIDENCE_COMPLETE, UserRole.ADMIN) == []
    assert can_resolve(DisputeStatus.EVIDENCE_COMPLETE, UserRole.ADMIN)
    assert not can_resolve(DisputeStatus.UNDER_REVIEW, UserRole.ADMIN)


@pytest.mark.parametrize("status, expected", [
    (DisputeStatus.OPEN, True),
    (DisputeStatus.UNDER_REVIEW, True),
    (DisputeStatus.EVIDENCE_COMPLETE, False),
    (DisputeStatus.RESOLVED, False),
])
def test_comments_close_with_evidence(status, expected):
    assert can_comment(status) is expected


def test_only_admins_post_internal_notes():
    assert can_post_internal(UserRole.ADMIN)
    assert not can_post_internal(UserRole.CARRIER)


def _log(action, previous, new, has_damage=False, minutes=0):
    return SimpleNamespace(
        action=action, previous_status=previous, new_status=new, has_damage=has_damage,
        scanned_at=datetime(2026, 5, 1, 8, 0) + timedelta(minutes=minutes))


def test_liability_follows_first_damaged_checkpoint():
    logs = [
        _log(ScanAction.PICKUP, UnitStatus.CREATED, UnitStatus.PICKED_UP, minutes=0),
        _log(ScanAction.INBOUND, UnitStatus.PICKED_UP, UnitStatus.IN_WAREHOUSE, has_damage=True, minutes=60),
        _log(ScanAction.DELIVERED, UnitStatus.IN_TRANSIT, UnitStatus.DELIVERED, has_damage=True, minutes=300),
    ]
    liability, score, reason = suggest_liability(
        DisputeType.DAMAGE_AT_WAREHOUSE, logs, UnitStatus.DELIVERED)
    assert liability == Liability.CARRIER
    assert 0 < score <= 1
    assert "inbound" in reason


def test_liability_for_damage_at_pickup_is_shipper():
    logs = [_log(ScanAction.PICKUP, UnitStatus.CREATED, UnitStatus.PICKED_UP, has_damage=True)]
    liability, _, _ = suggest_liability(DisputeType.DAMAGE_AT_PICKUP, logs, UnitStatus.PICKED_UP)
    assert liability == Liability.SHIPPER


def test_liability_without_damage_scans():
    liability, score, _ = suggest_liability(DisputeType.CLIENT_REPORT, [], UnitStatus.DELIVERED)
    assert liability == Liability.CLIENT
    assert score == 0.5

    liability, _, _ = suggest_liability(DisputeType.DAMAGE_IN_TRANSIT, [], UnitStatus.IN_TRANSIT)
    assert liability == Liability.CARRIER
