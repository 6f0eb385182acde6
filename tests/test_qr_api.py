import uuid
from datetime import datetime, timedelta

from sqlmodel import select

from app.db.schema import (
    CarrierProfile, ProofOfDelivery, ScanLog, ShipmentUnit, UsedQRToken
)
from conftest import PNG


def test_token_info_is_public(world):
    response = world.client.get(f"/api/qr/token/{world.tokens[0]}")

    assert response.status_code == 200
    body = response.json()
    assert body["unit"]["current_status"] == "CREATED"
    assert body["unit"]["total_units"] == 2
    assert body["shipment"]["tracking_number"] == world.shipment["tracking_number"]
    assert body["unit"]["scan_history"] == []
    assert "is_expired" not in body["unit"]


def test_unknown_token_is_invalid(world):
    response = world.client.get("/api/qr/token/not-a-real-token")

    assert response.status_code == 404
    assert response.json()["code"] == "INVALID_QR_TOKEN"


def test_allowed_actions_for_assigned_driver(world):
    response = world.client.get(f"/api/qr/token/{world.tokens[0]}/actions", headers=world.driver)

    assert response.status_code == 200
    assert response.json()["allowed_actions"] == ["PICKUP", "DAMAGE"]


def test_allowed_actions_exclude_other_carriers(world):
    response = world.client.get(
        f"/api/qr/token/{world.tokens[0]}/actions", headers=world.other_carrier)

    assert response.status_code == 200
    assert response.json()["allowed_actions"] == []


def test_pickup_rotates_token(world):
    old_token = world.tokens[0]
    response = world.scan(old_token, "PICKUP", quantity_confirmed=1)

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["unit_status"] == "PICKED_UP"
    assert body["new_token"] != old_token
    assert body["scan"]["previous_status"] == "CREATED"
    assert body["dispute_id"] is None

    stale = world.client.get(f"/api/qr/token/{old_token}")
    assert stale.status_code == 409
    assert stale.json()["code"] == "TOKEN_ALREADY_USED"

    assert world.session.get(UsedQRToken, old_token) is not None

    shipment = world.client.get(f"/api/shipments/{world.shipment['id']}", headers=world.shipper).json()
    assert shipment["status"] == "IN_TRANSIT"


def test_pickup_requires_quantity(world):
    response = world.scan(world.tokens[0], "PICKUP")

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "MISSING_EVIDENCE"
    assert body["missing"] == ["QUANTITY"]


def test_damaged_pickup_requires_description(world):
    world.upload(world.tokens[0], "DAMAGE")
    response = world.scan(world.tokens[0], "PICKUP", quantity_confirmed=1,
                          has_damage=True, damage_description="  ")

    assert response.status_code == 422
    assert response.json()["missing"] == ["DAMAGE_DESCRIPTION"]


def test_damaged_pickup_opens_dispute(world):
    world.upload(world.tokens[0], "DAMAGE")
    response = world.scan(world.tokens[0], "PICKUP", quantity_confirmed=1,
                          has_damage=True, damage_description="Torn shrink wrap")

    assert response.status_code == 201, response.text
    dispute_id = response.json()["dispute_id"]
    assert dispute_id

    dispute = world.client.get(f"/api/disputes/{dispute_id}", headers=world.admin).json()
    assert dispute["is_auto_created"] is True
    assert dispute["type"] == "DAMAGE_AT_PICKUP"
    assert dispute["suggested_liability"] == "SHIPPER"


def test_warehouse_scan_before_pickup(world):
    world.upload(world.tokens[0], "WAREHOUSE_IN", headers=world.warehouse)
    response = world.scan(world.tokens[0], "INBOUND", headers=world.warehouse)

    assert response.status_code == 409
    assert response.json()["code"] == "NOT_PICKED_UP"


def test_out_of_order_scan(world):
    response = world.scan(world.tokens[0], "DELIVERED", recipient_name="X", signature_image=PNG)

    assert response.status_code == 409
    assert response.json()["code"] == "INVALID_SEQUENCE"


def test_role_not_allowed(world):
    response = world.scan(world.tokens[0], "PICKUP", headers=world.shipper, quantity_confirmed=1)

    assert response.status_code == 403
    assert response.json()["code"] == "UNAUTHORIZED_ROLE"


def test_unassigned_carrier_cannot_scan(world):
    response = world.scan(world.tokens[0], "PICKUP", headers=world.other_carrier, quantity_confirmed=1)

    assert response.status_code == 403
    assert response.json()["code"] == "UNAUTHORIZED_ROLE"


def test_inbound_needs_fresh_photo(world):
    token = world.pickup(world.tokens[0])
    response = world.scan(token, "INBOUND", headers=world.warehouse)

    assert response.status_code == 422
    assert response.json()["missing"] == ["PHOTO"]


def test_damage_report_keeps_earlier_checkpoint_photos(world):
    token = world.pickup(world.tokens[0])
    world.upload(token, "WAREHOUSE_IN", headers=world.warehouse)
    response = world.scan(token, "INBOUND", headers=world.warehouse)
    assert response.status_code == 201, response.text
    token = response.json()["new_token"]

    world.upload(token, "WAREHOUSE_OUT", headers=world.warehouse)
    world.upload(token, "DAMAGE", headers=world.warehouse)
    response = world.scan(token, "DAMAGE", headers=world.warehouse,
                          damage_description="Wrapping torn on one side")
    assert response.status_code == 201, response.text
    token = response.json()["new_token"]

    response = world.scan(token, "OUTBOUND", headers=world.warehouse)

    assert response.status_code == 201, response.text
    assert response.json()["unit_status"] == "OUT_WAREHOUSE"


def test_warehouse_scans_record_warehouse(world):
    token = world.through_warehouse(world.pickup(world.tokens[0]))

    logs = world.session.exec(
        select(ScanLog).where(ScanLog.warehouse_id.is_not(None))
    ).all()
    assert len(logs) == 2
    assert {log.warehouse_name for log in logs} == {"Durres Port Hub"}

    info = world.client.get(f"/api/qr/token/{token}").json()
    assert info["unit"]["current_status"] == "OUT_WAREHOUSE"


def test_delivery_without_signature(world):
    token = world.to_in_transit(world.tokens[0])
    world.upload(token, "DELIVERY")

    response = world.scan(token, "DELIVERED", recipient_name="Arben Krasniqi")

    assert response.status_code == 422
    body = response.json()
    assert body["missing"] == ["SIGNATURE"]
    assert "Merr firmën e marrësit." in body["error"]


def test_full_delivery(world):
    first = world.delivered_unit(0)

    response = world.client.get(f"/api/qr/token/{first}")
    assert response.status_code == 410
    assert response.json()["code"] == "QR_EXPIRED"

    # A token rotated out before delivery also reports the unit as delivered
    response = world.client.get(f"/api/qr/token/{world.tokens[0]}")
    assert response.json()["code"] == "QR_EXPIRED"

    world.session.expire_all()
    unit = world.session.get(ShipmentUnit, uuid.UUID(world.units[0]["id"]))
    assert unit.delivered_at is not None
    pod = world.session.exec(select(ProofOfDelivery).where(ProofOfDelivery.unit_id == unit.id)).first()
    assert pod.recipient_name == "Arben Krasniqi"

    shipment = world.client.get(f"/api/shipments/{world.shipment['id']}", headers=world.shipper).json()
    assert shipment["status"] == "IN_TRANSIT"

    world.delivered_unit(1)
    shipment = world.client.get(f"/api/shipments/{world.shipment['id']}", headers=world.shipper).json()
    assert shipment["status"] == "DELIVERED"

    world.session.expire_all()
    carrier = world.session.exec(select(CarrierProfile).where(CarrierProfile.slug == "trans-alb-shpk")).one()
    assert carrier.total_deliveries == 1


def test_expired_token(world):
    unit = world.session.get(ShipmentUnit, uuid.UUID(world.units[0]["id"]))
    unit.qr_token_expires_at = datetime.utcnow() - timedelta(minutes=1)
    world.session.add(unit)
    world.session.commit()

    response = world.client.get(f"/api/qr/token/{world.tokens[0]}")
    assert response.status_code == 410
    assert response.json()["code"] == "TOKEN_EXPIRED"


def test_error_messages_follow_accept_language(world):
    response = world.client.get("/api/qr/token/nope", headers={"Accept-Language": "en-US,en;q=0.9"})
    assert response.json()["error"] == "QR code does not exist."

    response = world.client.get("/api/qr/token/nope")
    assert response.json()["error"] == "Kodi QR nuk ekziston."


def test_batch_photo_upload_reports_each_item(world):
    response = world.client.post("/api/qr/photos", headers=world.driver, json={
        "token": world.tokens[0],
        "type": "ORIGIN",
        "images": [PNG, "data:image/gif;base64,R0lGODlh", PNG],
    })

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["uploaded"] == 2
    assert body["failed"] == 1
    assert [r["ok"] for r in body["results"]] == [True, False, True]
    assert body["results"][1]["code"] == "VALIDATION_ERROR"


def test_shipper_may_only_upload_origin_or_damage(world):
    response = world.client.post("/api/qr/photo", headers=world.shipper, json={
        "token": world.tokens[0], "type": "DELIVERY", "image_data": PNG})
    assert response.status_code == 403

    world.upload(world.tokens[0], "ORIGIN", headers=world.shipper)
