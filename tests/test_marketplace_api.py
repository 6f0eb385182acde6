from datetime import datetime, timedelta

from sqlmodel import select

from app.db.schema import AuditLog, CarrierVerification, UserRole, VerificationType
from conftest import PASSWORD, bid_payload, login, register, shipment_payload


def test_health(client):
    assert client.get("/api/health").json()["status"] == "ok"
    assert client.get("/api/readiness").json()["database"] == "online"


def test_register_and_login(client):
    headers = register(client, UserRole.SHIPPER, "Mixed.Case@Example.com")

    me = client.get("/api/users/me", headers=headers).json()
    assert me["email"] == "mixed.case@example.com"
    assert me["role"] == "SHIPPER"

    response = client.post("/api/auth/register", json={
        "first_name": "Dup", "last_name": "User", "email": "mixed.case@example.com",
        "password": PASSWORD, "role": "SHIPPER"})
    assert response.status_code == 409

    response = client.post("/api/auth/login", json={"email": "mixed.case@example.com", "password": "wrong-password"})
    assert response.status_code == 401


def test_admin_and_driver_cannot_self_register(client):
    for role in ("ADMIN", "DRIVER"):
        response = client.post("/api/auth/register", json={
            "first_name": "No", "last_name": "Way", "email": f"{role.lower()}@example.com",
            "password": PASSWORD, "role": role})
        assert response.status_code == 403


def test_carrier_needs_company_name(client):
    response = client.post("/api/auth/register", json={
        "first_name": "Cara", "last_name": "Rier", "email": "c@example.com",
        "password": PASSWORD, "role": "CARRIER"})
    assert response.status_code == 422


def test_refresh_token(client):
    register(client, UserRole.SHIPPER, "refresh@example.com")
    tokens = client.post("/api/auth/login", json={"email": "refresh@example.com", "password": PASSWORD}).json()

    response = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == 200

    response = client.post("/api/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert response.status_code == 401


def test_change_password(client):
    headers = register(client, UserRole.SHIPPER, "pw@example.com")

    response = client.put("/api/users/change-password", headers=headers, json={
        "current_password": "not-the-password", "new_password": "another-password"})
    assert response.status_code == 400

    response = client.put("/api/users/change-password", headers=headers, json={
        "current_password": PASSWORD, "new_password": "another-password"})
    assert response.status_code == 200
    login(client, "pw@example.com", "another-password")


def test_shipment_units_get_labels(world):
    assert world.shipment["tracking_number"].startswith("VN-")
    assert len(world.units) == 2
    assert [u["unit_number"] for u in world.units] == [1, 2]
    assert all(u["qr_code_url"].endswith(".png") for u in world.units)
    assert len(set(world.tokens)) == 2


def test_shipment_visibility(world):
    response = world.client.get(f"/api/shipments/{world.shipment['id']}", headers=world.driver)
    assert response.status_code == 200
    assert response.json()["status"] == "ASSIGNED"

    response = world.client.get(f"/api/shipments/{world.shipment['id']}", headers=world.other_carrier)
    assert response.status_code == 403

    mine = world.client.get("/api/shipments/my", headers=world.carrier).json()
    assert [s["id"] for s in mine] == [world.shipment["id"]]


def test_bidding_on_open_shipment(world):
    shipment = world.client.post("/api/shipments", headers=world.shipper, json=shipment_payload(quantity=1)).json()

    open_ids = [s["id"] for s in world.client.get("/api/shipments/open", headers=world.carrier).json()]
    assert shipment["id"] in open_ids

    detail = world.client.get(f"/api/shipments/{shipment['id']}", headers=world.other_carrier).json()
    assert detail["units"] == []

    bid = world.client.post("/api/bids", headers=world.other_carrier, json=bid_payload(shipment["id"], 640))
    assert bid.status_code == 201
    assert bid.json()["carrier_name"] == "Rival Logistics"

    again = world.client.post("/api/bids", headers=world.other_carrier, json=bid_payload(shipment["id"]))
    assert again.status_code == 409
    assert again.json()["code"] == "BID_NOT_ALLOWED"

    competing = world.client.post("/api/bids", headers=world.carrier, json=bid_payload(shipment["id"], 700))
    assert competing.status_code == 201

    response = world.client.post(f"/api/bids/{bid.json()['id']}/select", headers=world.carrier)
    assert response.status_code == 403

    response = world.client.post(f"/api/bids/{bid.json()['id']}/select", headers=world.shipper)
    assert response.status_code == 200
    assert response.json()["status"] == "ACCEPTED"

    bids = world.client.get(f"/api/shipments/{shipment['id']}/bids", headers=world.shipper).json()
    assert {b["carrier_name"]: b["status"] for b in bids} == {
        "Rival Logistics": "ACCEPTED", "Trans Alb Shpk": "REJECTED"}


def test_bids_only_on_open_shipments(world):
    response = world.client.post("/api/bids", headers=world.other_carrier, json=bid_payload(world.shipment["id"]))

    assert response.status_code == 409
    assert response.json()["code"] == "BID_NOT_ALLOWED"


def test_withdraw_bid(world):
    shipment = world.client.post("/api/shipments", headers=world.shipper, json=shipment_payload(quantity=1)).json()
    bid = world.client.post("/api/bids", headers=world.carrier, json=bid_payload(shipment["id"])).json()

    assert world.client.delete(f"/api/bids/{bid['id']}", headers=world.carrier).status_code == 200
    assert world.client.delete(f"/api/bids/{bid['id']}", headers=world.carrier).status_code == 409


def test_cancel_shipment(world):
    shipment = world.client.post("/api/shipments", headers=world.shipper, json=shipment_payload(quantity=1)).json()
    world.client.post("/api/bids", headers=world.carrier, json=bid_payload(shipment["id"]))

    response = world.client.delete(f"/api/shipments/{shipment['id']}", headers=world.shipper)
    assert response.status_code == 200

    bids = world.client.get(f"/api/shipments/{shipment['id']}/bids", headers=world.shipper).json()
    assert [b["status"] for b in bids] == ["REJECTED"]

    entries = world.session.exec(select(AuditLog).where(AuditLog.entity_type == "Shipment")).all()
    assert any(entry.changes["status"]["new"] == "CANCELLED" for entry in entries)

    # Assigned shipments are past the point of cancelling
    response = world.client.delete(f"/api/shipments/{world.shipment['id']}", headers=world.shipper)
    assert response.status_code == 409

    # Scans on a cancelled shipment are refused
    token = shipment["units"][0]["qr_token"]
    actions = world.client.get(f"/api/qr/token/{token}/actions", headers=world.admin).json()
    assert actions["allowed_actions"] == []


def test_vehicle_limit_follows_plan(world):
    for plate in ("aa111aa", "BB222BB"):
        response = world.client.post("/api/carriers/vehicles", headers=world.carrier, json={
            "vehicle_type": "VAN", "license_plate": plate, "max_weight": 3500})
        assert response.status_code == 201
    assert response.json()["license_plate"] == "BB222BB"

    response = world.client.post("/api/carriers/vehicles", headers=world.carrier, json={
        "vehicle_type": "VAN", "license_plate": "CC333CC", "max_weight": 3500})
    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "PLAN_LIMIT_REACHED"
    assert body["max_vehicles"] == 2

    response = world.client.post("/api/carriers/vehicles", headers=world.other_carrier, json={
        "vehicle_type": "VAN", "license_plate": "AA111AA", "max_weight": 3500})
    assert response.status_code == 409

    profile = world.client.get("/api/carriers/profile", headers=world.carrier).json()
    assert profile["fleet_size"] == 2
    assert profile["vehicle_types"] == ["VAN"]


def test_subscription_plans(world):
    plans = world.client.get("/api/carriers/subscription/plans", headers=world.carrier).json()
    assert plans["current_tier"] == "FREE_TRIAL"
    assert len(plans["plans"]) == 5

    response = world.client.put("/api/carriers/subscription", headers=world.carrier, json={"tier": "SMALL_FLEET"})
    assert response.status_code == 200
    assert response.json()["subscription_status"] == "ACTIVE"

    response = world.client.put("/api/carriers/subscription", headers=world.carrier, json={"tier": "FREE_TRIAL"})
    assert response.status_code == 409


def test_carrier_directory(world):
    cards = world.client.get("/api/carriers", headers=world.shipper, params={"q": "trans"}).json()
    assert [c["slug"] for c in cards] == ["trans-alb-shpk"]

    card = world.client.get("/api/carriers/rival-logistics", headers=world.shipper).json()
    assert card["company_name"] == "Rival Logistics"


def test_carrier_routes_need_carrier_role(world):
    assert world.client.get("/api/carriers/profile", headers=world.shipper).status_code == 403


def test_driver_management(world):
    drivers = world.client.get("/api/carriers/drivers", headers=world.carrier).json()
    assert [d["email"] for d in drivers] == ["driver@vectornode.al"]

    response = world.client.put(
        f"/api/carriers/drivers/{drivers[0]['id']}/availability", headers=world.carrier,
        json={"available": False})
    assert response.status_code == 200
    assert response.json()["available"] is False

    response = world.client.delete(f"/api/carriers/drivers/{drivers[0]['id']}", headers=world.carrier)
    assert response.status_code == 200

    response = world.client.post("/api/auth/login", json={"email": "driver@vectornode.al", "password": PASSWORD})
    assert response.status_code == 403


def test_warehouses(world):
    mine = world.client.get("/api/warehouses", headers=world.warehouse).json()
    assert [w["id"] for w in mine] == [world.warehouse_id]

    response = world.client.put(f"/api/warehouses/{world.warehouse_id}", headers=world.warehouse,
                                json={"capacity_m2": 5000})
    assert response.json()["capacity_m2"] == 5000

    response = world.client.get(f"/api/warehouses/{world.warehouse_id}", headers=world.shipper)
    assert response.status_code == 403

    response = world.client.delete(f"/api/warehouses/{world.warehouse_id}", headers=world.warehouse)
    assert response.status_code == 200
    detail = world.client.get(f"/api/warehouses/{world.warehouse_id}", headers=world.warehouse).json()
    assert detail["is_active"] is False


def test_warehouse_dashboard(world):
    world.through_warehouse(world.pickup(world.tokens[0]))

    token = world.pickup(world.tokens[1])
    world.upload(token, "WAREHOUSE_IN", headers=world.warehouse)
    response = world.scan(token, "INBOUND", headers=world.warehouse)
    assert response.status_code == 201, response.text

    stats = world.client.get("/api/warehouses/my/stats", headers=world.warehouse).json()
    assert stats == {"today_inbound": 2, "today_outbound": 1, "current_inventory": 1, "total_processed": 2}

    history = world.client.get("/api/warehouses/my/history", headers=world.warehouse).json()["history"]
    assert [entry["action"] for entry in history] == ["INBOUND", "OUTBOUND", "INBOUND"]
    latest = history[0]
    assert latest["unit_number"] == 2
    assert latest["tracking_number"] == world.shipment["tracking_number"]
    assert latest["warehouse_name"] == "Durres Port Hub"
    assert latest["scanned_by"]

    response = world.client.get("/api/warehouses/my/history", headers=world.warehouse, params={"limit": 1})
    assert len(response.json()["history"]) == 1


def test_warehouse_dashboard_is_per_operator(world):
    world.through_warehouse(world.pickup(world.tokens[0]))
    depot = register(world.client, UserRole.WAREHOUSE, "depot@vectornode.al")

    stats = world.client.get("/api/warehouses/my/stats", headers=depot).json()
    assert stats == {"today_inbound": 0, "today_outbound": 0, "current_inventory": 0, "total_processed": 0}
    assert world.client.get("/api/warehouses/my/history", headers=depot).json() == {"history": []}

    assert world.client.get("/api/warehouses/my/stats", headers=world.shipper).status_code == 403


def test_verification_checklist_starts_missing(world):
    checklist = world.client.get("/api/carriers/verifications", headers=world.carrier).json()

    assert [item["type"] for item in checklist["verifications"]] == [
        "EMAIL_PHONE", "COMPANY_REG", "VAT_NIPT", "TRANSPORT_LICENSE", "INSURANCE", "BANK_ACCOUNT"]
    assert {item["status"] for item in checklist["verifications"]} == {"MISSING"}
    assert (checklist["approved"], checklist["total"], checklist["progress"]) == (0, 6, 0)
    assert checklist["verified"] is False


def test_verification_review_cycle(world):
    expires = (datetime.utcnow() + timedelta(days=365)).isoformat()
    response = world.client.post("/api/carriers/verifications", headers=world.carrier, json={
        "type": "INSURANCE", "document_url": "https://docs.transalb.al/insurance.pdf", "expires_at": expires})
    assert response.status_code == 201, response.text
    insurance = next(i for i in response.json()["verifications"] if i["type"] == "INSURANCE")
    assert insurance["status"] == "PENDING"

    pending = world.client.get("/api/carriers/verifications/pending", headers=world.admin).json()
    assert [item["id"] for item in pending] == [insurance["id"]]
    assert world.client.get("/api/carriers/verifications/pending", headers=world.carrier).status_code == 403

    review_url = f"/api/carriers/verifications/{insurance['id']}/review"
    response = world.client.put(review_url, headers=world.admin, json={"status": "REJECTED"})
    assert response.status_code == 422

    response = world.client.put(review_url, headers=world.admin, json={
        "status": "REJECTED", "rejection_reason": "Policy number is unreadable"})
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "REJECTED"

    response = world.client.put(review_url, headers=world.admin, json={"status": "APPROVED"})
    assert response.status_code == 409

    # Resubmitting sends the same record back to review
    response = world.client.post("/api/carriers/verifications", headers=world.carrier, json={
        "type": "INSURANCE", "document_url": "https://docs.transalb.al/insurance-v2.pdf"})
    insurance = next(i for i in response.json()["verifications"] if i["type"] == "INSURANCE")
    assert insurance["status"] == "PENDING"
    assert insurance["rejection_reason"] is None
    assert insurance["document_url"].endswith("insurance-v2.pdf")

    entries = world.session.exec(
        select(AuditLog).where(AuditLog.entity_type == "CarrierVerification")).all()
    assert len(entries) == 1


def test_verification_rejects_bad_documents(world):
    response = world.client.post("/api/carriers/verifications", headers=world.carrier, json={
        "type": "VAT_NIPT", "document_url": "   "})
    assert response.status_code == 422

    expired = (datetime.utcnow() - timedelta(days=1)).isoformat()
    response = world.client.post("/api/carriers/verifications", headers=world.carrier, json={
        "type": "INSURANCE", "document_url": "https://docs.transalb.al/old.pdf", "expires_at": expired})
    assert response.status_code == 409


def test_full_approval_grants_badge_until_expiry(world):
    for verification_type in VerificationType:
        response = world.client.post("/api/carriers/verifications", headers=world.carrier, json={
            "type": verification_type.value, "document_url": f"https://docs.transalb.al/{verification_type.value}.pdf"})
        assert response.status_code == 201, response.text

    for item in world.client.get("/api/carriers/verifications/pending", headers=world.admin).json():
        response = world.client.put(f"/api/carriers/verifications/{item['id']}/review",
                                    headers=world.admin, json={"status": "APPROVED"})
        assert response.status_code == 200, response.text

    checklist = world.client.get("/api/carriers/verifications", headers=world.carrier).json()
    assert (checklist["approved"], checklist["progress"], checklist["verified"]) == (6, 100, True)
    assert world.client.get("/api/carriers/profile", headers=world.carrier).json()["verified"] is True

    record = world.session.exec(
        select(CarrierVerification).where(CarrierVerification.type == VerificationType.INSURANCE)).one()
    record.expires_at = datetime.utcnow() - timedelta(hours=1)
    world.session.add(record)
    world.session.commit()

    checklist = world.client.get("/api/carriers/verifications", headers=world.carrier).json()
    insurance = next(i for i in checklist["verifications"] if i["type"] == "INSURANCE")
    assert insurance["status"] == "EXPIRED"
    assert (checklist["approved"], checklist["progress"], checklist["verified"]) == (5, 83, False)
    assert world.client.get("/api/carriers/profile", headers=world.carrier).json()["verified"] is False
