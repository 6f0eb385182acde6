import os
import shutil
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest

_TMP = Path(tempfile.mkdtemp(prefix="vectornode-tests-"))

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["STATIC_DIR"] = str(_TMP / "static")
os.environ["LOG_FILE"] = str(_TMP / "logs" / "test.log")

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

from app.db import schema  # noqa: E402,F401
from app.db.core import engine  # noqa: E402
from app.db.schema import User, UserRole, UserStatus  # noqa: E402
from app.main import app  # noqa: E402
from app.services.password import get_password_hash  # noqa: E402

PASSWORD = "secret-password"

# 1x1 transparent PNG
PNG = (
    "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42"
    "mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(_TMP, ignore_errors=True)


@pytest.fixture
def client():
    SQLModel.metadata.create_all(engine)
    with TestClient(app) as test_client:
        yield test_client
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(client):
    with Session(engine) as db:
        yield db


def login(client, email, password=PASSWORD):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def register(client, role, email, **extra):
    payload = {
        "first_name": role.value.title(),
        "last_name": "Test",
        "email": email,
        "password": PASSWORD,
        "role": role.value,
        **extra,
    }
    response = client.post("/api/auth/register", json=payload)
    assert response.status_code == 201, response.text
    return login(client, email)


def create_admin(session, email="admin@vectornode.al"):
    session.add(User(
        email=email,
        hashed_password=get_password_hash(PASSWORD),
        first_name="Ada",
        last_name="Admin",
        role=UserRole.ADMIN,
        status=UserStatus.ACTIVE
    ))
    session.commit()


def shipment_payload(quantity=2, **overrides):
    payload = {
        "cargo_description": "Pallets of olive oil",
        "pickup_address": "Rruga e Durresit 12",
        "pickup_city": "Tirana",
        "pickup_country": "AL",
        "delivery_address": "Bulevardi Nene Tereza 3",
        "delivery_city": "Prishtina",
        "delivery_country": "XK",
        "weight": 1200,
        "quantity": quantity,
        "budget": 900,
    }
    payload.update(overrides)
    return payload


def bid_payload(shipment_id, price=750):
    now = datetime.utcnow()
    return {
        "shipment_id": shipment_id,
        "total_price": price,
        "vehicle_type": "TRUCK_40T",
        "estimated_pickup": (now + timedelta(days=1)).isoformat(),
        "estimated_delivery": (now + timedelta(days=2)).isoformat(),
    }


class World(SimpleNamespace):
    """Accounts plus one assigned shipment, with helpers to drive its units."""

    def upload(self, token, photo_type, headers=None, image=PNG):
        response = self.client.post("/api/qr/photo", headers=headers or self.driver, json={
            "token": token, "type": photo_type, "image_data": image})
        assert response.status_code == 201, response.text
        return response.json()

    def scan(self, token, action, headers=None, **fields):
        return self.client.post("/api/qr/scan", headers=headers or self.driver, json={
            "token": token, "action": action, **fields})

    def pickup(self, token, **fields):
        fields.setdefault("quantity_confirmed", 1)
        response = self.scan(token, "PICKUP", **fields)
        assert response.status_code == 201, response.text
        return response.json()["new_token"]

    def through_warehouse(self, token):
        self.upload(token, "WAREHOUSE_IN", headers=self.warehouse)
        response = self.scan(token, "INBOUND", headers=self.warehouse)
        assert response.status_code == 201, response.text
        token = response.json()["new_token"]

        self.upload(token, "WAREHOUSE_OUT", headers=self.warehouse)
        response = self.scan(token, "OUTBOUND", headers=self.warehouse)
        assert response.status_code == 201, response.text
        return response.json()["new_token"]

    def depart(self, token):
        response = self.scan(token, "IN_TRANSIT", vehicle_plate="AA123BB")
        assert response.status_code == 201, response.text
        return response.json()["new_token"]

    def deliver(self, token, recipient="Arben Krasniqi"):
        self.upload(token, "DELIVERY")
        response = self.client.post("/api/qr/signature", headers=self.driver, json={
            "token": token, "recipient_name": recipient, "signature_image": PNG})
        assert response.status_code == 201, response.text
        return response.json()["new_token"]

    def to_in_transit(self, token):
        return self.depart(self.pickup(token))

    def delivered_unit(self, index=0):
        """Runs unit `index` through every checkpoint; returns its last token."""
        return self.deliver(self.to_in_transit(self.tokens[index]))


@pytest.fixture
def world(client, session):
    shipper = register(client, UserRole.SHIPPER, "shipper@vectornode.al")
    carrier = register(client, UserRole.CARRIER, "carrier@vectornode.al",
                       company_name="Trans Alb Shpk")
    other_carrier = register(client, UserRole.CARRIER, "rival@vectornode.al",
                             company_name="Rival Logistics")
    warehouse = register(client, UserRole.WAREHOUSE, "warehouse@vectornode.al")
    create_admin(session)
    admin = login(client, "admin@vectornode.al")

    response = client.post("/api/carriers/drivers", headers=carrier, json={
        "email": "driver@vectornode.al",
        "password": PASSWORD,
        "first_name": "Dren",
        "last_name": "Driver",
        "license_number": "AL-DRV-001",
    })
    assert response.status_code == 201, response.text
    driver = login(client, "driver@vectornode.al")

    response = client.post("/api/warehouses", headers=warehouse, json={
        "name": "Durres Port Hub", "address": "Port Zone 1", "city": "Durres", "country": "AL"})
    assert response.status_code == 201, response.text
    warehouse_id = response.json()["id"]

    response = client.post("/api/shipments", headers=shipper, json=shipment_payload())
    assert response.status_code == 201, response.text
    shipment = response.json()

    response = client.post("/api/bids", headers=carrier, json=bid_payload(shipment["id"]))
    assert response.status_code == 201, response.text
    response = client.post(f"/api/bids/{response.json()['id']}/select", headers=shipper)
    assert response.status_code == 200, response.text

    return World(
        client=client,
        session=session,
        shipper=shipper,
        carrier=carrier,
        other_carrier=other_carrier,
        driver=driver,
        warehouse=warehouse,
        admin=admin,
        warehouse_id=warehouse_id,
        shipment=shipment,
        units=shipment["units"],
        tokens=[unit["qr_token"] for unit in shipment["units"]],
    )
