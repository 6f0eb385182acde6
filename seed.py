from datetime import datetime, timedelta

from loguru import logger
from sqlmodel import Session, select

from app.core.plans import TRIAL_DAYS
from app.db.core import engine, init_db
from app.db.schema import (
    Bid, BidStatus, CarrierProfile, CarrierVerification, Driver, Shipment, ShipmentStatus,
    SubscriptionStatus, SubscriptionTier, User, UserRole, UserStatus,
    Vehicle, VerificationStatus, VerificationType, Warehouse
)
from app.models.shipment import ShipmentCreate
from app.services.password import get_password_hash
from app.services.shipment import ShipmentService


DEMO_PASSWORD = "vectornode123"

# 1. Accounts, one per role
DEMO_USERS = [
    {"email": "admin@vectornode.al", "first_name": "Admin", "last_name": "VectorNode", "role": UserRole.ADMIN},
    {"email": "shipper@vectornode.al", "first_name": "Elira", "last_name": "Hoxha", "role": UserRole.SHIPPER},
    {"email": "carrier@vectornode.al", "first_name": "Besnik", "last_name": "Gashi", "role": UserRole.CARRIER},
    {"email": "driver@vectornode.al", "first_name": "Dritan", "last_name": "Leka", "role": UserRole.DRIVER},
    {"email": "warehouse@vectornode.al", "first_name": "Mimoza", "last_name": "Berisha", "role": UserRole.WAREHOUSE},
]

DEMO_CARRIER = {
    "company_name": "Trans Alb Shpk",
    "slug": "trans-alb-shpk",
    "country": "AL",
    "city": "Tirana",
    "address": "Rruga e Kavajes 120",
    "phone": "+355 69 000 0000",
}

DEMO_VEHICLE = {"vehicle_type": "TRUCK_40T", "license_plate": "AA123BB", "max_weight": 24000, "max_volume": 90}

DEMO_WAREHOUSE = {"name": "Durres Port Hub", "address": "Zona e Portit 1", "city": "Durres", "country": "AL"}

DEMO_SHIPMENT = ShipmentCreate(
    cargo_description="Olive oil, 12 pallets",
    pickup_address="Rruga e Durresit 12",
    pickup_city="Tirana",
    pickup_country="AL",
    delivery_address="Bulevardi Nene Tereza 3",
    delivery_city="Prishtina",
    delivery_country="XK",
    weight=9600,
    quantity=3,
    budget=850,
)


def seed_users(session: Session) -> dict[UserRole, User]:
    """Creates the demo accounts if they don't exist. Returns a map of role -> User."""
    logger.info("--- Seeding Users ---")
    users = {}

    for data in DEMO_USERS:
        user = session.exec(select(User).where(User.email == data["email"])).first()
        if not user:
            user = User(
                hashed_password=get_password_hash(DEMO_PASSWORD),
                status=UserStatus.ACTIVE,
                **data
            )
            session.add(user)
            session.flush()
            logger.info(f"Created User: {user.email} ({user.role.value})")
        else:
            logger.info(f"Existing User: {user.email}")
        users[user.role] = user

    return users


def seed_carrier(session: Session, users: dict[UserRole, User]) -> CarrierProfile:
    """Carrier company with one vehicle and one driver."""
    logger.info("--- Seeding Carrier ---")

    carrier_user = users[UserRole.CARRIER]
    profile = session.exec(
        select(CarrierProfile).where(CarrierProfile.user_id == carrier_user.id)).first()
    if not profile:
        profile = CarrierProfile(
            user_id=carrier_user.id,
            subscription_tier=SubscriptionTier.FREE_TRIAL,
            subscription_status=SubscriptionStatus.TRIAL,
            trial_ends_at=datetime.utcnow() + timedelta(days=TRIAL_DAYS),
            verified=True,
            **DEMO_CARRIER
        )
        session.add(profile)
        session.flush()
        logger.info(f"Created Carrier: {profile.company_name}")

    vehicle = session.exec(
        select(Vehicle).where(Vehicle.license_plate == DEMO_VEHICLE["license_plate"])).first()
    if not vehicle:
        session.add(Vehicle(carrier_id=profile.id, **DEMO_VEHICLE))
        profile.fleet_size = 1
        profile.vehicle_types = [DEMO_VEHICLE["vehicle_type"]]
        session.add(profile)
        logger.info(f"Created Vehicle: {DEMO_VEHICLE['license_plate']}")

    driver_user = users[UserRole.DRIVER]
    driver = session.exec(select(Driver).where(Driver.user_id == driver_user.id)).first()
    if not driver:
        session.add(Driver(carrier_id=profile.id, user_id=driver_user.id, license_number="AL-C-000123"))
        logger.info(f"Linked Driver: {driver_user.email}")

    # The verified badge needs every document approved
    existing = {
        v.type for v in session.exec(
            select(CarrierVerification).where(CarrierVerification.carrier_id == profile.id)).all()
    }
    for verification_type in VerificationType:
        if verification_type not in existing:
            session.add(CarrierVerification(
                carrier_id=profile.id,
                type=verification_type,
                status=VerificationStatus.APPROVED,
                document_url=f"https://docs.vectornode.al/demo/{verification_type.value.lower()}.pdf",
                reviewed_by_id=users[UserRole.ADMIN].id,
                reviewed_at=datetime.utcnow()
            ))
            logger.info(f"Approved Verification: {verification_type.value}")

    session.flush()
    return profile


def seed_warehouse(session: Session, users: dict[UserRole, User]) -> Warehouse:
    logger.info("--- Seeding Warehouse ---")

    owner = users[UserRole.WAREHOUSE]
    warehouse = session.exec(
        select(Warehouse).where(Warehouse.owner_id == owner.id, Warehouse.name == DEMO_WAREHOUSE["name"])
    ).first()
    if not warehouse:
        warehouse = Warehouse(owner_id=owner.id, **DEMO_WAREHOUSE)
        session.add(warehouse)
        session.flush()
        logger.info(f"Created Warehouse: {warehouse.name}")

    return warehouse


def seed_shipment(session: Session, users: dict[UserRole, User], carrier: CarrierProfile):
    """A demo shipment already assigned to the demo carrier, ready for pickup."""
    logger.info("--- Seeding Demo Shipment ---")

    shipper = users[UserRole.SHIPPER]
    existing = session.exec(
        select(Shipment).where(
            Shipment.shipper_id == shipper.id,
            Shipment.cargo_description == DEMO_SHIPMENT.cargo_description
        )
    ).first()
    if existing:
        logger.info(f"Existing Shipment: {existing.tracking_number}")
        return

    # The service commits on its own, with units and QR labels
    detail = ShipmentService(session).create_shipment(shipper, DEMO_SHIPMENT)
    shipment = session.get(Shipment, detail.id)

    now = datetime.utcnow()
    bid = Bid(
        shipment_id=shipment.id,
        carrier_id=carrier.id,
        total_price=780,
        vehicle_type=DEMO_VEHICLE["vehicle_type"],
        estimated_pickup=now + timedelta(days=1),
        estimated_delivery=now + timedelta(days=2),
        status=BidStatus.ACCEPTED
    )
    session.add(bid)
    session.flush()

    shipment.status = ShipmentStatus.ASSIGNED
    shipment.carrier_id = carrier.id
    shipment.selected_bid_id = bid.id
    session.add(shipment)

    logger.info(f"Created Shipment: {shipment.tracking_number} with {len(detail.units)} units")
    for unit in detail.units:
        logger.info(f"  Unit {unit.unit_number}/{unit.total_units}: {unit.qr_code_url}")


def main():
    # Local databases only; production schemas come from Alembic
    init_db()

    with Session(engine) as session:
        try:
            # 1. Accounts
            users = seed_users(session)

            # 2. Carrier, vehicle and driver
            carrier = seed_carrier(session, users)

            # 3. Warehouse
            seed_warehouse(session, users)
            session.commit()

            # 4. Demo shipment
            seed_shipment(session, users, carrier)

            session.commit()
            logger.info("Database seeding completed successfully.")
            logger.info(f"All demo accounts use the password '{DEMO_PASSWORD}'.")

        except Exception as e:
            session.rollback()
            logger.error(f"Seeding failed: {e}")
            raise e


if __name__ == "__main__":
    main()
