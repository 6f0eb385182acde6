import uuid
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import BackgroundTasks, HTTPException, status
from loguru import logger
from sqlmodel import Session, select, func, col

from app.core.audit import _perform_audit_log
from app.core.errors import APIError, ErrorCode
from app.core.plans import PLANS, get_plan, monthly_total, required_plan
from app.db.schema import (
    AuditAction, CarrierProfile, CarrierVerification, Driver, SubscriptionStatus,
    SubscriptionTier, User, UserRole, UserStatus, Vehicle, VerificationStatus,
    VerificationType
)
from app.models.carrier import (
    CarrierProfileRead, CarrierProfileUpdate, CarrierPublic, DriverCreate,
    DriverRead, DriverUpdate, PlanRead, PlansResponse, VehicleCreate, VehicleUpdate,
    VerificationCreate, VerificationList, VerificationRead, VerificationReview
)
from .password import get_password_hash


class CarrierService:
    def __init__(self, session: Session):
        self.session = session

    def _get_profile(self, user: User) -> CarrierProfile:
        profile = self.session.exec(
            select(CarrierProfile).where(CarrierProfile.user_id == user.id)
        ).first()
        if not profile:
            raise HTTPException(status_code=404, detail="Carrier profile not found.")
        return profile

    def _sync_fleet(self, profile: CarrierProfile) -> None:
        """Keeps the denormalized fleet_size and vehicle_types in step with the vehicles."""
        vehicles = self.session.exec(
            select(Vehicle).where(Vehicle.carrier_id == profile.id)
        ).all()
        profile.fleet_size = len(vehicles)
        profile.vehicle_types = sorted({v.vehicle_type for v in vehicles})
        self.session.add(profile)

    # ==========================================================================
    # PROFILE
    # ==========================================================================

    def get_profile(self, user: User) -> CarrierProfileRead:
        return CarrierProfileRead.model_validate(self._get_profile(user))

    def update_profile(self, user: User, data: CarrierProfileUpdate) -> CarrierProfileRead:
        profile = self._get_profile(user)

        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(profile, key, value.upper() if key == "country" and value else value)

        self.session.add(profile)
        self.session.commit()
        self.session.refresh(profile)
        return CarrierProfileRead.model_validate(profile)

    def list_directory(
        self,
        search: Optional[str] = None,
        country: Optional[str] = None,
        verified_only: bool = False
    ) -> List[CarrierPublic]:
        statement = select(CarrierProfile)
        if search:
            statement = statement.where(col(CarrierProfile.company_name).ilike(f"%{search}%"))
        if country:
            statement = statement.where(CarrierProfile.country == country.upper())
        if verified_only:
            statement = statement.where(CarrierProfile.verified == True)  # noqa: E712

        statement = statement.order_by(
            col(CarrierProfile.rating).desc(), CarrierProfile.company_name)
        return [CarrierPublic.model_validate(p) for p in self.session.exec(statement).all()]

    def get_by_slug(self, slug: str) -> CarrierPublic:
        profile = self.session.exec(
            select(CarrierProfile).where(CarrierProfile.slug == slug)
        ).first()
        if not profile:
            raise HTTPException(status_code=404, detail="Carrier not found.")
        return CarrierPublic.model_validate(profile)

    # ==========================================================================
    # VEHICLES
    # ==========================================================================

    def _get_vehicle(self, profile: CarrierProfile, vehicle_id: uuid.UUID) -> Vehicle:
        vehicle = self.session.get(Vehicle, vehicle_id)
        if not vehicle or vehicle.carrier_id != profile.id:
            raise HTTPException(status_code=404, detail="Vehicle not found.")
        return vehicle

    def _check_plate(self, plate: str, exclude_id: Optional[uuid.UUID] = None) -> None:
        statement = select(Vehicle).where(Vehicle.license_plate == plate)
        if exclude_id:
            statement = statement.where(Vehicle.id != exclude_id)
        if self.session.exec(statement).first():
            raise ValueError(f"A vehicle with plate '{plate}' is already registered.")

    def list_vehicles(self, user: User) -> List[Vehicle]:
        profile = self._get_profile(user)
        return self.session.exec(
            select(Vehicle).where(Vehicle.carrier_id == profile.id).order_by(Vehicle.created_at)
        ).all()

    def add_vehicle(self, user: User, data: VehicleCreate) -> Vehicle:
        profile = self._get_profile(user)
        plan = get_plan(profile.subscription_tier)

        count = self.session.exec(
            select(func.count()).select_from(Vehicle).where(Vehicle.carrier_id == profile.id)
        ).one()
        if count >= plan.max_vehicles:
            logger.warning(f"Carrier {profile.id} hit the {plan.name} vehicle limit ({plan.max_vehicles})")
            raise APIError(
                ErrorCode.PLAN_LIMIT_REACHED,
                status.HTTP_403_FORBIDDEN,
                extra={"max_vehicles": plan.max_vehicles, "tier": plan.tier.value}
            )

        plate = data.license_plate.strip().upper()
        self._check_plate(plate)

        vehicle = Vehicle(
            carrier_id=profile.id,
            vehicle_type=data.vehicle_type,
            license_plate=plate,
            max_weight=data.max_weight,
            max_volume=data.max_volume
        )
        self.session.add(vehicle)
        self.session.flush()
        self._sync_fleet(profile)
        self.session.commit()
        self.session.refresh(vehicle)

        logger.info(f"Vehicle {plate} added to carrier {profile.id}")
        return vehicle

    def update_vehicle(self, user: User, vehicle_id: uuid.UUID, data: VehicleUpdate) -> Vehicle:
        profile = self._get_profile(user)
        vehicle = self._get_vehicle(profile, vehicle_id)

        updates = data.model_dump(exclude_unset=True)
        if updates.get("license_plate"):
            updates["license_plate"] = updates["license_plate"].strip().upper()
            self._check_plate(updates["license_plate"], exclude_id=vehicle.id)

        for key, value in updates.items():
            setattr(vehicle, key, value)

        self.session.add(vehicle)
        self.session.flush()
        self._sync_fleet(profile)
        self.session.commit()
        self.session.refresh(vehicle)
        return vehicle

    def set_vehicle_availability(self, user: User, vehicle_id: uuid.UUID, available: bool) -> Vehicle:
        vehicle = self._get_vehicle(self._get_profile(user), vehicle_id)
        vehicle.available = available
        self.session.add(vehicle)
        self.session.commit()
        self.session.refresh(vehicle)
        return vehicle

    def delete_vehicle(self, user: User, vehicle_id: uuid.UUID):
        profile = self._get_profile(user)
        vehicle = self._get_vehicle(profile, vehicle_id)

        self.session.delete(vehicle)
        self.session.flush()
        self._sync_fleet(profile)
        self.session.commit()
        return {"message": "Vehicle deleted successfully."}

    # ==========================================================================
    # DRIVERS
    # ==========================================================================

    def _to_driver_read(self, driver: Driver) -> DriverRead:
        return DriverRead(
            id=driver.id,
            carrier_id=driver.carrier_id,
            user_id=driver.user_id,
            email=driver.user.email,
            first_name=driver.user.first_name,
            last_name=driver.user.last_name,
            phone=driver.user.phone,
            license_number=driver.license_number,
            license_expiry=driver.license_expiry,
            available=driver.available
        )

    def _get_driver(self, profile: CarrierProfile, driver_id: uuid.UUID) -> Driver:
        driver = self.session.get(Driver, driver_id)
        if not driver or driver.carrier_id != profile.id:
            raise HTTPException(status_code=404, detail="Driver not found.")
        return driver

    def list_drivers(self, user: User) -> List[DriverRead]:
        profile = self._get_profile(user)
        drivers = self.session.exec(
            select(Driver).where(Driver.carrier_id == profile.id).order_by(Driver.created_at)
        ).all()
        return [self._to_driver_read(d) for d in drivers]

    def add_driver(self, user: User, data: DriverCreate) -> DriverRead:
        """Creates the driver's login (role DRIVER) and links it to the carrier."""
        profile = self._get_profile(user)

        if self.session.exec(select(User).where(User.email == data.email)).first():
            raise ValueError("A user with this email already exists.")

        try:
            driver_user = User(
                email=data.email,
                hashed_password=get_password_hash(data.password),
                first_name=data.first_name,
                last_name=data.last_name,
                phone=data.phone,
                role=UserRole.DRIVER,
                status=UserStatus.ACTIVE
            )
            self.session.add(driver_user)
            self.session.flush()

            driver = Driver(
                carrier_id=profile.id,
                user_id=driver_user.id,
                license_number=data.license_number,
                license_expiry=data.license_expiry
            )
            self.session.add(driver)
            self.session.commit()
            self.session.refresh(driver)
        except Exception as e:
            self.session.rollback()
            logger.error(f"Driver creation failed: {e}")
            raise

        logger.info(f"Driver {driver_user.email} added to carrier {profile.id}")
        return self._to_driver_read(driver)

    def update_driver(self, user: User, driver_id: uuid.UUID, data: DriverUpdate) -> DriverRead:
        driver = self._get_driver(self._get_profile(user), driver_id)
        updates = data.model_dump(exclude_unset=True)

        for key in ("first_name", "last_name", "phone"):
            if key in updates:
                setattr(driver.user, key, updates.pop(key))
        for key, value in updates.items():
            setattr(driver, key, value)

        self.session.add(driver.user)
        self.session.add(driver)
        self.session.commit()
        self.session.refresh(driver)
        return self._to_driver_read(driver)

    def set_driver_availability(self, user: User, driver_id: uuid.UUID, available: bool) -> DriverRead:
        driver = self._get_driver(self._get_profile(user), driver_id)
        driver.available = available
        self.session.add(driver)
        self.session.commit()
        self.session.refresh(driver)
        return self._to_driver_read(driver)

    def delete_driver(self, user: User, driver_id: uuid.UUID):
        """Removes the driver record and suspends the login. Past scans keep their author."""
        driver = self._get_driver(self._get_profile(user), driver_id)
        driver_user = driver.user
        driver_user.status = UserStatus.SUSPENDED

        self.session.add(driver_user)
        self.session.delete(driver)
        self.session.commit()
        return {"message": "Driver removed successfully."}

    # ==========================================================================
    # SUBSCRIPTION
    # ==========================================================================

    def get_plans(self, user: User) -> PlansResponse:
        profile = self._get_profile(user)
        recommended = required_plan(profile.fleet_size) or SubscriptionTier.FLEX

        return PlansResponse(
            plans=[PlanRead(**asdict(plan)) for plan in PLANS.values()],
            current_tier=profile.subscription_tier,
            fleet_size=profile.fleet_size,
            recommended_tier=recommended,
            monthly_total=monthly_total(profile.subscription_tier, profile.fleet_size)
        )

    def change_subscription(self, user: User, tier: SubscriptionTier) -> CarrierProfileRead:
        profile = self._get_profile(user)
        plan = get_plan(tier)

        if profile.fleet_size > plan.max_vehicles:
            raise APIError(
                ErrorCode.PLAN_LIMIT_REACHED,
                status.HTTP_409_CONFLICT,
                detail=f"The {plan.name} plan covers at most {plan.max_vehicles} vehicles."
            )

        if tier == SubscriptionTier.FREE_TRIAL:
            if profile.subscription_status != SubscriptionStatus.TRIAL:
                raise ValueError("The free trial cannot be restarted.")
        else:
            profile.subscription_status = SubscriptionStatus.ACTIVE
            profile.subscription_ends_at = datetime.utcnow() + timedelta(days=30)

        old_tier = profile.subscription_tier
        profile.subscription_tier = tier
        self.session.add(profile)
        self.session.commit()
        self.session.refresh(profile)

        logger.info(f"Carrier {profile.id} subscription {old_tier.value} -> {tier.value}")
        return CarrierProfileRead.model_validate(profile)

    # ==========================================================================
    # VERIFICATION
    # ==========================================================================

    @staticmethod
    def _effective_status(record: CarrierVerification, now: datetime) -> VerificationStatus:
        if record.status == VerificationStatus.APPROVED and record.expires_at and record.expires_at < now:
            return VerificationStatus.EXPIRED
        return record.status

    def _checklist(self, profile: CarrierProfile) -> VerificationList:
        records = {
            record.type: record for record in self.session.exec(
                select(CarrierVerification).where(CarrierVerification.carrier_id == profile.id)
            ).all()
        }
        now = datetime.utcnow()

        items = []
        for verification_type in VerificationType:
            record = records.get(verification_type)
            if record is None:
                items.append(VerificationRead(type=verification_type, status=VerificationStatus.MISSING))
                continue
            items.append(VerificationRead(
                id=record.id,
                type=record.type,
                status=self._effective_status(record, now),
                document_url=record.document_url,
                expires_at=record.expires_at,
                rejection_reason=record.rejection_reason,
                reviewed_at=record.reviewed_at
            ))

        approved = sum(1 for item in items if item.status == VerificationStatus.APPROVED)
        total = len(items)
        return VerificationList(
            verifications=items,
            approved=approved,
            total=total,
            progress=approved * 100 // total,
            verified=approved == total
        )

    def _sync_verified(self, profile: CarrierProfile, checklist: VerificationList) -> None:
        if profile.verified != checklist.verified:
            profile.verified = checklist.verified
            self.session.add(profile)
            self.session.commit()
            logger.info(f"Carrier {profile.id} verified badge set to {checklist.verified}")

    def list_verifications(self, user: User) -> VerificationList:
        """Every document type in display order; the badge follows the checklist, including expiries."""
        profile = self._get_profile(user)
        checklist = self._checklist(profile)
        self._sync_verified(profile, checklist)
        return checklist

    def submit_verification(self, user: User, data: VerificationCreate) -> VerificationList:
        """Creates or replaces the document for `data.type`, which goes back to PENDING."""
        profile = self._get_profile(user)
        if data.expires_at and data.expires_at < datetime.utcnow():
            raise ValueError("The document has already expired.")

        record = self.session.exec(
            select(CarrierVerification).where(
                CarrierVerification.carrier_id == profile.id,
                CarrierVerification.type == data.type
            )
        ).first()
        if record is None:
            record = CarrierVerification(carrier_id=profile.id, type=data.type, document_url=data.document_url)

        record.document_url = data.document_url
        record.expires_at = data.expires_at
        record.status = VerificationStatus.PENDING
        record.rejection_reason = None
        record.reviewed_by_id = None
        record.reviewed_at = None
        self.session.add(record)
        self.session.commit()

        logger.info(f"Carrier {profile.id} submitted {data.type.value} for review")
        checklist = self._checklist(profile)
        self._sync_verified(profile, checklist)
        return checklist

    def list_pending_verifications(self) -> List[VerificationRead]:
        records = self.session.exec(
            select(CarrierVerification)
            .where(CarrierVerification.status == VerificationStatus.PENDING)
            .order_by(CarrierVerification.updated_at)
        ).all()
        return [VerificationRead.model_validate(record) for record in records]

    def review_verification(
        self,
        user: User,
        verification_id: uuid.UUID,
        data: VerificationReview,
        background_tasks: BackgroundTasks
    ) -> VerificationRead:
        record = self.session.get(CarrierVerification, verification_id)
        if not record:
            raise HTTPException(status_code=404, detail="Verification not found.")
        if record.status != VerificationStatus.PENDING:
            raise ValueError(f"Only pending documents can be reviewed, this one is {record.status.value}.")

        record.status = data.status
        record.rejection_reason = data.rejection_reason if data.status == VerificationStatus.REJECTED else None
        record.reviewed_by_id = user.id
        record.reviewed_at = datetime.utcnow()
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)

        profile = self.session.get(CarrierProfile, record.carrier_id)
        self._sync_verified(profile, self._checklist(profile))

        logger.info(f"Verification {record.id} ({record.type.value}) {data.status.value} by {user.id}")

        background_tasks.add_task(
            _perform_audit_log,
            user_id=user.id,
            entity_type="CarrierVerification",
            entity_id=record.id,
            action=AuditAction.STATUS_CHANGE,
            changes={"status": {"old": VerificationStatus.PENDING.value, "new": data.status.value}}
        )

        return VerificationRead.model_validate(record)
