import secrets
import uuid
from typing import List

from fastapi import BackgroundTasks, HTTPException, status
from loguru import logger
from sqlmodel import Session, select, func, col

from app.core.audit import _perform_audit_log
from app.db.schema import (
    AuditAction, Bid, BidStatus, CarrierProfile, Driver, Shipment,
    ShipmentStatus, ShipmentUnit, User, UserRole
)
from app.models.shipment import ShipmentCreate, ShipmentDetail, ShipmentRead, UnitSummary
from app.services.qr import QRService


class ShipmentService:
    def __init__(self, session: Session):
        self.session = session

    def _generate_tracking_number(self) -> str:
        """'VN-' followed by 8 hex characters, unique across shipments."""
        while True:
            candidate = f"VN-{secrets.token_hex(4).upper()}"
            exists = self.session.exec(
                select(Shipment.id).where(Shipment.tracking_number == candidate)
            ).first()
            if not exists:
                return candidate

    def _carrier_id_of(self, user: User):
        if user.role == UserRole.CARRIER:
            return self.session.exec(
                select(CarrierProfile.id).where(CarrierProfile.user_id == user.id)
            ).first()
        if user.role == UserRole.DRIVER:
            return self.session.exec(
                select(Driver.carrier_id).where(Driver.user_id == user.id)
            ).first()
        return None

    def _bid_count(self, shipment_id: uuid.UUID) -> int:
        return self.session.exec(
            select(func.count()).select_from(Bid).where(
                Bid.shipment_id == shipment_id,
                Bid.status != BidStatus.WITHDRAWN
            )
        ).one()

    def _to_read(self, shipment: Shipment) -> ShipmentRead:
        return ShipmentRead.model_validate(
            shipment, update={"bid_count": self._bid_count(shipment.id)})

    def _to_detail(self, shipment: Shipment) -> ShipmentDetail:
        return ShipmentDetail.model_validate(shipment, update={
            "bid_count": self._bid_count(shipment.id),
            "units": [UnitSummary.model_validate(unit) for unit in shipment.units],
        })

    def get_owned_shipment(self, user: User, shipment_id: uuid.UUID) -> Shipment:
        shipment = self.session.get(Shipment, shipment_id)
        if not shipment:
            raise HTTPException(status_code=404, detail="Shipment not found.")
        if user.role != UserRole.ADMIN and shipment.shipper_id != user.id:
            raise HTTPException(
                status_code=403, detail="You do not have access to this shipment.")
        return shipment

    # ==========================================================================
    # WRITE OPERATIONS
    # ==========================================================================

    def create_shipment(self, user: User, data: ShipmentCreate) -> ShipmentDetail:
        """
        Posts a load and splits it into `quantity` units, each with its own
        scan token and printable QR label.
        """
        qr = QRService(self.session)

        shipment = Shipment(
            shipper_id=user.id,
            tracking_number=self._generate_tracking_number(),
            cargo_description=data.cargo_description,
            cargo_type=data.cargo_type,
            pickup_address=data.pickup_address,
            pickup_city=data.pickup_city,
            pickup_country=data.pickup_country.upper(),
            delivery_address=data.delivery_address,
            delivery_city=data.delivery_city,
            delivery_country=data.delivery_country.upper(),
            weight=data.weight,
            quantity=data.quantity,
            budget=data.budget,
            currency=data.currency.upper(),
            pickup_date=data.pickup_date,
            delivery_deadline=data.delivery_deadline
        )

        try:
            self.session.add(shipment)
            self.session.flush()

            unit_weight = round(data.weight / data.quantity, 3)
            for number in range(1, data.quantity + 1):
                unit = ShipmentUnit(
                    shipment_id=shipment.id,
                    unit_number=number,
                    total_units=data.quantity,
                    description=f"{data.cargo_description} ({number}/{data.quantity})",
                    weight=unit_weight,
                    qr_token="",
                    qr_token_expires_at=shipment.created_at
                )
                qr.issue_token(unit)
                self.session.add(unit)

            self.session.commit()
            self.session.refresh(shipment)
        except Exception as e:
            self.session.rollback()
            logger.error(f"Shipment creation failed: {e}")
            raise HTTPException(
                status_code=500, detail="Could not create shipment.")

        logger.info(
            f"Shipment {shipment.tracking_number} posted by {user.id} with {data.quantity} units")
        return self._to_detail(shipment)

    def cancel_shipment(
        self,
        user: User,
        shipment_id: uuid.UUID,
        background_tasks: BackgroundTasks
    ):
        shipment = self.get_owned_shipment(user, shipment_id)

        if shipment.status != ShipmentStatus.OPEN:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Only open shipments can be cancelled."
            )

        pending = self.session.exec(
            select(Bid).where(Bid.shipment_id == shipment.id, Bid.status == BidStatus.PENDING)
        ).all()
        for bid in pending:
            bid.status = BidStatus.REJECTED
            self.session.add(bid)

        shipment.status = ShipmentStatus.CANCELLED
        self.session.add(shipment)
        self.session.commit()

        logger.info(f"Shipment {shipment.tracking_number} cancelled by {user.id}")

        background_tasks.add_task(
            _perform_audit_log,
            user_id=user.id,
            entity_type="Shipment",
            entity_id=shipment.id,
            action=AuditAction.STATUS_CHANGE,
            changes={"status": {"old": ShipmentStatus.OPEN.value, "new": ShipmentStatus.CANCELLED.value},
                     "rejected_bids": len(pending)}
        )

        return {"message": "Shipment cancelled successfully."}

    # ==========================================================================
    # READ OPERATIONS
    # ==========================================================================

    def list_my_shipments(self, user: User) -> List[ShipmentRead]:
        """Shippers see what they posted; carriers and drivers what they were assigned."""
        statement = select(Shipment)
        if user.role in (UserRole.CARRIER, UserRole.DRIVER):
            statement = statement.where(Shipment.carrier_id == self._carrier_id_of(user))
        else:
            statement = statement.where(Shipment.shipper_id == user.id)

        shipments = self.session.exec(
            statement.order_by(col(Shipment.created_at).desc())).all()
        return [self._to_read(s) for s in shipments]

    def list_open_shipments(self) -> List[ShipmentRead]:
        shipments = self.session.exec(
            select(Shipment)
            .where(Shipment.status == ShipmentStatus.OPEN)
            .order_by(col(Shipment.created_at).desc())
        ).all()
        return [self._to_read(s) for s in shipments]

    def get_shipment(self, user: User, shipment_id: uuid.UUID) -> ShipmentDetail:
        """
        Owners, the assigned carrier and admins get the unit labels.
        Any carrier may view an OPEN shipment without them.
        """
        shipment = self.session.get(Shipment, shipment_id)
        if not shipment:
            raise HTTPException(status_code=404, detail="Shipment not found.")

        if user.role == UserRole.ADMIN or shipment.shipper_id == user.id:
            return self._to_detail(shipment)

        carrier_id = self._carrier_id_of(user)
        if carrier_id and shipment.carrier_id == carrier_id:
            return self._to_detail(shipment)

        if user.role == UserRole.CARRIER and shipment.status == ShipmentStatus.OPEN:
            return ShipmentDetail.model_validate(
                shipment, update={"bid_count": self._bid_count(shipment.id), "units": []})

        raise HTTPException(status_code=403, detail="You do not have access to this shipment.")
