import uuid
from datetime import datetime
from typing import List

from fastapi import BackgroundTasks, HTTPException, status
from loguru import logger
from sqlmodel import Session, select, col

from app.core.audit import _perform_audit_log
from app.core.errors import APIError, ErrorCode
from app.core.plans import get_plan
from app.db.schema import (
    AuditAction, Bid, BidStatus, CarrierProfile, Shipment, ShipmentStatus,
    SubscriptionStatus, User, UserRole
)
from app.models.shipment import BidCreate, BidRead


ACTIVE_BID_STATUSES = (BidStatus.PENDING, BidStatus.ACCEPTED)


class BidService:
    def __init__(self, session: Session):
        self.session = session

    def _get_profile(self, user: User) -> CarrierProfile:
        profile = self.session.exec(
            select(CarrierProfile).where(CarrierProfile.user_id == user.id)
        ).first()
        if not profile:
            raise HTTPException(status_code=404, detail="Carrier profile not found.")
        return profile

    def _to_read(self, bid: Bid) -> BidRead:
        return BidRead.model_validate(bid, update={
            "carrier_name": bid.carrier.company_name,
            "carrier_rating": bid.carrier.rating,
        })

    def _check_subscription(self, profile: CarrierProfile) -> None:
        """Expired trials and lapsed plans cannot bid; the trial also has a monthly cap."""
        now = datetime.utcnow()
        plan = get_plan(profile.subscription_tier)

        if profile.subscription_status == SubscriptionStatus.TRIAL:
            if profile.trial_ends_at and profile.trial_ends_at < now:
                raise APIError(ErrorCode.PLAN_LIMIT_REACHED, status.HTTP_403_FORBIDDEN,
                               detail="Your free trial has ended. Choose a plan to keep bidding.")
        elif profile.subscription_status != SubscriptionStatus.ACTIVE:
            raise APIError(ErrorCode.PLAN_LIMIT_REACHED, status.HTTP_403_FORBIDDEN,
                           detail="Your subscription is not active.")

        if plan.bids_per_month is not None and profile.monthly_bids_used >= plan.bids_per_month:
            raise APIError(
                ErrorCode.PLAN_LIMIT_REACHED,
                status.HTTP_403_FORBIDDEN,
                extra={"bids_per_month": plan.bids_per_month}
            )

    # ==========================================================================
    # WRITE OPERATIONS
    # ==========================================================================

    def place_bid(self, user: User, data: BidCreate) -> BidRead:
        profile = self._get_profile(user)

        shipment = self.session.get(Shipment, data.shipment_id)
        if not shipment:
            raise HTTPException(status_code=404, detail="Shipment not found.")
        if shipment.status != ShipmentStatus.OPEN:
            raise APIError(ErrorCode.BID_NOT_ALLOWED, status.HTTP_409_CONFLICT)

        active = self.session.exec(
            select(Bid).where(
                Bid.shipment_id == shipment.id,
                Bid.carrier_id == profile.id,
                col(Bid.status).in_(ACTIVE_BID_STATUSES)
            )
        ).first()
        if active:
            raise APIError(ErrorCode.BID_NOT_ALLOWED, status.HTTP_409_CONFLICT,
                           detail="You already have an active bid on this shipment.")

        self._check_subscription(profile)

        bid = Bid(
            shipment_id=shipment.id,
            carrier_id=profile.id,
            total_price=data.total_price,
            currency=data.currency.upper(),
            vehicle_type=data.vehicle_type,
            estimated_pickup=data.estimated_pickup,
            estimated_delivery=data.estimated_delivery,
            notes=data.notes
        )
        profile.monthly_bids_used += 1

        self.session.add(bid)
        self.session.add(profile)
        self.session.commit()
        self.session.refresh(bid)

        logger.info(f"Bid {bid.id} placed on {shipment.tracking_number} by carrier {profile.id}")
        return self._to_read(bid)

    def select_bid(self, user: User, bid_id: uuid.UUID, background_tasks: BackgroundTasks) -> BidRead:
        """
        Accepts a bid: the shipment is assigned to that carrier and every
        other pending bid is rejected.
        """
        bid = self.session.get(Bid, bid_id)
        if not bid:
            raise HTTPException(status_code=404, detail="Bid not found.")

        shipment = bid.shipment
        if shipment.shipper_id != user.id and user.role != UserRole.ADMIN:
            raise HTTPException(status_code=403, detail="Only the shipper can select a bid.")
        if shipment.status != ShipmentStatus.OPEN or bid.status != BidStatus.PENDING:
            raise APIError(ErrorCode.BID_NOT_ALLOWED, status.HTTP_409_CONFLICT,
                           detail="This bid can no longer be selected.")

        others = self.session.exec(
            select(Bid).where(
                Bid.shipment_id == shipment.id,
                Bid.id != bid.id,
                Bid.status == BidStatus.PENDING
            )
        ).all()
        for other in others:
            other.status = BidStatus.REJECTED
            self.session.add(other)

        bid.status = BidStatus.ACCEPTED
        shipment.status = ShipmentStatus.ASSIGNED
        shipment.carrier_id = bid.carrier_id
        shipment.selected_bid_id = bid.id

        self.session.add(bid)
        self.session.add(shipment)
        self.session.commit()
        self.session.refresh(bid)

        logger.info(f"Shipment {shipment.tracking_number} assigned to carrier {bid.carrier_id}")

        background_tasks.add_task(
            _perform_audit_log,
            user_id=user.id,
            entity_type="Shipment",
            entity_id=shipment.id,
            action=AuditAction.STATUS_CHANGE,
            changes={"status": {"old": ShipmentStatus.OPEN.value, "new": ShipmentStatus.ASSIGNED.value},
                     "bid_id": str(bid.id)}
        )

        return self._to_read(bid)

    def withdraw_bid(self, user: User, bid_id: uuid.UUID):
        profile = self._get_profile(user)

        bid = self.session.get(Bid, bid_id)
        if not bid or bid.carrier_id != profile.id:
            raise HTTPException(status_code=404, detail="Bid not found.")
        if bid.status != BidStatus.PENDING:
            raise APIError(ErrorCode.BID_NOT_ALLOWED, status.HTTP_409_CONFLICT,
                           detail="Only pending bids can be withdrawn.")

        bid.status = BidStatus.WITHDRAWN
        self.session.add(bid)
        self.session.commit()
        return {"message": "Bid withdrawn successfully."}

    # ==========================================================================
    # READ OPERATIONS
    # ==========================================================================

    def list_my_bids(self, user: User) -> List[BidRead]:
        profile = self._get_profile(user)
        bids = self.session.exec(
            select(Bid).where(Bid.carrier_id == profile.id).order_by(col(Bid.created_at).desc())
        ).all()
        return [self._to_read(b) for b in bids]

    def list_shipment_bids(self, shipment: Shipment) -> List[BidRead]:
        bids = self.session.exec(
            select(Bid)
            .where(Bid.shipment_id == shipment.id, Bid.status != BidStatus.WITHDRAWN)
            .order_by(Bid.total_price)
        ).all()
        return [self._to_read(b) for b in bids]
