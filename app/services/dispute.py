import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, status
from loguru import logger
from sqlalchemy import or_
from sqlmodel import Session, select, func

from app.core.audit import _perform_audit_log
from app.core.config import settings
from app.core.errors import APIError, ErrorCode
from app.core.workflow import (
    can_comment, can_post_internal, can_resolve, can_transition, suggest_liability
)
from app.db.schema import (
    AuditAction, CarrierProfile, Dispute, DisputeComment, DisputeStatus, DisputeType,
    Driver, Liability, PhotoType, ProofOfDelivery, ScanLog, Shipment,
    ShipmentUnit, UnitPhoto, User, UserRole, Warehouse
)
from app.models.dispute import (
    CommentCreate, CommentRead, DisputeCreate, DisputePage, DisputeRead,
    DisputeSummary, Pagination, ResolvePayload
)
from app.utils.file_storage import save_photo


class DisputeService:
    def __init__(self, session: Session):
        self.session = session

    # ==========================================================================
    # HELPERS
    # ==========================================================================

    def _carrier_id_of(self, user: User) -> Optional[uuid.UUID]:
        if user.role == UserRole.CARRIER:
            profile = self.session.exec(
                select(CarrierProfile).where(CarrierProfile.user_id == user.id)
            ).first()
            return profile.id if profile else None
        if user.role == UserRole.DRIVER:
            driver = self.session.exec(
                select(Driver).where(Driver.user_id == user.id)
            ).first()
            return driver.carrier_id if driver else None
        return None

    def _scanned_unit(self, user: User, unit_id: uuid.UUID) -> bool:
        """Whether the user, or one of their warehouses, has a scan on the unit."""
        owned = select(Warehouse.id).where(Warehouse.owner_id == user.id)
        log = self.session.exec(
            select(ScanLog.id).where(
                ScanLog.unit_id == unit_id,
                or_(ScanLog.scanned_by_id == user.id, ScanLog.warehouse_id.in_(owned))
            )
        ).first()
        return log is not None

    def _is_party(self, user: User, shipment: Shipment, unit_id: uuid.UUID) -> bool:
        if user.role == UserRole.ADMIN:
            return True
        if user.role == UserRole.SHIPPER:
            return shipment.shipper_id == user.id
        if user.role in (UserRole.CARRIER, UserRole.DRIVER):
            carrier_id = self._carrier_id_of(user)
            return carrier_id is not None and shipment.carrier_id == carrier_id
        if user.role == UserRole.WAREHOUSE:
            return self._scanned_unit(user, unit_id)
        return False

    def _get_dispute(self, dispute_id: uuid.UUID) -> Dispute:
        dispute = self.session.get(Dispute, dispute_id)
        if not dispute:
            raise APIError(ErrorCode.DISPUTE_NOT_FOUND, status.HTTP_404_NOT_FOUND)
        return dispute

    def _get_visible_dispute(self, user: User, dispute_id: uuid.UUID) -> Dispute:
        dispute = self._get_dispute(dispute_id)
        if dispute.created_by_id == user.id:
            return dispute
        shipment = self.session.get(Shipment, dispute.shipment_id)
        if not self._is_party(user, shipment, dispute.unit_id):
            raise APIError(ErrorCode.FORBIDDEN, status.HTTP_403_FORBIDDEN)
        return dispute

    def _open_dispute_for(self, unit_id: uuid.UUID) -> Optional[Dispute]:
        return self.session.exec(
            select(Dispute).where(
                Dispute.unit_id == unit_id,
                Dispute.status != DisputeStatus.RESOLVED
            )
        ).first()

    def _damage_photo_count(self, unit_id: uuid.UUID) -> int:
        return self.session.exec(
            select(func.count()).select_from(UnitPhoto).where(
                UnitPhoto.unit_id == unit_id,
                UnitPhoto.type == PhotoType.DAMAGE
            )
        ).one()

    def _to_read(self, dispute: Dispute, user: User) -> DisputeRead:
        comments = [
            CommentRead.model_validate(comment) for comment in dispute.comments
            if not comment.is_internal or user.role == UserRole.ADMIN
        ]
        return DisputeRead.model_validate(dispute, update={"comments": comments})

    # ==========================================================================
    # EVIDENCE
    # ==========================================================================

    def build_evidence_snapshot(self, unit_id: uuid.UUID) -> Dict[str, Any]:
        """
        Collects the unit's scan logs, photos and proof of delivery, plus one
        timeline merging scans and photos in chronological order.
        """
        logs = self.session.exec(
            select(ScanLog).where(ScanLog.unit_id == unit_id).order_by(ScanLog.scanned_at)
        ).all()
        photos = self.session.exec(
            select(UnitPhoto).where(UnitPhoto.unit_id == unit_id).order_by(UnitPhoto.uploaded_at)
        ).all()
        pod = self.session.exec(
            select(ProofOfDelivery).where(ProofOfDelivery.unit_id == unit_id)
        ).first()

        timeline: List[Dict[str, Any]] = []
        for log in logs:
            timeline.append({
                "kind": "SCAN",
                "at": log.scanned_at.isoformat(),
                "action": log.action.value,
                "from": log.previous_status.value,
                "to": log.new_status.value,
                "actor": log.scanned_by_name,
                "role": log.scanned_by_role.value,
                "warehouse": log.warehouse_name,
                "has_damage": log.has_damage,
            })
        for photo in photos:
            timeline.append({
                "kind": "PHOTO",
                "at": photo.uploaded_at.isoformat(),
                "type": photo.type.value,
                "url": photo.image_url,
                "actor": photo.uploaded_by_name,
            })
        timeline.sort(key=lambda entry: entry["at"])

        return {
            "scan_logs": [log.model_dump(mode="json") for log in logs],
            "photos": [photo.model_dump(mode="json") for photo in photos],
            "timeline": timeline,
            "pod": pod.model_dump(mode="json") if pod else None,
            "captured_at": datetime.utcnow().isoformat(),
        }

    def _analyze(self, dispute: Dispute, unit: ShipmentUnit) -> None:
        logs = self.session.exec(
            select(ScanLog).where(ScanLog.unit_id == unit.id)
        ).all()
        liability, score, reason = suggest_liability(dispute.type, logs, unit.current_status)
        dispute.suggested_liability = liability
        dispute.suggested_liability_score = score
        dispute.liability_reason = reason

    # ==========================================================================
    # CREATION
    # ==========================================================================

    def create_dispute(self, user: User, data: DisputeCreate) -> DisputeRead:
        shipment = self.session.get(Shipment, data.shipment_id)
        if not shipment:
            raise APIError(ErrorCode.NOT_FOUND, status.HTTP_404_NOT_FOUND,
                           detail="Shipment not found.")

        unit = self.session.get(ShipmentUnit, data.unit_id)
        if not unit or unit.shipment_id != shipment.id:
            raise APIError(ErrorCode.UNIT_NOT_FOUND, status.HTTP_404_NOT_FOUND)

        if not self._is_party(user, shipment, unit.id):
            raise APIError(ErrorCode.FORBIDDEN, status.HTTP_403_FORBIDDEN)

        if unit.delivered_at is not None:
            deadline = unit.delivered_at + timedelta(hours=settings.dispute_deadline_hours)
            if datetime.utcnow() > deadline:
                logger.warning(f"Dispute on unit {unit.id} rejected: reporting window closed")
                raise APIError(ErrorCode.DEADLINE_EXPIRED, status.HTTP_409_CONFLICT)

        if self._open_dispute_for(unit.id):
            raise APIError(ErrorCode.DISPUTE_EXISTS, status.HTTP_409_CONFLICT)

        if not data.photos and self._damage_photo_count(unit.id) == 0:
            raise APIError(ErrorCode.NO_PHOTOS, status.HTTP_422_UNPROCESSABLE_ENTITY)

        for image in data.photos:
            self.session.add(UnitPhoto(
                unit_id=unit.id,
                type=PhotoType.DAMAGE,
                image_url=save_photo(image),
                uploaded_by_id=user.id,
                uploaded_by_name=user.full_name
            ))

        dispute = Dispute(
            shipment_id=shipment.id,
            unit_id=unit.id,
            type=data.type,
            damage_description=data.damage_description,
            estimated_value=data.estimated_value,
            created_by_id=user.id,
            created_by_role=user.role,
            created_by_name=user.full_name
        )

        try:
            self.session.add(dispute)
            self.session.flush()
            self._analyze(dispute, unit)
            dispute.evidence_snapshot = self.build_evidence_snapshot(unit.id)
            self.session.commit()
            self.session.refresh(dispute)
        except Exception as e:
            self.session.rollback()
            logger.error(f"Dispute creation failed: {e}")
            raise

        logger.info(f"Dispute {dispute.id} ({dispute.type.value}) opened on unit {unit.id} by {user.id}")
        return self._to_read(dispute, user)

    def open_auto_dispute(
        self,
        user: User,
        unit: ShipmentUnit,
        dispute_type: DisputeType,
        description: str
    ) -> Dispute:
        """
        Opens a dispute on behalf of a damage-flagging scan. Joins the
        caller's transaction; an unresolved dispute on the unit is reused.
        """
        existing = self._open_dispute_for(unit.id)
        if existing:
            return existing

        dispute = Dispute(
            shipment_id=unit.shipment_id,
            unit_id=unit.id,
            type=dispute_type,
            damage_description=description,
            is_auto_created=True,
            created_by_id=user.id,
            created_by_role=user.role,
            created_by_name=user.full_name
        )
        self.session.add(dispute)
        self._analyze(dispute, unit)
        dispute.evidence_snapshot = self.build_evidence_snapshot(unit.id)

        logger.info(f"Auto-dispute ({dispute_type.value}) opened on unit {unit.id}")
        return dispute

    # ==========================================================================
    # READ OPERATIONS
    # ==========================================================================

    def get_dispute(self, user: User, dispute_id: uuid.UUID) -> DisputeRead:
        return self._to_read(self._get_visible_dispute(user, dispute_id), user)

    def _paginate(self, statement, page: int, limit: int) -> DisputePage:
        total = self.session.exec(
            select(func.count()).select_from(statement.subquery())
        ).one()
        rows = self.session.exec(
            statement.order_by(Dispute.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return DisputePage(
            disputes=[DisputeSummary.model_validate(d) for d in rows],
            pagination=Pagination.build(page, limit, total)
        )

    def list_my_disputes(
        self,
        user: User,
        status_filter: Optional[DisputeStatus] = None,
        page: int = 1,
        limit: int = 20
    ) -> DisputePage:
        """Disputes the user created or is a party to."""
        conditions = [Dispute.created_by_id == user.id]

        if user.role == UserRole.SHIPPER:
            conditions.append(Shipment.shipper_id == user.id)
        elif user.role in (UserRole.CARRIER, UserRole.DRIVER):
            carrier_id = self._carrier_id_of(user)
            if carrier_id:
                conditions.append(Shipment.carrier_id == carrier_id)
        elif user.role == UserRole.WAREHOUSE:
            owned = select(Warehouse.id).where(Warehouse.owner_id == user.id)
            scanned = select(ScanLog.unit_id).where(
                or_(ScanLog.scanned_by_id == user.id, ScanLog.warehouse_id.in_(owned)))
            conditions.append(Dispute.unit_id.in_(scanned))

        statement = (
            select(Dispute)
            .join(Shipment, Shipment.id == Dispute.shipment_id)
            .where(or_(*conditions))
        )
        if status_filter:
            statement = statement.where(Dispute.status == status_filter)

        return self._paginate(statement, page, limit)

    def list_all_disputes(
        self,
        status_filter: Optional[DisputeStatus] = None,
        type_filter: Optional[DisputeType] = None,
        page: int = 1,
        limit: int = 20
    ) -> DisputePage:
        statement = select(Dispute)
        if status_filter:
            statement = statement.where(Dispute.status == status_filter)
        if type_filter:
            statement = statement.where(Dispute.type == type_filter)
        return self._paginate(statement, page, limit)

    # ==========================================================================
    # WRITE OPERATIONS
    # ==========================================================================

    def update_status(
        self,
        user: User,
        dispute_id: uuid.UUID,
        target: DisputeStatus,
        background_tasks: BackgroundTasks
    ) -> DisputeRead:
        """
        Moves the dispute one step forward. Reaching EVIDENCE_COMPLETE
        rebuilds the snapshot one last time and freezes it.
        """
        dispute = self._get_dispute(dispute_id)
        old_status = dispute.status

        if old_status == DisputeStatus.RESOLVED:
            raise APIError(ErrorCode.DISPUTE_LOCKED, status.HTTP_409_CONFLICT)

        if not can_transition(old_status, target, user.role):
            logger.warning(f"Dispute {dispute.id}: refused {old_status.value} -> {target.value}")
            raise APIError(ErrorCode.INVALID_TRANSITION, status.HTTP_409_CONFLICT)

        now = datetime.utcnow()
        if target == DisputeStatus.UNDER_REVIEW:
            dispute.review_started_at = now
        elif target == DisputeStatus.EVIDENCE_COMPLETE:
            dispute.evidence_snapshot = self.build_evidence_snapshot(dispute.unit_id)
            dispute.evidence_locked_at = now

        dispute.status = target
        self.session.add(dispute)
        self.session.commit()
        self.session.refresh(dispute)

        logger.info(f"Dispute {dispute.id} {old_status.value} -> {target.value} by {user.id}")

        background_tasks.add_task(
            _perform_audit_log,
            user_id=user.id,
            entity_type="Dispute",
            entity_id=dispute.id,
            action=AuditAction.STATUS_CHANGE,
            changes={"status": {"old": old_status.value, "new": target.value}}
        )

        return self._to_read(dispute, user)

    def resolve(
        self,
        user: User,
        dispute_id: uuid.UUID,
        data: ResolvePayload,
        background_tasks: BackgroundTasks
    ) -> DisputeRead:
        dispute = self._get_dispute(dispute_id)

        if dispute.status == DisputeStatus.RESOLVED:
            raise APIError(ErrorCode.DISPUTE_LOCKED, status.HTTP_409_CONFLICT)

        if not can_resolve(dispute.status, user.role):
            raise APIError(ErrorCode.INVALID_TRANSITION, status.HTTP_409_CONFLICT,
                           detail="Only disputes with complete evidence can be resolved.")

        dispute.final_liability = data.final_liability
        dispute.resolution_notes = data.resolution_notes
        dispute.compensation_amount = data.compensation_amount
        dispute.resolved_by_id = user.id
        dispute.resolved_by_name = user.full_name
        dispute.resolved_at = datetime.utcnow()
        dispute.status = DisputeStatus.RESOLVED

        impact = data.rating_impact_value or 0
        if data.apply_rating_impact and impact and data.final_liability == Liability.CARRIER:
            shipment = self.session.get(Shipment, dispute.shipment_id)
            carrier = self.session.get(CarrierProfile, shipment.carrier_id) if shipment.carrier_id else None
            if carrier:
                old_rating = carrier.rating
                carrier.rating = round(min(5.0, max(0.0, carrier.rating + impact)), 2)
                self.session.add(carrier)
                dispute.rating_impact_applied = True
                dispute.rating_impact_value = impact
                logger.info(f"Carrier {carrier.id} rating {old_rating} -> {carrier.rating}")

        self.session.add(dispute)
        self.session.commit()
        self.session.refresh(dispute)

        logger.info(f"Dispute {dispute.id} resolved: {data.final_liability.value}")

        background_tasks.add_task(
            _perform_audit_log,
            user_id=user.id,
            entity_type="Dispute",
            entity_id=dispute.id,
            action=AuditAction.STATUS_CHANGE,
            changes=data.model_dump(mode="json") | {"status": DisputeStatus.RESOLVED.value}
        )

        return self._to_read(dispute, user)

    def add_comment(self, user: User, dispute_id: uuid.UUID, data: CommentCreate) -> CommentRead:
        dispute = self._get_visible_dispute(user, dispute_id)

        if not can_comment(dispute.status):
            raise APIError(ErrorCode.DISPUTE_LOCKED, status.HTTP_409_CONFLICT)

        if data.is_internal and not can_post_internal(user.role):
            raise APIError(ErrorCode.FORBIDDEN, status.HTTP_403_FORBIDDEN,
                           detail="Only administrators can post internal notes.")

        comment = DisputeComment(
            dispute_id=dispute.id,
            author_id=user.id,
            author_role=user.role,
            author_name=user.full_name,
            message=data.message.strip(),
            is_internal=data.is_internal
        )
        self.session.add(comment)
        self.session.commit()
        self.session.refresh(comment)

        return CommentRead.model_validate(comment)
