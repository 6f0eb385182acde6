import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import status
from loguru import logger
from sqlmodel import Session, select, func

from app.core.config import settings
from app.core.errors import APIError, ErrorCode, error_message
from app.core.workflow import (
    ACTION_ROLES, Evidence, allowed_actions, dispute_type_for_status,
    missing_evidence, next_status, photo_type_for, role_may_perform
)
from app.db.schema import (
    Driver, PhotoType, ProofOfDelivery, ScanAction, ScanLog, Shipment,
    ShipmentStatus, ShipmentUnit, UnitPhoto, UnitStatus, UsedQRToken, User,
    UserRole, Warehouse, CarrierProfile
)
from app.models.qr import (
    AllowedActionsResponse, PhotoBatchResult, PhotoBatchUpload, PhotoRead,
    PhotoUpload, PhotoUploadOutcome, ScanLogRead, ScanRequest, ScanResult,
    ShipmentInfo, SignatureRequest, TokenInfoResponse, UnitRead
)
from app.services.dispute import DisputeService
from app.utils.file_storage import save_photo, save_signature
from app.utils.qr import generate_and_save_qr, new_scan_token, scan_url


# Photo types a shipper may attach to their own shipment's units
SHIPPER_PHOTO_TYPES = {PhotoType.ORIGIN, PhotoType.DAMAGE}


class QRService:
    def __init__(self, session: Session):
        self.session = session

    # --- Tokens ---

    def issue_token(self, unit: ShipmentUnit) -> None:
        """Assigns a fresh token (and label image) to the unit."""
        unit.qr_token = new_scan_token()
        unit.qr_token_expires_at = datetime.utcnow() + timedelta(hours=settings.qr_token_ttl_hours)
        unit.qr_code_url = generate_and_save_qr(scan_url(unit.qr_token), f"unit-{unit.id}")

    def _rotate_token(self, unit: ShipmentUnit, action: ScanAction) -> None:
        self.session.add(UsedQRToken(token=unit.qr_token, unit_id=unit.id, action=action))
        self.issue_token(unit)

    def resolve_token(self, token: str) -> ShipmentUnit:
        """
        Finds the unit a scanned token points to.

        A token of a delivered unit is QR_EXPIRED (the terminal "already
        delivered" answer); a token rotated out by an earlier checkpoint is
        TOKEN_ALREADY_USED; a token never issued is INVALID_QR_TOKEN.
        """
        unit = self.session.exec(
            select(ShipmentUnit).where(ShipmentUnit.qr_token == token)
        ).first()

        if unit is None:
            used = self.session.get(UsedQRToken, token)
            if used is None:
                raise APIError(ErrorCode.INVALID_QR_TOKEN, status.HTTP_404_NOT_FOUND)
            if used.unit.current_status == UnitStatus.DELIVERED:
                raise APIError(ErrorCode.QR_EXPIRED, status.HTTP_410_GONE)
            raise APIError(ErrorCode.TOKEN_ALREADY_USED, status.HTTP_409_CONFLICT)

        if unit.current_status == UnitStatus.DELIVERED:
            raise APIError(ErrorCode.QR_EXPIRED, status.HTTP_410_GONE)

        if unit.qr_token_expires_at < datetime.utcnow():
            raise APIError(ErrorCode.TOKEN_EXPIRED, status.HTTP_410_GONE)

        return unit

    def get_token_info(self, token: str) -> TokenInfoResponse:
        unit = self.resolve_token(token)

        unit_read = UnitRead.model_validate(unit, update={
            "scan_history": [ScanLogRead.model_validate(log) for log in unit.scan_logs],
            "photos": [PhotoRead.model_validate(photo) for photo in unit.photos],
        })
        return TokenInfoResponse(
            unit=unit_read,
            shipment=ShipmentInfo.model_validate(unit.shipment)
        )

    # --- Parties ---

    def _actor_carrier_id(self, user: User) -> Optional[uuid.UUID]:
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

    def _is_party(self, user: User, shipment: Shipment, action: ScanAction) -> bool:
        """Role permission plus, for carriers and drivers, assignment to the shipment."""
        if user.role == UserRole.ADMIN:
            return True
        if user.role not in ACTION_ROLES[action]:
            return False
        if user.role in (UserRole.CARRIER, UserRole.DRIVER):
            carrier_id = self._actor_carrier_id(user)
            return carrier_id is not None and shipment.carrier_id == carrier_id
        return True

    def _may_upload(self, user: User, shipment: Shipment, photo_type: PhotoType) -> bool:
        if user.role in (UserRole.ADMIN, UserRole.WAREHOUSE):
            return True
        if user.role == UserRole.SHIPPER:
            return shipment.shipper_id == user.id and photo_type in SHIPPER_PHOTO_TYPES
        carrier_id = self._actor_carrier_id(user)
        return carrier_id is not None and shipment.carrier_id == carrier_id

    def get_allowed_actions(self, user: User, token: str) -> AllowedActionsResponse:
        unit = self.resolve_token(token)
        shipment = unit.shipment

        actions: List[ScanAction] = []
        if shipment.status != ShipmentStatus.CANCELLED:
            actions = [
                action for action in allowed_actions(unit.current_status, user.role)
                if self._is_party(user, shipment, action)
            ]

        return AllowedActionsResponse(
            token=token,
            current_status=unit.current_status,
            allowed_actions=actions
        )

    # --- Photos ---

    def _record_photo(
        self, user: User, unit: ShipmentUnit, photo_type: PhotoType, image_url: str,
        caption: Optional[str] = None, latitude: Optional[float] = None,
        longitude: Optional[float] = None
    ) -> UnitPhoto:
        photo = UnitPhoto(
            unit_id=unit.id,
            type=photo_type,
            image_url=image_url,
            caption=caption,
            uploaded_by_id=user.id,
            uploaded_by_name=user.full_name,
            latitude=latitude,
            longitude=longitude
        )
        self.session.add(photo)
        return photo

    def _unit_for_upload(self, user: User, token: str, photo_type: PhotoType) -> ShipmentUnit:
        unit = self.resolve_token(token)
        if not self._may_upload(user, unit.shipment, photo_type):
            raise APIError(ErrorCode.UNAUTHORIZED_ROLE, status.HTTP_403_FORBIDDEN)
        return unit

    def upload_photo(self, user: User, data: PhotoUpload) -> UnitPhoto:
        """
        Stores one evidence photo. Uploading never advances the unit status;
        the photo only counts once the matching scan is submitted.
        """
        unit = self._unit_for_upload(user, data.token, data.type)
        image_url = save_photo(data.image_data)

        photo = self._record_photo(
            user, unit, data.type, image_url, data.caption, data.latitude, data.longitude)
        self.session.commit()
        self.session.refresh(photo)

        logger.info(f"Photo {photo.id} ({data.type.value}) uploaded for unit {unit.id} by {user.id}")
        return photo

    def upload_photos(self, user: User, data: PhotoBatchUpload) -> PhotoBatchResult:
        """
        Stores a batch of photos with bounded concurrency. Each image succeeds
        or fails on its own; the outcome list keeps the request order.
        """
        unit = self._unit_for_upload(user, data.token, data.type)

        def store(image: str):
            try:
                return save_photo(image), None
            except APIError as e:
                return None, e

        with ThreadPoolExecutor(max_workers=max(1, settings.upload_concurrency)) as pool:
            stored = list(pool.map(store, data.images))

        outcomes: List[PhotoUploadOutcome] = []
        photos = []
        for index, (image_url, err) in enumerate(stored):
            if err is not None:
                outcomes.append(PhotoUploadOutcome(
                    index=index, ok=False, code=err.code.value,
                    error=err.detail or error_message(err.code)))
                continue
            photo = self._record_photo(
                user, unit, data.type, image_url,
                latitude=data.latitude, longitude=data.longitude)
            photos.append((index, photo))

        self.session.commit()
        for index, photo in photos:
            self.session.refresh(photo)
            outcomes.append(PhotoUploadOutcome(
                index=index, ok=True, photo=PhotoRead.model_validate(photo)))

        outcomes.sort(key=lambda outcome: outcome.index)
        uploaded = len(photos)
        logger.info(
            f"Batch upload for unit {unit.id}: {uploaded} stored, {len(outcomes) - uploaded} failed")

        return PhotoBatchResult(uploaded=uploaded, failed=len(outcomes) - uploaded, results=outcomes)

    def _pending_photo_count(self, unit: ShipmentUnit, photo_type: PhotoType) -> int:
        """Photos of `photo_type` uploaded since the unit's last scan."""
        return self.session.exec(
            select(func.count()).select_from(UnitPhoto).where(
                UnitPhoto.unit_id == unit.id,
                UnitPhoto.type == photo_type,
                UnitPhoto.uploaded_at >= unit.last_scan_at
            )
        ).one()

    # --- Scans ---

    def _resolve_warehouse(self, user: User, warehouse_id: Optional[uuid.UUID]) -> Optional[Warehouse]:
        if warehouse_id is not None:
            warehouse = self.session.get(Warehouse, warehouse_id)
            if not warehouse or not warehouse.is_active:
                raise APIError(ErrorCode.NOT_FOUND, status.HTTP_404_NOT_FOUND,
                               detail="Warehouse not found.")
            if user.role != UserRole.ADMIN and warehouse.owner_id != user.id:
                raise APIError(ErrorCode.UNAUTHORIZED_ROLE, status.HTTP_403_FORBIDDEN)
            return warehouse

        if user.role == UserRole.WAREHOUSE:
            return self.session.exec(
                select(Warehouse)
                .where(Warehouse.owner_id == user.id, Warehouse.is_active == True)  # noqa: E712
                .order_by(Warehouse.created_at)
            ).first()
        return None

    def scan(self, user: User, req: ScanRequest) -> ScanResult:
        """
        Applies one checkpoint action to the unit behind `req.token`.

        Order of checks: token, role and assignment, transition legality,
        evidence completeness. Only then is the scan logged, the status
        advanced and the token rotated.
        """
        unit = self.resolve_token(req.token)
        shipment = unit.shipment
        action = req.action

        if shipment.status == ShipmentStatus.CANCELLED:
            raise APIError(ErrorCode.INVALID_SEQUENCE, status.HTTP_409_CONFLICT,
                           detail="Shipment has been cancelled.")

        if not role_may_perform(user.role, action) or not self._is_party(user, shipment, action):
            logger.warning(f"User {user.id} ({user.role.value}) refused {action.value} on unit {unit.id}")
            raise APIError(ErrorCode.UNAUTHORIZED_ROLE, status.HTTP_403_FORBIDDEN)

        previous = unit.current_status
        target = next_status(previous, action)
        if target is None:
            code = ErrorCode.INVALID_SEQUENCE
            if previous == UnitStatus.CREATED and action in (ScanAction.INBOUND, ScanAction.OUTBOUND):
                code = ErrorCode.NOT_PICKED_UP
            logger.warning(f"Rejected {action.value} on unit {unit.id} in status {previous.value}")
            raise APIError(code, status.HTTP_409_CONFLICT)

        has_damage = req.has_damage or action == ScanAction.DAMAGE
        evidence = Evidence(
            quantity_confirmed=req.quantity_confirmed,
            has_damage=has_damage,
            damage_description=req.damage_description or "",
            photo_count=self._pending_photo_count(unit, photo_type_for(action, has_damage)),
            recipient_name=req.recipient_name or "",
            signature=req.signature_image or "",
            vehicle_plate=req.vehicle_plate or "",
        )
        missing = missing_evidence(action, evidence)
        if missing:
            raise APIError(
                ErrorCode.MISSING_EVIDENCE,
                status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=" ".join(item.hint for item in missing),
                extra={"missing": [item.code for item in missing]}
            )

        warehouse = None
        if action in (ScanAction.INBOUND, ScanAction.OUTBOUND) or user.role == UserRole.WAREHOUSE:
            warehouse = self._resolve_warehouse(user, req.warehouse_id)

        now = datetime.utcnow()
        log = ScanLog(
            unit_id=unit.id,
            action=action,
            previous_status=previous,
            new_status=target,
            scanned_by_id=user.id,
            scanned_by_role=user.role,
            scanned_by_name=user.full_name,
            warehouse_id=warehouse.id if warehouse else None,
            warehouse_name=warehouse.name if warehouse else None,
            latitude=req.latitude,
            longitude=req.longitude,
            has_damage=has_damage,
            damage_description=req.damage_description if has_damage else None,
            quantity_confirmed=req.quantity_confirmed,
            vehicle_plate=req.vehicle_plate,
            notes=req.notes,
            scanned_at=now
        )
        self.session.add(log)

        if action == ScanAction.DELIVERED:
            self._record_delivery(user, unit, req, now)

        unit.current_status = target
        # A damage report leaves the photo window of the pending checkpoint open
        if action != ScanAction.DAMAGE:
            unit.last_scan_at = now
        self._rotate_token(unit, action)
        self.session.add(unit)

        self._advance_shipment(shipment, unit, action, now)

        dispute = None
        if has_damage and action in (ScanAction.PICKUP, ScanAction.DAMAGE):
            self.session.flush()
            dispute = DisputeService(self.session).open_auto_dispute(
                user=user,
                unit=unit,
                dispute_type=dispute_type_for_status(previous),
                description=req.damage_description or ""
            )

        self.session.commit()
        self.session.refresh(log)
        self.session.refresh(unit)

        logger.info(
            f"Unit {unit.id} {previous.value} -> {target.value} via {action.value} "
            f"by {user.role.value} {user.id}")

        return ScanResult(
            scan=ScanLogRead.model_validate(log),
            unit_status=unit.current_status,
            new_token=unit.qr_token,
            qr_code_url=unit.qr_code_url,
            dispute_id=dispute.id if dispute else None
        )

    def _record_delivery(self, user: User, unit: ShipmentUnit, req: ScanRequest, now: datetime) -> None:
        signature_url = save_signature(req.signature_image)
        self._record_photo(
            user, unit, PhotoType.SIGNATURE, signature_url,
            caption=req.recipient_name, latitude=req.latitude, longitude=req.longitude)
        self.session.add(ProofOfDelivery(
            unit_id=unit.id,
            recipient_name=req.recipient_name.strip(),
            signature_url=signature_url,
            delivery_notes=req.notes,
            delivered_by_id=user.id,
            delivered_by_name=user.full_name,
            latitude=req.latitude,
            longitude=req.longitude,
            delivered_at=now
        ))
        unit.delivered_at = now

    def _advance_shipment(self, shipment: Shipment, unit: ShipmentUnit, action: ScanAction, now: datetime) -> None:
        if action == ScanAction.PICKUP and shipment.status in (ShipmentStatus.OPEN, ShipmentStatus.ASSIGNED):
            shipment.status = ShipmentStatus.IN_TRANSIT
            self.session.add(shipment)

        elif action == ScanAction.DELIVERED:
            others_delivered = all(
                other.current_status == UnitStatus.DELIVERED
                for other in shipment.units if other.id != unit.id
            )
            if others_delivered:
                shipment.status = ShipmentStatus.DELIVERED
                shipment.delivered_at = now
                self.session.add(shipment)
                if shipment.carrier_id:
                    carrier = self.session.get(CarrierProfile, shipment.carrier_id)
                    carrier.total_deliveries += 1
                    self.session.add(carrier)
                logger.info(f"Shipment {shipment.tracking_number} fully delivered")

    def sign_delivery(self, user: User, req: SignatureRequest) -> ScanResult:
        """Delivery confirmation: proof of delivery plus the DELIVERED transition."""
        return self.scan(user, ScanRequest(
            token=req.token,
            action=ScanAction.DELIVERED,
            recipient_name=req.recipient_name,
            signature_image=req.signature_image,
            notes=req.delivery_notes,
            latitude=req.latitude,
            longitude=req.longitude
        ))
