from fastapi import APIRouter, Depends, status

from app.db.schema import User
from app.core.dependencies import get_current_user, get_qr_service
from app.services.qr import QRService
from app.models.qr import (
    AllowedActionsResponse, PhotoBatchResult, PhotoBatchUpload, PhotoRead,
    PhotoUpload, ScanRequest, ScanResult, SignatureRequest, TokenInfoResponse
)

router = APIRouter()


@router.get(
    "/token/{token}",
    response_model=TokenInfoResponse,
    status_code=status.HTTP_200_OK,
    summary="Resolve a scanned QR code",
    description=(
        "Public. Returns the unit, its shipment, scan history and photos. "
        "Delivered units answer 410 QR_EXPIRED; rotated tokens 409 TOKEN_ALREADY_USED."
    )
)
def get_token_info(
    token: str,
    service: QRService = Depends(get_qr_service)
):
    return service.get_token_info(token)


@router.get(
    "/token/{token}/actions",
    response_model=AllowedActionsResponse,
    status_code=status.HTTP_200_OK,
    summary="Actions available to the caller",
    description="Checkpoint actions the authenticated user may perform on this unit right now."
)
def get_allowed_actions(
    token: str,
    current_user: User = Depends(get_current_user),
    service: QRService = Depends(get_qr_service)
):
    return service.get_allowed_actions(current_user, token)


@router.post(
    "/photo",
    response_model=PhotoRead,
    status_code=status.HTTP_201_CREATED,
    summary="Upload an evidence photo",
    description="Base64 data URL body. Does not change the unit status."
)
def upload_photo(
    data: PhotoUpload,
    current_user: User = Depends(get_current_user),
    service: QRService = Depends(get_qr_service)
):
    return service.upload_photo(current_user, data)


@router.post(
    "/photos",
    response_model=PhotoBatchResult,
    status_code=status.HTTP_200_OK,
    summary="Upload several evidence photos",
    description="Processed with bounded concurrency; each image reports its own success or error code."
)
def upload_photos(
    data: PhotoBatchUpload,
    current_user: User = Depends(get_current_user),
    service: QRService = Depends(get_qr_service)
):
    return service.upload_photos(current_user, data)


@router.post(
    "/scan",
    response_model=ScanResult,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a checkpoint scan",
    description="Validates role, sequence and evidence, logs the scan and rotates the unit's QR token."
)
def scan(
    data: ScanRequest,
    current_user: User = Depends(get_current_user),
    service: QRService = Depends(get_qr_service)
):
    return service.scan(current_user, data)


@router.post(
    "/signature",
    response_model=ScanResult,
    status_code=status.HTTP_201_CREATED,
    summary="Confirm delivery",
    description="Records proof of delivery (recipient and signature) and marks the unit DELIVERED."
)
def sign_delivery(
    data: SignatureRequest,
    current_user: User = Depends(get_current_user),
    service: QRService = Depends(get_qr_service)
):
    return service.sign_delivery(current_user, data)
