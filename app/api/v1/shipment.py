from fastapi import APIRouter, Depends, status, BackgroundTasks
from typing import List
import uuid

from app.db.schema import User, UserRole
from app.core.dependencies import (
    get_bid_service, get_current_user, get_shipment_service, require_roles
)
from app.services.bid import BidService
from app.services.shipment import ShipmentService
from app.models.shipment import BidRead, ShipmentCreate, ShipmentDetail, ShipmentRead

router = APIRouter()


@router.post(
    "",
    response_model=ShipmentDetail,
    status_code=status.HTTP_201_CREATED,
    summary="Post a shipment",
    description="Creates the shipment and one QR-labelled unit per physical item. (Shippers Only)"
)
def create_shipment(
    data: ShipmentCreate,
    current_user: User = Depends(require_roles(UserRole.SHIPPER)),
    service: ShipmentService = Depends(get_shipment_service)
):
    return service.create_shipment(current_user, data)


@router.get(
    "/my",
    response_model=List[ShipmentRead],
    status_code=status.HTTP_200_OK,
    summary="My shipments",
    description="Shippers: posted loads. Carriers and drivers: assigned loads."
)
def list_my_shipments(
    current_user: User = Depends(get_current_user),
    service: ShipmentService = Depends(get_shipment_service)
):
    return service.list_my_shipments(current_user)


@router.get(
    "/open",
    response_model=List[ShipmentRead],
    status_code=status.HTTP_200_OK,
    summary="Open loads",
    description="Shipments currently accepting bids. (Carriers Only)"
)
def list_open_shipments(
    current_user: User = Depends(require_roles(UserRole.CARRIER)),
    service: ShipmentService = Depends(get_shipment_service)
):
    return service.list_open_shipments()


@router.get(
    "/{shipment_id}",
    response_model=ShipmentDetail,
    status_code=status.HTTP_200_OK,
    summary="Shipment details"
)
def get_shipment(
    shipment_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    service: ShipmentService = Depends(get_shipment_service)
):
    return service.get_shipment(current_user, shipment_id)


@router.get(
    "/{shipment_id}/bids",
    response_model=List[BidRead],
    status_code=status.HTTP_200_OK,
    summary="Bids on my shipment",
    description="Cheapest first. (Shipment owner Only)"
)
def list_shipment_bids(
    shipment_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    shipments: ShipmentService = Depends(get_shipment_service),
    bids: BidService = Depends(get_bid_service)
):
    shipment = shipments.get_owned_shipment(current_user, shipment_id)
    return bids.list_shipment_bids(shipment)


@router.delete(
    "/{shipment_id}",
    status_code=status.HTTP_200_OK,
    summary="Cancel a shipment",
    description="Only while the shipment is still OPEN."
)
def cancel_shipment(
    shipment_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: ShipmentService = Depends(get_shipment_service)
):
    return service.cancel_shipment(current_user, shipment_id, background_tasks)
