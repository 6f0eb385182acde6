from fastapi import APIRouter, Depends, status, BackgroundTasks
from typing import List
import uuid

from app.db.schema import User, UserRole
from app.core.dependencies import get_bid_service, get_current_user, require_roles
from app.services.bid import BidService
from app.models.shipment import BidCreate, BidRead

router = APIRouter()


@router.post(
    "",
    response_model=BidRead,
    status_code=status.HTTP_201_CREATED,
    summary="Place a bid",
    description="One active bid per shipment. Counts toward the plan's monthly bid allowance. (Carriers Only)"
)
def place_bid(
    data: BidCreate,
    current_user: User = Depends(require_roles(UserRole.CARRIER)),
    service: BidService = Depends(get_bid_service)
):
    return service.place_bid(current_user, data)


@router.get(
    "/my-bids",
    response_model=List[BidRead],
    status_code=status.HTTP_200_OK,
    summary="My bids"
)
def list_my_bids(
    current_user: User = Depends(require_roles(UserRole.CARRIER)),
    service: BidService = Depends(get_bid_service)
):
    return service.list_my_bids(current_user)


@router.post(
    "/{bid_id}/select",
    response_model=BidRead,
    status_code=status.HTTP_200_OK,
    summary="Accept a bid",
    description="Assigns the shipment to the bidding carrier and rejects the other bids. (Shipment owner Only)"
)
def select_bid(
    bid_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: BidService = Depends(get_bid_service)
):
    return service.select_bid(current_user, bid_id, background_tasks)


@router.delete(
    "/{bid_id}",
    status_code=status.HTTP_200_OK,
    summary="Withdraw a bid",
    description="Only pending bids can be withdrawn."
)
def withdraw_bid(
    bid_id: uuid.UUID,
    current_user: User = Depends(require_roles(UserRole.CARRIER)),
    service: BidService = Depends(get_bid_service)
):
    return service.withdraw_bid(current_user, bid_id)
