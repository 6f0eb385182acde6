from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from loguru import logger
from typing import List, Optional
import uuid

from app.db.schema import User, UserRole
from app.core.dependencies import get_carrier_service, require_roles
from app.services.carrier import CarrierService
from app.models.carrier import (
    AvailabilityUpdate, CarrierProfileRead, CarrierProfileUpdate, CarrierPublic,
    DriverCreate, DriverRead, DriverUpdate, PlansResponse, SubscriptionUpdate,
    VehicleCreate, VehicleRead, VehicleUpdate, VerificationCreate, VerificationList,
    VerificationRead, VerificationReview
)

router = APIRouter()

carrier_only = require_roles(UserRole.CARRIER)
admin_only = require_roles(UserRole.ADMIN)


# ==========================================================================
# PROFILE
# ==========================================================================

@router.get(
    "",
    response_model=List[CarrierPublic],
    status_code=status.HTTP_200_OK,
    summary="Carrier directory",
    description="Public list of carriers, best rated first."
)
def list_carriers(
    q: Optional[str] = None,
    country: Optional[str] = None,
    verified: bool = False,
    service: CarrierService = Depends(get_carrier_service)
):
    return service.list_directory(search=q, country=country, verified_only=verified)


@router.get(
    "/profile",
    response_model=CarrierProfileRead,
    status_code=status.HTTP_200_OK,
    summary="My company profile"
)
def get_profile(
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    return service.get_profile(current_user)


@router.put(
    "/profile",
    response_model=CarrierProfileRead,
    status_code=status.HTTP_200_OK,
    summary="Update my company profile"
)
def update_profile(
    data: CarrierProfileUpdate,
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    return service.update_profile(current_user, data)


# ==========================================================================
# VEHICLES
# ==========================================================================

@router.get(
    "/vehicles",
    response_model=List[VehicleRead],
    status_code=status.HTTP_200_OK,
    summary="List my vehicles"
)
def list_vehicles(
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    return service.list_vehicles(current_user)


@router.post(
    "/vehicles",
    response_model=VehicleRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register a vehicle",
    description="Rejected with PLAN_LIMIT_REACHED once the subscription's vehicle limit is reached."
)
def add_vehicle(
    data: VehicleCreate,
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    try:
        return service.add_vehicle(current_user, data)
    except ValueError as e:
        logger.warning(f"Vehicle registration failed: {e}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.put(
    "/vehicles/{vehicle_id}",
    response_model=VehicleRead,
    status_code=status.HTTP_200_OK,
    summary="Update a vehicle"
)
def update_vehicle(
    vehicle_id: uuid.UUID,
    data: VehicleUpdate,
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    try:
        return service.update_vehicle(current_user, vehicle_id, data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.put(
    "/vehicles/{vehicle_id}/availability",
    response_model=VehicleRead,
    status_code=status.HTTP_200_OK,
    summary="Toggle vehicle availability"
)
def set_vehicle_availability(
    vehicle_id: uuid.UUID,
    data: AvailabilityUpdate,
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    return service.set_vehicle_availability(current_user, vehicle_id, data.available)


@router.delete(
    "/vehicles/{vehicle_id}",
    status_code=status.HTTP_200_OK,
    summary="Remove a vehicle"
)
def delete_vehicle(
    vehicle_id: uuid.UUID,
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    return service.delete_vehicle(current_user, vehicle_id)


# ==========================================================================
# DRIVERS
# ==========================================================================

@router.get(
    "/drivers",
    response_model=List[DriverRead],
    status_code=status.HTTP_200_OK,
    summary="List my drivers"
)
def list_drivers(
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    return service.list_drivers(current_user)


@router.post(
    "/drivers",
    response_model=DriverRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add a driver",
    description="Creates the driver's DRIVER login and links it to your company."
)
def add_driver(
    data: DriverCreate,
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    try:
        return service.add_driver(current_user, data)
    except ValueError as e:
        logger.warning(f"Driver creation failed: {e}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.put(
    "/drivers/{driver_id}",
    response_model=DriverRead,
    status_code=status.HTTP_200_OK,
    summary="Update a driver"
)
def update_driver(
    driver_id: uuid.UUID,
    data: DriverUpdate,
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    return service.update_driver(current_user, driver_id, data)


@router.put(
    "/drivers/{driver_id}/availability",
    response_model=DriverRead,
    status_code=status.HTTP_200_OK,
    summary="Toggle driver availability"
)
def set_driver_availability(
    driver_id: uuid.UUID,
    data: AvailabilityUpdate,
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    return service.set_driver_availability(current_user, driver_id, data.available)


@router.delete(
    "/drivers/{driver_id}",
    status_code=status.HTTP_200_OK,
    summary="Remove a driver"
)
def delete_driver(
    driver_id: uuid.UUID,
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    return service.delete_driver(current_user, driver_id)


# ==========================================================================
# SUBSCRIPTION
# ==========================================================================

@router.get(
    "/subscription/plans",
    response_model=PlansResponse,
    status_code=status.HTTP_200_OK,
    summary="Subscription plans",
    description="All plans, the current one, and the plan recommended for your fleet size."
)
def get_plans(
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    return service.get_plans(current_user)


@router.put(
    "/subscription",
    response_model=CarrierProfileRead,
    status_code=status.HTTP_200_OK,
    summary="Change subscription plan"
)
def change_subscription(
    data: SubscriptionUpdate,
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    try:
        return service.change_subscription(current_user, data.tier)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


# ==========================================================================
# VERIFICATION
# ==========================================================================

@router.get(
    "/verifications",
    response_model=VerificationList,
    status_code=status.HTTP_200_OK,
    summary="My verification checklist",
    description="One entry per document type; types never submitted are MISSING."
)
def list_verifications(
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    return service.list_verifications(current_user)


@router.post(
    "/verifications",
    response_model=VerificationList,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a verification document",
    description="Replaces any earlier document of the same type and sends it back to review."
)
def submit_verification(
    data: VerificationCreate,
    current_user: User = Depends(carrier_only),
    service: CarrierService = Depends(get_carrier_service)
):
    try:
        return service.submit_verification(current_user, data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get(
    "/verifications/pending",
    response_model=List[VerificationRead],
    status_code=status.HTTP_200_OK,
    summary="Documents waiting for review"
)
def list_pending_verifications(
    current_user: User = Depends(admin_only),
    service: CarrierService = Depends(get_carrier_service)
):
    return service.list_pending_verifications()


@router.put(
    "/verifications/{verification_id}/review",
    response_model=VerificationRead,
    status_code=status.HTTP_200_OK,
    summary="Approve or reject a document"
)
def review_verification(
    verification_id: uuid.UUID,
    data: VerificationReview,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(admin_only),
    service: CarrierService = Depends(get_carrier_service)
):
    try:
        return service.review_verification(current_user, verification_id, data, background_tasks)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


# Declared last so it does not shadow the fixed paths above
@router.get(
    "/{slug}",
    response_model=CarrierPublic,
    status_code=status.HTTP_200_OK,
    summary="Public carrier page"
)
def get_carrier(
    slug: str,
    service: CarrierService = Depends(get_carrier_service)
):
    return service.get_by_slug(slug)
