from fastapi import APIRouter, Depends, Query, status, BackgroundTasks
from typing import Optional
import uuid

from app.db.schema import DisputeStatus, DisputeType, User, UserRole
from app.core.dependencies import get_current_user, get_dispute_service, require_roles
from app.services.dispute import DisputeService
from app.models.dispute import (
    CommentCreate, CommentRead, DisputeCreate, DisputePage, DisputeRead,
    ResolvePayload, StatusUpdate
)

router = APIRouter()


@router.post(
    "",
    response_model=DisputeRead,
    status_code=status.HTTP_201_CREATED,
    summary="Open a dispute",
    description="Within 48 hours of delivery, one unresolved dispute per unit, damage photos required."
)
def create_dispute(
    data: DisputeCreate,
    current_user: User = Depends(get_current_user),
    service: DisputeService = Depends(get_dispute_service)
):
    return service.create_dispute(current_user, data)


@router.get(
    "/my",
    response_model=DisputePage,
    status_code=status.HTTP_200_OK,
    summary="My disputes",
    description="Disputes you opened or are a party to."
)
def list_my_disputes(
    status_filter: Optional[DisputeStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: DisputeService = Depends(get_dispute_service)
):
    return service.list_my_disputes(current_user, status_filter, page, limit)


@router.get(
    "/all",
    response_model=DisputePage,
    status_code=status.HTTP_200_OK,
    summary="All disputes",
    description="Every dispute on the platform. (Admins Only)"
)
def list_all_disputes(
    status_filter: Optional[DisputeStatus] = Query(default=None, alias="status"),
    type_filter: Optional[DisputeType] = Query(default=None, alias="type"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
    service: DisputeService = Depends(get_dispute_service)
):
    return service.list_all_disputes(status_filter, type_filter, page, limit)


@router.get(
    "/{dispute_id}",
    response_model=DisputeRead,
    status_code=status.HTTP_200_OK,
    summary="Dispute details",
    description="Evidence, liability analysis, resolution and comments. Internal notes are shown to admins only."
)
def get_dispute(
    dispute_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    service: DisputeService = Depends(get_dispute_service)
):
    return service.get_dispute(current_user, dispute_id)


@router.post(
    "/{dispute_id}/comments",
    response_model=CommentRead,
    status_code=status.HTTP_201_CREATED,
    summary="Comment on a dispute",
    description="Closed once the evidence is complete."
)
def add_comment(
    dispute_id: uuid.UUID,
    data: CommentCreate,
    current_user: User = Depends(get_current_user),
    service: DisputeService = Depends(get_dispute_service)
):
    return service.add_comment(current_user, dispute_id, data)


@router.patch(
    "/{dispute_id}/status",
    response_model=DisputeRead,
    status_code=status.HTTP_200_OK,
    summary="Advance dispute status",
    description="One step forward at a time. EVIDENCE_COMPLETE freezes the evidence. (Admins Only)"
)
def update_status(
    dispute_id: uuid.UUID,
    data: StatusUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
    service: DisputeService = Depends(get_dispute_service)
):
    return service.update_status(current_user, dispute_id, data.status, background_tasks)


@router.post(
    "/{dispute_id}/resolve",
    response_model=DisputeRead,
    status_code=status.HTTP_200_OK,
    summary="Resolve a dispute",
    description="Final liability, compensation and optional carrier rating impact. (Admins Only)"
)
def resolve_dispute(
    dispute_id: uuid.UUID,
    data: ResolvePayload,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
    service: DisputeService = Depends(get_dispute_service)
):
    return service.resolve(current_user, dispute_id, data, background_tasks)
