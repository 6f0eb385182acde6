from fastapi import APIRouter, Depends, Query, status
from typing import List
import uuid

from app.db.schema import User, UserRole
from app.core.dependencies import get_warehouse_service, require_roles
from app.services.warehouse import WarehouseService
from app.models.warehouse import (
    WarehouseCreate, WarehouseHistory, WarehouseRead, WarehouseStats, WarehouseUpdate
)

router = APIRouter()

warehouse_operator = require_roles(UserRole.WAREHOUSE)


@router.get(
    "",
    response_model=List[WarehouseRead],
    status_code=status.HTTP_200_OK,
    summary="List warehouses",
    description="Your own warehouses; admins see all of them."
)
def list_warehouses(
    current_user: User = Depends(warehouse_operator),
    service: WarehouseService = Depends(get_warehouse_service)
):
    return service.list_warehouses(current_user)


@router.post(
    "",
    response_model=WarehouseRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register a warehouse"
)
def create_warehouse(
    data: WarehouseCreate,
    current_user: User = Depends(warehouse_operator),
    service: WarehouseService = Depends(get_warehouse_service)
):
    return service.create_warehouse(current_user, data)


@router.get(
    "/my/stats",
    response_model=WarehouseStats,
    status_code=status.HTTP_200_OK,
    summary="Dashboard counters",
    description="Today's inbound and outbound units, what is in stock now, and everything ever received."
)
def get_stats(
    current_user: User = Depends(warehouse_operator),
    service: WarehouseService = Depends(get_warehouse_service)
):
    return service.get_stats(current_user)


@router.get(
    "/my/history",
    response_model=WarehouseHistory,
    status_code=status.HTTP_200_OK,
    summary="Recent warehouse scans"
)
def get_history(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(warehouse_operator),
    service: WarehouseService = Depends(get_warehouse_service)
):
    return service.get_history(current_user, limit)


@router.get(
    "/{warehouse_id}",
    response_model=WarehouseRead,
    status_code=status.HTTP_200_OK,
    summary="Warehouse details"
)
def get_warehouse(
    warehouse_id: uuid.UUID,
    current_user: User = Depends(warehouse_operator),
    service: WarehouseService = Depends(get_warehouse_service)
):
    return service.get_warehouse(current_user, warehouse_id)


@router.put(
    "/{warehouse_id}",
    response_model=WarehouseRead,
    status_code=status.HTTP_200_OK,
    summary="Update a warehouse"
)
def update_warehouse(
    warehouse_id: uuid.UUID,
    data: WarehouseUpdate,
    current_user: User = Depends(warehouse_operator),
    service: WarehouseService = Depends(get_warehouse_service)
):
    return service.update_warehouse(current_user, warehouse_id, data)


@router.delete(
    "/{warehouse_id}",
    status_code=status.HTTP_200_OK,
    summary="Deactivate a warehouse"
)
def delete_warehouse(
    warehouse_id: uuid.UUID,
    current_user: User = Depends(warehouse_operator),
    service: WarehouseService = Depends(get_warehouse_service)
):
    return service.delete_warehouse(current_user, warehouse_id)
