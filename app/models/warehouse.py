from typing import List, Optional
from datetime import datetime
from uuid import UUID
from sqlmodel import SQLModel, Field

from app.db.schema import ScanAction


class WarehouseBase(SQLModel):
    name: str = Field(min_length=1, max_length=200)
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    country: str = Field(min_length=2, max_length=2)
    capacity_m2: Optional[float] = Field(default=None, gt=0)


class WarehouseCreate(WarehouseBase):
    pass


class WarehouseUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    capacity_m2: Optional[float] = Field(default=None, gt=0)
    is_active: Optional[bool] = None


class WarehouseRead(WarehouseBase):
    id: UUID
    owner_id: UUID
    is_active: bool
    created_at: datetime


class WarehouseStats(SQLModel):
    """Dashboard counters across every warehouse the operator runs. 'Today' starts at UTC midnight."""
    today_inbound: int
    today_outbound: int
    current_inventory: int
    total_processed: int


class WarehouseScan(SQLModel):
    id: UUID
    action: ScanAction
    unit_number: int
    total_units: int
    tracking_number: str
    warehouse_name: Optional[str] = None
    scanned_by: str
    timestamp: datetime


class WarehouseHistory(SQLModel):
    history: List[WarehouseScan]
