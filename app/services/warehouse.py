import uuid
from datetime import datetime
from typing import List

from fastapi import HTTPException
from loguru import logger
from sqlmodel import Session, col, func, select

from app.db.schema import (
    ScanAction, ScanLog, Shipment, ShipmentUnit, UnitStatus, User, UserRole, Warehouse
)
from app.models.warehouse import (
    WarehouseCreate, WarehouseHistory, WarehouseScan, WarehouseStats, WarehouseUpdate
)


class WarehouseService:
    def __init__(self, session: Session):
        self.session = session

    def _get_owned(self, user: User, warehouse_id: uuid.UUID) -> Warehouse:
        warehouse = self.session.get(Warehouse, warehouse_id)
        if not warehouse:
            raise HTTPException(status_code=404, detail="Warehouse not found.")
        if user.role != UserRole.ADMIN and warehouse.owner_id != user.id:
            raise HTTPException(
                status_code=403, detail="You do not have access to this warehouse.")
        return warehouse

    def list_warehouses(self, user: User) -> List[Warehouse]:
        """Admins see every warehouse, operators their own."""
        statement = select(Warehouse)
        if user.role != UserRole.ADMIN:
            statement = statement.where(Warehouse.owner_id == user.id)
        return self.session.exec(statement.order_by(Warehouse.created_at)).all()

    def get_warehouse(self, user: User, warehouse_id: uuid.UUID) -> Warehouse:
        return self._get_owned(user, warehouse_id)

    def create_warehouse(self, user: User, data: WarehouseCreate) -> Warehouse:
        warehouse = Warehouse(
            owner_id=user.id,
            name=data.name,
            address=data.address,
            city=data.city,
            country=data.country.upper(),
            capacity_m2=data.capacity_m2
        )
        self.session.add(warehouse)
        self.session.commit()
        self.session.refresh(warehouse)

        logger.info(f"Warehouse '{warehouse.name}' registered by {user.id}")
        return warehouse

    def update_warehouse(self, user: User, warehouse_id: uuid.UUID, data: WarehouseUpdate) -> Warehouse:
        warehouse = self._get_owned(user, warehouse_id)

        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(warehouse, key, value.upper() if key == "country" and value else value)

        self.session.add(warehouse)
        self.session.commit()
        self.session.refresh(warehouse)
        return warehouse

    def delete_warehouse(self, user: User, warehouse_id: uuid.UUID):
        """Deactivates rather than deletes: scan logs keep referencing it."""
        warehouse = self._get_owned(user, warehouse_id)
        warehouse.is_active = False
        self.session.add(warehouse)
        self.session.commit()
        return {"message": "Warehouse deactivated successfully."}

    # --- Dashboard ---

    def _warehouse_ids(self, user: User) -> List[uuid.UUID]:
        return [warehouse.id for warehouse in self.list_warehouses(user)]

    def _count_units(self, warehouse_ids: List[uuid.UUID], *conditions) -> int:
        return self.session.exec(
            select(func.count(func.distinct(ScanLog.unit_id)))
            .select_from(ScanLog)
            .join(ShipmentUnit, ShipmentUnit.id == ScanLog.unit_id)
            .where(col(ScanLog.warehouse_id).in_(warehouse_ids), *conditions)
        ).one()

    def get_stats(self, user: User) -> WarehouseStats:
        warehouse_ids = self._warehouse_ids(user)
        if not warehouse_ids:
            return WarehouseStats(today_inbound=0, today_outbound=0, current_inventory=0, total_processed=0)

        midnight = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        return WarehouseStats(
            today_inbound=self._count_units(
                warehouse_ids, ScanLog.action == ScanAction.INBOUND, ScanLog.scanned_at >= midnight),
            today_outbound=self._count_units(
                warehouse_ids, ScanLog.action == ScanAction.OUTBOUND, ScanLog.scanned_at >= midnight),
            # A unit enters a warehouse once, so its INBOUND scan says where it sits
            current_inventory=self._count_units(
                warehouse_ids, ScanLog.action == ScanAction.INBOUND,
                ShipmentUnit.current_status == UnitStatus.IN_WAREHOUSE),
            total_processed=self._count_units(warehouse_ids, ScanLog.action == ScanAction.INBOUND)
        )

    def get_history(self, user: User, limit: int = 20) -> WarehouseHistory:
        """Most recent checkpoint scans recorded at the operator's warehouses, newest first."""
        warehouse_ids = self._warehouse_ids(user)
        if not warehouse_ids:
            return WarehouseHistory(history=[])

        rows = self.session.exec(
            select(ScanLog, ShipmentUnit, Shipment)
            .join(ShipmentUnit, ShipmentUnit.id == ScanLog.unit_id)
            .join(Shipment, Shipment.id == ShipmentUnit.shipment_id)
            .where(col(ScanLog.warehouse_id).in_(warehouse_ids))
            .order_by(col(ScanLog.scanned_at).desc())
            .limit(limit)
        ).all()

        return WarehouseHistory(history=[
            WarehouseScan(
                id=log.id,
                action=log.action,
                unit_number=unit.unit_number,
                total_units=unit.total_units,
                tracking_number=shipment.tracking_number,
                warehouse_name=log.warehouse_name,
                scanned_by=log.scanned_by_name,
                timestamp=log.scanned_at
            )
            for log, unit, shipment in rows
        ])
