"""
════════════════════════════════════════════════════════════════════════════════════════════════════
PM STORAGE - Interface com o repositório de equipamento, templates e ordens de trabalho
════════════════════════════════════════════════════════════════════════════════════════════════════

The engine only talks to storage through `PMRepository`:
- equipment and templates by warehouse (read)
- PM work orders by equipment + template (+ status) (read)
- insert / update a work order (write)
- insert a PM work order unless its pair already has an open one (atomic write)

Implementations:
- InMemoryPMRepository: dict-backed store for tests and demos
- SqlAlchemyPMRepository: relational store; each call opens its own session
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import (
    EquipmentNotFound,
    StorageError,
    TemplateNotFound,
    WorkOrderNotFound,
)
from .models import (
    OPEN_STATUSES,
    Equipment,
    EquipmentRecord,
    PMTemplate,
    PMTemplateRecord,
    WorkOrder,
    WorkOrderRecord,
    WorkOrderStatus,
    WorkOrderType,
)


# ═══════════════════════════════════════════════════════════════════════════════
# INTERFACE
# ═══════════════════════════════════════════════════════════════════════════════

class PMRepository(ABC):
    """Storage collaborator used by the PM engine."""

    @abstractmethod
    def list_equipment(self, warehouse_id: str) -> List[Equipment]:
        """All equipment of a warehouse, whatever its status."""

    @abstractmethod
    def get_equipment(self, equipment_id: str) -> Equipment:
        """Raises EquipmentNotFound."""

    @abstractmethod
    def list_templates(self, warehouse_id: str) -> List[PMTemplate]:
        """All PM templates of a warehouse, active or not."""

    @abstractmethod
    def get_template(self, template_id: str) -> PMTemplate:
        """Raises TemplateNotFound."""

    @abstractmethod
    def list_pm_work_orders(
        self,
        equipment_id: str,
        template_id: Optional[str] = None,
        statuses: Optional[Iterable[WorkOrderStatus]] = None,
    ) -> List[WorkOrder]:
        """Preventive work orders of an equipment, optionally narrowed to one template and statuses."""

    @abstractmethod
    def get_work_order(self, work_order_id: str) -> WorkOrder:
        """Raises WorkOrderNotFound."""

    @abstractmethod
    def create_work_order(self, work_order: WorkOrder) -> WorkOrder:
        """Insert a new work order and return it as stored."""

    @abstractmethod
    def create_pm_work_order(self, work_order: WorkOrder) -> Tuple[WorkOrder, bool]:
        """
        Insert a PM work order unless its (equipment, template) pair already has an open one.

        The check and the insert are one atomic step. Returns `(stored, True)` when
        inserted, or `(existing_open, False)` when another open work order won.
        """

    @abstractmethod
    def update_work_order(self, work_order: WorkOrder) -> WorkOrder:
        """Persist status/completion changes of an existing work order."""

    def list_active_equipment(self, warehouse_id: str) -> List[Equipment]:
        return [e for e in self.list_equipment(warehouse_id) if e.is_active]

    def list_active_templates(self, warehouse_id: str) -> List[PMTemplate]:
        return [t for t in self.list_templates(warehouse_id) if t.active]

    def find_open_pm_work_order(self, equipment_id: str, template_id: str) -> Optional[WorkOrder]:
        open_orders = self.list_pm_work_orders(equipment_id, template_id, statuses=OPEN_STATUSES)
        open_orders.sort(key=lambda wo: wo.created_at)
        return open_orders[0] if open_orders else None


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY
# ═══════════════════════════════════════════════════════════════════════════════

class InMemoryPMRepository(PMRepository):
    """
    Dict-backed repository.

    Returned work orders are copies, so callers cannot change stored state
    without going through `update_work_order`.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._equipment: Dict[str, Equipment] = {}
        self._templates: Dict[str, PMTemplate] = {}
        self._work_orders: Dict[str, WorkOrder] = {}

    # Seeding helpers

    def add_equipment(self, *equipment: Equipment) -> None:
        with self._lock:
            for item in equipment:
                self._equipment[item.id] = item

    def add_template(self, *templates: PMTemplate) -> None:
        with self._lock:
            for item in templates:
                self._templates[item.id] = item

    def add_work_order(self, *work_orders: WorkOrder) -> None:
        with self._lock:
            for item in work_orders:
                self._work_orders[item.id] = replace(item)

    # PMRepository

    def list_equipment(self, warehouse_id: str) -> List[Equipment]:
        with self._lock:
            return [e for e in self._equipment.values() if e.warehouse_id == warehouse_id]

    def get_equipment(self, equipment_id: str) -> Equipment:
        with self._lock:
            if equipment_id not in self._equipment:
                raise EquipmentNotFound(equipment_id)
            return self._equipment[equipment_id]

    def list_templates(self, warehouse_id: str) -> List[PMTemplate]:
        with self._lock:
            return [t for t in self._templates.values() if t.warehouse_id == warehouse_id]

    def get_template(self, template_id: str) -> PMTemplate:
        with self._lock:
            if template_id not in self._templates:
                raise TemplateNotFound(template_id)
            return self._templates[template_id]

    def list_pm_work_orders(
        self,
        equipment_id: str,
        template_id: Optional[str] = None,
        statuses: Optional[Iterable[WorkOrderStatus]] = None,
    ) -> List[WorkOrder]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            return [
                replace(wo) for wo in self._work_orders.values()
                if wo.is_preventive
                and wo.equipment_id == equipment_id
                and (template_id is None or wo.template_id == template_id)
                and (wanted is None or wo.status in wanted)
            ]

    def get_work_order(self, work_order_id: str) -> WorkOrder:
        with self._lock:
            if work_order_id not in self._work_orders:
                raise WorkOrderNotFound(work_order_id)
            return replace(self._work_orders[work_order_id])

    def create_work_order(self, work_order: WorkOrder) -> WorkOrder:
        with self._lock:
            if work_order.id in self._work_orders:
                raise StorageError(f"Work order {work_order.id} already exists")
            self._work_orders[work_order.id] = replace(work_order)
            return replace(work_order)

    def create_pm_work_order(self, work_order: WorkOrder) -> Tuple[WorkOrder, bool]:
        with self._lock:
            existing = self.find_open_pm_work_order(work_order.equipment_id, work_order.template_id)
            if existing is not None:
                return existing, False
            return self.create_work_order(work_order), True

    def update_work_order(self, work_order: WorkOrder) -> WorkOrder:
        with self._lock:
            if work_order.id not in self._work_orders:
                raise WorkOrderNotFound(work_order.id)
            self._work_orders[work_order.id] = replace(work_order)
            return replace(work_order)


# ═══════════════════════════════════════════════════════════════════════════════
# SQLALCHEMY
# ═══════════════════════════════════════════════════════════════════════════════

class SqlAlchemyPMRepository(PMRepository):
    """
    Repository over the pm_* tables.

    Every call runs in a fresh session, so each read sees the latest committed
    state. Driver errors surface as StorageError.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def list_equipment(self, warehouse_id: str) -> List[Equipment]:
        stmt = (
            select(EquipmentRecord)
            .where(EquipmentRecord.warehouse_id == warehouse_id)
            .order_by(EquipmentRecord.id)
        )
        return self._fetch_all(stmt)

    def get_equipment(self, equipment_id: str) -> Equipment:
        record = self._fetch_one(EquipmentRecord, equipment_id)
        if record is None:
            raise EquipmentNotFound(equipment_id)
        return record

    def list_templates(self, warehouse_id: str) -> List[PMTemplate]:
        stmt = (
            select(PMTemplateRecord)
            .where(PMTemplateRecord.warehouse_id == warehouse_id)
            .order_by(PMTemplateRecord.id)
        )
        return self._fetch_all(stmt)

    def get_template(self, template_id: str) -> PMTemplate:
        record = self._fetch_one(PMTemplateRecord, template_id)
        if record is None:
            raise TemplateNotFound(template_id)
        return record

    def list_pm_work_orders(
        self,
        equipment_id: str,
        template_id: Optional[str] = None,
        statuses: Optional[Iterable[WorkOrderStatus]] = None,
    ) -> List[WorkOrder]:
        stmt = select(WorkOrderRecord).where(
            WorkOrderRecord.type == WorkOrderType.PREVENTIVE.value,
            WorkOrderRecord.equipment_id == equipment_id,
        )
        if template_id is not None:
            stmt = stmt.where(WorkOrderRecord.template_id == template_id)
        if statuses is not None:
            stmt = stmt.where(WorkOrderRecord.status.in_([WorkOrderStatus(s).value for s in statuses]))
        return self._fetch_all(stmt.order_by(WorkOrderRecord.created_at))

    def get_work_order(self, work_order_id: str) -> WorkOrder:
        record = self._fetch_one(WorkOrderRecord, work_order_id)
        if record is None:
            raise WorkOrderNotFound(work_order_id)
        return record

    def create_work_order(self, work_order: WorkOrder) -> WorkOrder:
        try:
            with self._session_factory() as session:
                record = WorkOrderRecord.from_domain(work_order)
                session.add(record)
                session.commit()
                return record.to_domain()
        except IntegrityError as e:
            raise StorageError(f"Failed to insert work order {work_order.work_order_number}: {e}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to insert work order: {e}") from e

    def create_pm_work_order(self, work_order: WorkOrder) -> Tuple[WorkOrder, bool]:
        # uq_pm_wo_open_pair rejects a concurrent open insert for the same pair
        try:
            with self._session_factory() as session:
                existing = session.scalars(
                    self._open_pair_stmt(work_order.equipment_id, work_order.template_id)
                ).first()
                if existing is not None:
                    return existing.to_domain(), False
                record = WorkOrderRecord.from_domain(work_order)
                session.add(record)
                session.commit()
                return record.to_domain(), True
        except IntegrityError as e:
            existing = self.find_open_pm_work_order(work_order.equipment_id, work_order.template_id)
            if existing is not None:
                return existing, False
            raise StorageError(f"Failed to insert work order {work_order.work_order_number}: {e}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to insert work order: {e}") from e

    def update_work_order(self, work_order: WorkOrder) -> WorkOrder:
        try:
            with self._session_factory() as session:
                record = session.get(WorkOrderRecord, work_order.id)
                if record is None:
                    raise WorkOrderNotFound(work_order.id)
                record.status = work_order.status.value
                record.priority = work_order.priority.value
                record.due_date = work_order.due_date
                record.completed_at = work_order.completed_at
                record.notes = work_order.notes
                session.commit()
                return record.to_domain()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update work order {work_order.id}: {e}") from e

    @staticmethod
    def _open_pair_stmt(equipment_id: str, template_id: Optional[str]):
        return (
            select(WorkOrderRecord)
            .where(
                WorkOrderRecord.type == WorkOrderType.PREVENTIVE.value,
                WorkOrderRecord.equipment_id == equipment_id,
                WorkOrderRecord.template_id == template_id,
                WorkOrderRecord.status.in_([s.value for s in OPEN_STATUSES]),
            )
            .order_by(WorkOrderRecord.created_at)
        )

    def _fetch_all(self, stmt) -> list:
        try:
            with self._session_factory() as session:
                return [record.to_domain() for record in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise StorageError(f"Storage read failed: {e}") from e

    def _fetch_one(self, model, key: str):
        try:
            with self._session_factory() as session:
                record = session.get(model, key)
                return record.to_domain() if record is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"Storage read failed: {e}") from e
