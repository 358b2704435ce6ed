"""
════════════════════════════════════════════════════════════════════════════════════════════════════
PM GENERATOR - Geração de Ordens de Trabalho Preventivas
════════════════════════════════════════════════════════════════════════════════════════════════════

Percorre o equipamento ativo de um armazém contra os templates PM ativos do mesmo
modelo e cria uma ordem de trabalho para cada par vencido (due/overdue).

Single-open invariant:
    At most one open PM work order exists per (equipment, template) pair.
    The generator never inserts on its own read: it calls
    `PMRepository.create_pm_work_order`, which checks and inserts as one step
    (under the store lock in memory, and guarded by the partial unique index
    `uq_pm_wo_open_pair` in SQL). A losing insert is reported as a
    duplicate-open-work-order skip.

Cancellation is checked before every insert, so a pass abandoned after a
timeout stops writing at the next pair.

Every pair that does not produce a work order is recorded with a reason, and a
failure on one pair is recorded as a PairError without stopping the batch.
Only the initial equipment/template fetch can fail the whole call.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from .exceptions import PMEngineError, StorageError
from .models import (
    ChecklistItem,
    Equipment,
    PMEvent,
    PMSchedule,
    PMTemplate,
    WorkOrder,
    WorkOrderStatus,
    WorkOrderType,
    priority_for,
    utc_now,
)
from .schedule import ScheduleResolver
from .storage import PMRepository

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
PMEventListener = Callable[[PMEvent], None]


# ═══════════════════════════════════════════════════════════════════════════════
# RESULT TYPES
# ═══════════════════════════════════════════════════════════════════════════════

class SkipReason(str, Enum):
    """Why a pair (or a whole equipment/template) produced no work order."""
    DUPLICATE_OPEN_WORK_ORDER = "duplicate-open-work-order"
    NOT_DUE = "not-due"
    EQUIPMENT_INACTIVE = "equipment-inactive"
    TEMPLATE_INACTIVE = "template-inactive"
    NO_MATCHING_TEMPLATE = "no-matching-template"


@dataclass
class SkippedPair:
    reason: SkipReason
    equipment_id: Optional[str] = None
    template_id: Optional[str] = None
    detail: str = ""


@dataclass
class PairError:
    equipment_id: str
    template_id: str
    error_type: str
    message: str

    def __str__(self) -> str:
        return f"equipment={self.equipment_id} template={self.template_id}: {self.error_type}: {self.message}"


@dataclass
class GenerationResult:
    """Outcome of one generation pass. Filled in place while the pass runs."""
    warehouse_id: str
    created: List[WorkOrder] = field(default_factory=list)
    skipped: List[SkippedPair] = field(default_factory=list)
    errors: List[PairError] = field(default_factory=list)
    cancelled: bool = False

    def snapshot(self) -> "GenerationResult":
        """Copy of the result as it is now; later progress of the pass does not show in it."""
        return replace(
            self,
            created=list(self.created),
            skipped=list(self.skipped),
            errors=list(self.errors),
        )

    def skipped_for(self, reason: SkipReason) -> List[SkippedPair]:
        return [s for s in self.skipped if s.reason == reason]

    def summary(self) -> Dict[str, int]:
        return {
            "created": len(self.created),
            "skipped": len(self.skipped),
            "errors": len(self.errors),
        }


# ═══════════════════════════════════════════════════════════════════════════════
# GENERATOR
# ═══════════════════════════════════════════════════════════════════════════════

class PMGenerator:
    """
    Creates PM work orders for due and overdue pairs of a warehouse.

    Not serialized on its own: callers go through the automation coordinator
    so that two passes over the same warehouse never overlap.
    """

    def __init__(
        self,
        repository: PMRepository,
        resolver: Optional[ScheduleResolver] = None,
        clock: Optional[Clock] = None,
        listeners: Optional[List[PMEventListener]] = None,
    ):
        self.repository = repository
        self.resolver = resolver or ScheduleResolver()
        self._clock = clock or utc_now
        self._listeners: List[PMEventListener] = list(listeners or [])

    def add_listener(self, listener: PMEventListener) -> None:
        self._listeners.append(listener)

    def generate_work_orders(
        self,
        warehouse_id: str,
        cancel_event: Optional[threading.Event] = None,
        result: Optional[GenerationResult] = None,
    ) -> GenerationResult:
        """
        Run one generation pass over a warehouse.

        Args:
            warehouse_id: Warehouse to scan
            cancel_event: Checked between equipment and before each insert; when
                set the pass stops and the result is flagged as cancelled
            result: Result object to fill in place (lets a caller read partial
                progress after a timeout)

        Raises:
            StorageError: if the equipment or template fetch fails
        """
        result = result if result is not None else GenerationResult(warehouse_id=warehouse_id)
        today = self._clock().date()

        equipment, templates = self._load_warehouse(warehouse_id)

        templates_by_model: Dict[str, List[PMTemplate]] = {}
        for template in templates:
            if not template.active:
                result.skipped.append(SkippedPair(SkipReason.TEMPLATE_INACTIVE, template_id=template.id))
                continue
            templates_by_model.setdefault(template.model, []).append(template)

        for equip in equipment:
            if self._cancelled(cancel_event, result):
                break

            if not equip.is_active:
                result.skipped.append(SkippedPair(
                    SkipReason.EQUIPMENT_INACTIVE,
                    equipment_id=equip.id,
                    detail=f"status={equip.status.value}",
                ))
                continue

            matching = templates_by_model.get(equip.model, [])
            if not matching:
                result.skipped.append(SkippedPair(
                    SkipReason.NO_MATCHING_TEMPLATE,
                    equipment_id=equip.id,
                    detail=f"model={equip.model}",
                ))
                continue

            for template in matching:
                if self._cancelled(cancel_event, result):
                    break
                try:
                    self._process_pair(equip, template, today, result, cancel_event)
                except Exception as e:
                    error = PairError(equip.id, template.id, type(e).__name__, str(e))
                    result.errors.append(error)
                    logger.warning(f"PM pair failed, continuing batch: {error}")

        logger.info(
            f"PM generation for warehouse {warehouse_id}: "
            f"{len(result.created)} created, {len(result.skipped)} skipped, {len(result.errors)} errors"
        )
        return result

    # ═══════════════════════════════════════════════════════════════════════════
    # PRIVATE METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    def _load_warehouse(self, warehouse_id: str):
        try:
            equipment = sorted(self.repository.list_equipment(warehouse_id), key=lambda e: e.id)
            templates = sorted(self.repository.list_templates(warehouse_id), key=lambda t: t.id)
        except PMEngineError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to load warehouse {warehouse_id}: {e}") from e
        return equipment, templates

    def _process_pair(
        self,
        equipment: Equipment,
        template: PMTemplate,
        today: date,
        result: GenerationResult,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        history = self.repository.list_pm_work_orders(equipment.id, template.id)
        schedule = self.resolver.resolve(equipment, template, history, today)

        if not schedule.needs_work_order:
            result.skipped.append(SkippedPair(
                SkipReason.NOT_DUE,
                equipment_id=equipment.id,
                template_id=template.id,
                detail=f"next due {schedule.next_due_date.isoformat()}",
            ))
            return

        if self._cancelled(cancel_event, result):
            return

        work_order, inserted = self.repository.create_pm_work_order(
            self._build_work_order(equipment, template, schedule)
        )
        if not inserted:
            logger.debug(f"Skipping duplicate PM for {equipment.id}/{template.id}: {work_order.work_order_number}")
            result.skipped.append(SkippedPair(
                SkipReason.DUPLICATE_OPEN_WORK_ORDER,
                equipment_id=equipment.id,
                template_id=template.id,
                detail=work_order.work_order_number,
            ))
            return

        result.created.append(work_order)
        logger.info(
            f"Created PM {work_order.work_order_number} for {equipment.id} "
            f"({template.component} - {template.action}), due {schedule.next_due_date.isoformat()}"
        )
        self._emit(PMEvent(kind="pm_due", work_order=work_order, equipment=equipment, template=template))

    @staticmethod
    def _cancelled(cancel_event: Optional[threading.Event], result: GenerationResult) -> bool:
        if cancel_event is None or not cancel_event.is_set():
            return False
        if not result.cancelled:
            logger.warning(f"PM generation for warehouse {result.warehouse_id} cancelled")
            result.cancelled = True
        return True

    def _build_work_order(self, equipment: Equipment, template: PMTemplate, schedule: PMSchedule) -> WorkOrder:
        now = self._clock()
        return WorkOrder(
            id=str(uuid.uuid4()),
            work_order_number=self._generate_wo_number(now),
            type=WorkOrderType.PREVENTIVE,
            status=WorkOrderStatus.NEW,
            priority=priority_for(equipment.criticality),
            equipment_id=equipment.id,
            template_id=template.id,
            warehouse_id=equipment.warehouse_id,
            title=f"PM: {template.component} - {template.action}",
            description=f"Preventive Maintenance: {template.component} - {template.action}",
            # Overdue pairs keep the computed due date so reports show the real lateness.
            due_date=schedule.next_due_date,
            created_at=now,
            asset_model=equipment.model,
            notes=f"Auto-generated PM based on {schedule.frequency.value} maintenance schedule",
            estimated_hours=round(template.estimated_duration_minutes / 60, 2),
            checklist=[ChecklistItem(component=template.component, action=template.action)],
        )

    @staticmethod
    def _generate_wo_number(now: datetime) -> str:
        short_uuid = uuid.uuid4().hex[:6].upper()
        return f"PM-{now.strftime('%Y%m%d')}-{short_uuid}"

    def _emit(self, event: PMEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"PM event listener failed for {event.work_order.work_order_number}: {e}")
