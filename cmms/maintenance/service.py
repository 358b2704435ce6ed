"""
════════════════════════════════════════════════════════════════════════════════════════════════════
PM ENGINE - Fachada do motor de manutenção preventiva
════════════════════════════════════════════════════════════════════════════════════════════════════

Single entry point for callers (HTTP router, timers, scripts):

    generate_work_orders(warehouse_id)      → GenerationResult
    run_automation(warehouse_id)            → RunReport
    compute_compliance(equipment_id, days)  → ComplianceRecord
    get_schedule(equipment_id)              → List[PMSchedule]

plus completion, forecast, fleet compliance, escalations and coordinator status.

Cross-warehouse access control is the caller's job.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from ..db import create_db_engine, create_session_factory, init_db
from ..settings import PMEngineSettings, get_settings
from .automation import AutomationRegistry, RunReport
from .compliance import ComplianceAggregator, ComplianceRecord, EscalationFact, FleetComplianceRecord
from .exceptions import InvalidFrequency
from .frequency import as_calendar_date
from .generator import GenerationResult, PMEventListener, PMGenerator
from .models import (
    ComplianceStatus,
    MaintenancePriority,
    PMSchedule,
    WorkOrder,
    WorkOrderStatus,
    priority_for,
    utc_now,
)
from .schedule import ScheduleResolver
from .storage import PMRepository, SqlAlchemyPMRepository

logger = logging.getLogger(__name__)


@dataclass
class ForecastEntry:
    equipment_id: str
    template_id: str
    model: str
    component: str
    action: str
    priority: MaintenancePriority
    next_due_date: date
    compliance_status: ComplianceStatus
    open_work_order_id: Optional[str] = None


@dataclass
class ScheduleForecast:
    """PM due in a date range, critical first then by date."""
    warehouse_id: str
    start: date
    end: date
    entries: List[ForecastEntry] = field(default_factory=list)
    by_priority: Dict[str, int] = field(default_factory=dict)
    by_model: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.entries)


class PMEngine:
    """
    Preventive maintenance engine.

    Args:
        repository: Storage collaborator
        settings: Engine settings (defaults to the loaded settings)
        clock: Source of "now"; one clock is shared by every component
        listeners: Callbacks receiving a PMEvent per created work order
    """

    def __init__(
        self,
        repository: PMRepository,
        settings: Optional[PMEngineSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        listeners: Optional[List[PMEventListener]] = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self._clock = clock or utc_now

        self.resolver = ScheduleResolver(lookahead_days=self.settings.lookahead_days)
        self.generator = PMGenerator(repository, self.resolver, self._clock, listeners)
        self.compliance = ComplianceAggregator(
            repository,
            self.resolver,
            self._clock,
            grace_period_days=self.settings.grace_period_days,
            compliance_target_percent=self.settings.compliance_target_percent,
        )
        self.automation = AutomationRegistry(
            self.generator,
            timeout_seconds=self.settings.run_timeout_seconds,
            clock=self._clock,
        )

    def add_listener(self, listener: PMEventListener) -> None:
        self.generator.add_listener(listener)

    # ═══════════════════════════════════════════════════════════════════════════
    # GENERATION
    # ═══════════════════════════════════════════════════════════════════════════

    def generate_work_orders(self, warehouse_id: str) -> GenerationResult:
        """
        Create PM work orders for every due/overdue pair of a warehouse.

        Serialized with automation runs of the same warehouse.

        Raises:
            RunAlreadyInProgress: if a pass is already running for the warehouse
            StorageError: if the equipment/template fetch fails
        """
        return self.automation.for_warehouse(warehouse_id).run_generation()

    def run_automation(self, warehouse_id: str) -> RunReport:
        """
        Raises:
            RunAlreadyInProgress: if a pass is already running for the warehouse
        """
        return self.automation.run_automation(warehouse_id)

    def automation_status(self, warehouse_id: str) -> Dict[str, Any]:
        return self.automation.for_warehouse(warehouse_id).status()

    # ═══════════════════════════════════════════════════════════════════════════
    # SCHEDULES
    # ═══════════════════════════════════════════════════════════════════════════

    def get_schedule(self, equipment_id: str) -> List[PMSchedule]:
        """
        Schedules of every active template matching the equipment model.

        Templates with an unsupported frequency are left out and logged.

        Raises:
            EquipmentNotFound: if the equipment does not exist
        """
        equipment = self.repository.get_equipment(equipment_id)
        today = self.today()
        history = self.repository.list_pm_work_orders(equipment.id)

        schedules = []
        for template in self.repository.list_active_templates(equipment.warehouse_id):
            if template.model != equipment.model:
                continue
            try:
                schedules.append(self.resolver.resolve(equipment, template, history, today))
            except InvalidFrequency as e:
                logger.warning(f"Schedule of {equipment.id}/{template.id} unavailable: {e}")
        schedules.sort(key=lambda s: (s.next_due_date, s.template_id))
        return schedules

    def get_pair_schedule(self, equipment_id: str, template_id: str) -> PMSchedule:
        """
        Raises:
            EquipmentNotFound, TemplateNotFound
            InvalidFrequency: if the template frequency is not supported
        """
        equipment = self.repository.get_equipment(equipment_id)
        template = self.repository.get_template(template_id)
        history = self.repository.list_pm_work_orders(equipment.id, template.id)
        return self.resolver.resolve(equipment, template, history, self.today())

    def forecast_schedule(self, warehouse_id: str, start: date, end: date) -> ScheduleForecast:
        if end < start:
            raise ValueError("end must not be before start")
        today = self.today()

        templates_by_model: Dict[str, list] = {}
        for template in self.repository.list_active_templates(warehouse_id):
            templates_by_model.setdefault(template.model, []).append(template)

        entries = []
        for equipment in self.repository.list_active_equipment(warehouse_id):
            matching = templates_by_model.get(equipment.model)
            if not matching:
                continue
            history = self.repository.list_pm_work_orders(equipment.id)
            for template in matching:
                try:
                    schedule = self.resolver.resolve(equipment, template, history, today)
                except InvalidFrequency as e:
                    logger.warning(f"Forecast skips {equipment.id}/{template.id}: {e}")
                    continue
                if not start <= schedule.next_due_date <= end:
                    continue
                entries.append(ForecastEntry(
                    equipment_id=equipment.id,
                    template_id=template.id,
                    model=equipment.model,
                    component=template.component,
                    action=template.action,
                    priority=priority_for(equipment.criticality),
                    next_due_date=schedule.next_due_date,
                    compliance_status=schedule.compliance_status,
                    open_work_order_id=schedule.open_work_order_id,
                ))

        entries.sort(key=lambda e: (e.priority.rank, e.next_due_date, e.equipment_id, e.template_id))
        return ScheduleForecast(
            warehouse_id=warehouse_id,
            start=start,
            end=end,
            entries=entries,
            by_priority=dict(Counter(e.priority.value for e in entries)),
            by_model=dict(Counter(e.model for e in entries)),
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # WORK ORDERS
    # ═══════════════════════════════════════════════════════════════════════════

    def complete_work_order(self, work_order_id: str, completed_at: Optional[datetime] = None) -> WorkOrder:
        """
        Mark a work order completed. Already closed work orders are returned unchanged.

        Raises:
            WorkOrderNotFound: if the work order does not exist
        """
        work_order = self.repository.get_work_order(work_order_id)
        if not work_order.is_open:
            logger.debug(f"Work order {work_order.work_order_number} already {work_order.status.value}")
            return work_order

        completed = replace(
            work_order,
            status=WorkOrderStatus.COMPLETED,
            completed_at=completed_at or self._clock(),
        )
        stored = self.repository.update_work_order(completed)
        logger.info(f"Completed PM {stored.work_order_number} for {stored.equipment_id}")
        return stored

    # ═══════════════════════════════════════════════════════════════════════════
    # COMPLIANCE
    # ═══════════════════════════════════════════════════════════════════════════

    def compute_compliance(self, equipment_id: str, window_days: Optional[int] = None) -> ComplianceRecord:
        return self.compliance.compute_compliance(equipment_id, self._window(window_days))

    def compute_fleet_compliance(self, warehouse_id: str, window_days: Optional[int] = None) -> FleetComplianceRecord:
        return self.compliance.compute_fleet_compliance(warehouse_id, self._window(window_days))

    def escalations(self, warehouse_id: str, window_days: Optional[int] = None) -> List[EscalationFact]:
        return self.compliance.escalations(warehouse_id, self._window(window_days))

    def _window(self, window_days: Optional[int]) -> int:
        return self.settings.compliance_window_days if window_days is None else window_days

    def today(self) -> date:
        return as_calendar_date(self._clock())


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON
# ═══════════════════════════════════════════════════════════════════════════════

_engine: Optional[PMEngine] = None


def build_pm_engine(settings: Optional[PMEngineSettings] = None) -> PMEngine:
    """Build an engine over the configured database, creating the tables if needed."""
    settings = settings or get_settings()
    db_engine = create_db_engine(settings.database_url)
    init_db(db_engine)
    repository = SqlAlchemyPMRepository(create_session_factory(db_engine))
    logger.info(f"PM engine ready on {db_engine.url.render_as_string(hide_password=True)}")
    return PMEngine(repository, settings)


def get_pm_engine() -> PMEngine:
    """Get or create the PM engine singleton."""
    global _engine
    if _engine is None:
        _engine = build_pm_engine()
    return _engine


def reset_pm_engine() -> None:
    global _engine
    _engine = None
