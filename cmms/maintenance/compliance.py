"""
PM Compliance Aggregator

Compliance is a projection over PM work-order history, computed fresh per query.

Definitions
===========

Window:
    [today - window_days, today], on the work order due date.

Total:
    Nₜ = |{PM work orders with due_date in window}|   (completed or not)

Missed:
    A work order in the window is missed when
      - it is still open and due_date < today, or
      - it was completed more than `grace_period_days` after due_date.

Compliance:
    C = (Nₜ - Nₘ) / Nₜ × 100,   C = 100 when Nₜ = 0 (no obligations)

Fleet:
    Same computation per active equipment; fleet C uses summed counts,
    `average_equipment_compliance` is the plain mean of per-equipment C.

Escalation (only below the compliance target):
    missed > 5 → level 3, missed > 2 → level 2, missed > 0 → level 1
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from .exceptions import InvalidFrequency
from .models import Equipment, WorkOrder, utc_now
from .schedule import ScheduleResolver, last_completed_date
from .storage import PMRepository

logger = logging.getLogger(__name__)


@dataclass
class ComplianceRecord:
    equipment_id: str
    compliance_percentage: float
    missed_pm_count: int
    total_pm_count: int
    last_pm_date: Optional[date]
    next_pm_date: Optional[date]
    window_start: date
    window_end: date


@dataclass
class FleetComplianceRecord:
    warehouse_id: str
    window_start: date
    window_end: date
    equipment_count: int
    total_pm_count: int
    missed_pm_count: int
    compliance_percentage: float
    average_equipment_compliance: float
    by_criticality: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    equipment: List[ComplianceRecord] = field(default_factory=list)


@dataclass
class EscalationFact:
    equipment_id: str
    level: int
    missed_pm_count: int
    compliance_percentage: float


def compliance_percentage(total: int, missed: int) -> float:
    if total == 0:
        return 100.0
    return round((total - missed) / total * 100, 1)


def is_missed(work_order: WorkOrder, today: date, grace_period_days: int = 0) -> bool:
    if work_order.due_date is None:
        return False
    if work_order.is_open:
        return work_order.due_date < today
    done = work_order.completion_date
    return done is not None and done > work_order.due_date + timedelta(days=grace_period_days)


def escalation_level(record: ComplianceRecord, target_percent: float) -> int:
    if record.compliance_percentage >= target_percent:
        return 0
    if record.missed_pm_count > 5:
        return 3
    if record.missed_pm_count > 2:
        return 2
    if record.missed_pm_count > 0:
        return 1
    return 0


class ComplianceAggregator:
    """Per-equipment and fleet-wide PM compliance."""

    def __init__(
        self,
        repository: PMRepository,
        resolver: Optional[ScheduleResolver] = None,
        clock: Optional[Callable[[], datetime]] = None,
        grace_period_days: int = 1,
        compliance_target_percent: float = 95.0,
    ):
        if grace_period_days < 0:
            raise ValueError("grace_period_days must be >= 0")
        self.repository = repository
        self.resolver = resolver or ScheduleResolver()
        self._clock = clock or utc_now
        self.grace_period_days = grace_period_days
        self.compliance_target_percent = compliance_target_percent

    def compute_compliance(self, equipment_id: str, window_days: int) -> ComplianceRecord:
        """
        Compliance of one equipment over the last `window_days` days.

        Raises:
            EquipmentNotFound: if the equipment does not exist
        """
        if window_days < 0:
            raise ValueError("window_days must be >= 0")
        equipment = self.repository.get_equipment(equipment_id)
        return self._compute(equipment, window_days, self._clock().date())

    def compute_fleet_compliance(self, warehouse_id: str, window_days: int) -> FleetComplianceRecord:
        if window_days < 0:
            raise ValueError("window_days must be >= 0")
        today = self._clock().date()
        equipment = [e for e in self.repository.list_equipment(warehouse_id) if e.is_active]
        records = [self._compute(e, window_days, today) for e in sorted(equipment, key=lambda e: e.id)]
        window_start = today - timedelta(days=window_days)

        if not records:
            return FleetComplianceRecord(
                warehouse_id=warehouse_id,
                window_start=window_start,
                window_end=today,
                equipment_count=0,
                total_pm_count=0,
                missed_pm_count=0,
                compliance_percentage=100.0,
                average_equipment_compliance=100.0,
            )

        criticality_by_id = {e.id: e.criticality.value for e in equipment}
        frame = pd.DataFrame([
            {
                "equipment_id": r.equipment_id,
                "criticality": criticality_by_id[r.equipment_id],
                "total_pm_count": r.total_pm_count,
                "missed_pm_count": r.missed_pm_count,
                "compliance_percentage": r.compliance_percentage,
            }
            for r in records
        ])

        grouped = frame.groupby("criticality").agg(
            equipment_count=("equipment_id", "count"),
            total_pm_count=("total_pm_count", "sum"),
            missed_pm_count=("missed_pm_count", "sum"),
        )
        by_criticality = {
            str(criticality): {
                "equipment_count": int(row["equipment_count"]),
                "total_pm_count": int(row["total_pm_count"]),
                "missed_pm_count": int(row["missed_pm_count"]),
                "compliance_percentage": compliance_percentage(
                    int(row["total_pm_count"]), int(row["missed_pm_count"])
                ),
            }
            for criticality, row in grouped.iterrows()
        }

        total = int(frame["total_pm_count"].sum())
        missed = int(frame["missed_pm_count"].sum())

        return FleetComplianceRecord(
            warehouse_id=warehouse_id,
            window_start=window_start,
            window_end=today,
            equipment_count=len(records),
            total_pm_count=total,
            missed_pm_count=missed,
            compliance_percentage=compliance_percentage(total, missed),
            average_equipment_compliance=round(float(frame["compliance_percentage"].mean()), 1),
            by_criticality=by_criticality,
            equipment=records,
        )

    def escalations(self, warehouse_id: str, window_days: int) -> List[EscalationFact]:
        """Escalation facts for equipment below the compliance target."""
        fleet = self.compute_fleet_compliance(warehouse_id, window_days)
        facts = []
        for record in fleet.equipment:
            level = escalation_level(record, self.compliance_target_percent)
            if level > 0:
                facts.append(EscalationFact(
                    equipment_id=record.equipment_id,
                    level=level,
                    missed_pm_count=record.missed_pm_count,
                    compliance_percentage=record.compliance_percentage,
                ))
        facts.sort(key=lambda f: (-f.level, f.equipment_id))
        return facts

    def _compute(self, equipment: Equipment, window_days: int, today: date) -> ComplianceRecord:
        window_start = today - timedelta(days=window_days)
        work_orders = self.repository.list_pm_work_orders(equipment.id)
        last_pm = last_completed_date(work_orders)

        if not equipment.is_active:
            # Non-active equipment carries no obligations.
            return ComplianceRecord(
                equipment_id=equipment.id,
                compliance_percentage=100.0,
                missed_pm_count=0,
                total_pm_count=0,
                last_pm_date=last_pm,
                next_pm_date=None,
                window_start=window_start,
                window_end=today,
            )

        in_window = [
            wo for wo in work_orders
            if wo.due_date is not None and window_start <= wo.due_date <= today
        ]
        missed = sum(1 for wo in in_window if is_missed(wo, today, self.grace_period_days))

        return ComplianceRecord(
            equipment_id=equipment.id,
            compliance_percentage=compliance_percentage(len(in_window), missed),
            missed_pm_count=missed,
            total_pm_count=len(in_window),
            last_pm_date=last_pm,
            next_pm_date=self._next_pm_date(equipment, work_orders, today),
            window_start=window_start,
            window_end=today,
        )

    def _next_pm_date(self, equipment: Equipment, work_orders: List[WorkOrder], today: date) -> Optional[date]:
        next_dates = []
        for template in self.repository.list_templates(equipment.warehouse_id):
            if not template.active or template.model != equipment.model:
                continue
            try:
                schedule = self.resolver.resolve(equipment, template, work_orders, today)
            except InvalidFrequency as e:
                logger.warning(f"Ignoring template {template.id} for next PM date of {equipment.id}: {e}")
                continue
            next_dates.append(schedule.next_due_date)
        return min(next_dates) if next_dates else None
