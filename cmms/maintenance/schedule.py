"""
Schedule resolver.

Derives the PM schedule of one (equipment, template) pair from the pair's
work-order history and the template frequency. Read-and-compute only.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, List, Optional

from .frequency import next_due_date
from .models import (
    ComplianceStatus,
    Equipment,
    PMFrequency,
    PMSchedule,
    PMTemplate,
    WorkOrder,
)


def pair_history(work_orders: Iterable[WorkOrder], equipment_id: str, template_id: str) -> List[WorkOrder]:
    """Preventive work orders belonging to one (equipment, template) pair."""
    return [
        wo for wo in work_orders
        if wo.is_preventive and wo.equipment_id == equipment_id and wo.template_id == template_id
    ]


def last_completed_date(history: Iterable[WorkOrder]) -> Optional[date]:
    dates = [wo.completion_date for wo in history if wo.completion_date is not None]
    return max(dates) if dates else None


def find_open_work_order(history: Iterable[WorkOrder]) -> Optional[WorkOrder]:
    """Oldest open work order in the history, if any."""
    open_orders = sorted((wo for wo in history if wo.is_open), key=lambda wo: wo.created_at)
    return open_orders[0] if open_orders else None


def classify(due: date, today: date, lookahead_days: int = 0) -> ComplianceStatus:
    if due < today:
        return ComplianceStatus.OVERDUE
    if due <= today + timedelta(days=lookahead_days):
        return ComplianceStatus.DUE
    return ComplianceStatus.COMPLIANT


class ScheduleResolver:
    """
    Resolves PM schedules.

    A pair with no completed PM work order is due today: a never-maintained
    asset is always eligible for its first PM.
    """

    def __init__(self, lookahead_days: int = 0):
        if lookahead_days < 0:
            raise ValueError("lookahead_days must be >= 0")
        self.lookahead_days = lookahead_days

    def resolve(
        self,
        equipment: Equipment,
        template: PMTemplate,
        work_order_history: Iterable[WorkOrder],
        today: date,
    ) -> PMSchedule:
        """
        Resolve the schedule for one pair.

        Args:
            equipment: Equipment of the pair
            template: PM template of the pair
            work_order_history: Work orders to consider; anything outside the pair is ignored
            today: Reference calendar date

        Raises:
            InvalidFrequency: if the template frequency is not supported
        """
        frequency = PMFrequency.parse(template.frequency)
        history = pair_history(work_order_history, equipment.id, template.id)

        last_done = last_completed_date(history)
        due = next_due_date(last_done, frequency) if last_done is not None else today
        open_wo = find_open_work_order(history)

        return PMSchedule(
            equipment_id=equipment.id,
            template_id=template.id,
            frequency=frequency,
            last_completed_date=last_done,
            next_due_date=due,
            compliance_status=classify(due, today, self.lookahead_days),
            open_work_order_id=open_wo.id if open_wo else None,
        )


def resolve_schedule(
    equipment: Equipment,
    template: PMTemplate,
    work_order_history: Iterable[WorkOrder],
    today: date,
    lookahead_days: int = 0,
) -> PMSchedule:
    """Functional shortcut for ``ScheduleResolver(lookahead_days).resolve(...)``."""
    return ScheduleResolver(lookahead_days).resolve(equipment, template, work_order_history, today)
