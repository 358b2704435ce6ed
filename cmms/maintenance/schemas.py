"""
Pydantic response/request models for the PM router.

Engine results are dataclasses; these schemas read them with
``from_attributes``.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .automation import RunStatus
from .generator import SkipReason
from .models import (
    ComplianceStatus,
    MaintenancePriority,
    PMFrequency,
    WorkOrderStatus,
    WorkOrderType,
)


class ChecklistItemResponse(BaseModel):
    component: str
    action: str
    status: str
    notes: str = ""
    sort_order: int = 0

    class Config:
        from_attributes = True


class WorkOrderResponse(BaseModel):
    """PM work order as returned by the API."""
    id: str
    work_order_number: str
    type: WorkOrderType
    status: WorkOrderStatus
    priority: MaintenancePriority
    equipment_id: str
    template_id: Optional[str] = None
    warehouse_id: str
    title: str
    description: str = ""
    due_date: Optional[date] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    asset_model: Optional[str] = None
    notes: Optional[str] = None
    estimated_hours: Optional[float] = None
    checklist: List[ChecklistItemResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class SkippedPairResponse(BaseModel):
    reason: SkipReason
    equipment_id: Optional[str] = None
    template_id: Optional[str] = None
    detail: str = ""

    class Config:
        from_attributes = True


class PairErrorResponse(BaseModel):
    equipment_id: str
    template_id: str
    error_type: str
    message: str

    class Config:
        from_attributes = True


class GenerationResponse(BaseModel):
    warehouse_id: str
    created: List[WorkOrderResponse]
    skipped: List[SkippedPairResponse]
    errors: List[PairErrorResponse]
    cancelled: bool = False

    class Config:
        from_attributes = True


class RunReportResponse(BaseModel):
    """Outcome of one automation run."""
    warehouse_id: str
    generated: int
    errors: List[str]
    timestamp: datetime
    status: RunStatus
    skipped: int = 0
    created_work_order_ids: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "warehouse_id": "WH-01",
                "generated": 3,
                "errors": [],
                "timestamp": "2024-02-15T06:00:02Z",
                "status": "completed",
                "skipped": 12,
                "created_work_order_ids": ["9b0f...", "1c2d...", "77aa..."],
                "started_at": "2024-02-15T06:00:00Z",
                "duration_seconds": 2.1,
            }
        }


class AutomationStatusResponse(BaseModel):
    warehouse_id: str
    state: str
    started_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    last_report: Optional[RunReportResponse] = None
    abandoned_workers: int = 0


class ScheduleResponse(BaseModel):
    equipment_id: str
    template_id: str
    frequency: PMFrequency
    last_completed_date: Optional[date] = None
    next_due_date: date
    compliance_status: ComplianceStatus
    open_work_order_id: Optional[str] = None

    class Config:
        from_attributes = True


class ForecastEntryResponse(BaseModel):
    equipment_id: str
    template_id: str
    model: str
    component: str
    action: str
    priority: MaintenancePriority
    next_due_date: date
    compliance_status: ComplianceStatus
    open_work_order_id: Optional[str] = None

    class Config:
        from_attributes = True


class ForecastResponse(BaseModel):
    warehouse_id: str
    start: date
    end: date
    total: int
    entries: List[ForecastEntryResponse]
    by_priority: Dict[str, int]
    by_model: Dict[str, int]

    class Config:
        from_attributes = True


class ComplianceResponse(BaseModel):
    equipment_id: str
    compliance_percentage: float
    missed_pm_count: int
    total_pm_count: int
    last_pm_date: Optional[date] = None
    next_pm_date: Optional[date] = None
    window_start: date
    window_end: date

    class Config:
        from_attributes = True


class CriticalityBreakdown(BaseModel):
    equipment_count: int
    total_pm_count: int
    missed_pm_count: int
    compliance_percentage: float


class FleetComplianceResponse(BaseModel):
    warehouse_id: str
    window_start: date
    window_end: date
    equipment_count: int
    total_pm_count: int
    missed_pm_count: int
    compliance_percentage: float
    average_equipment_compliance: float
    by_criticality: Dict[str, CriticalityBreakdown] = Field(default_factory=dict)
    equipment: List[ComplianceResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class EscalationResponse(BaseModel):
    equipment_id: str
    level: int
    missed_pm_count: int
    compliance_percentage: float

    class Config:
        from_attributes = True


class CompleteWorkOrderInput(BaseModel):
    """Input for completing a PM work order."""
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp; defaults to now")
