"""
════════════════════════════════════════════════════════════════════════════════════════════════════
PM API - Endpoints do motor de manutenção preventiva
════════════════════════════════════════════════════════════════════════════════════════════════════

API REST para:
- Geração de ordens PM e execuções de automação por armazém
- Schedules e previsão de PM
- Compliance por equipamento e por armazém, escalonamentos
- Conclusão de ordens PM

Erros do motor:
    RunAlreadyInProgress → 409 (retry later)
    *NotFound            → 404
    InvalidFrequency     → 422
    StorageError         → 503
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from .exceptions import (
    EquipmentNotFound,
    InvalidFrequency,
    RunAlreadyInProgress,
    StorageError,
    TemplateNotFound,
    WorkOrderNotFound,
)
from .schemas import (
    AutomationStatusResponse,
    ComplianceResponse,
    CompleteWorkOrderInput,
    EscalationResponse,
    FleetComplianceResponse,
    ForecastResponse,
    GenerationResponse,
    RunReportResponse,
    ScheduleResponse,
    WorkOrderResponse,
)
from .service import PMEngine, get_pm_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pm", tags=["Preventive Maintenance"])


def _to_http(error: Exception) -> HTTPException:
    if isinstance(error, RunAlreadyInProgress):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, (EquipmentNotFound, TemplateNotFound, WorkOrderNotFound)):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidFrequency):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, StorageError):
        logger.error(f"PM storage failure: {error}")
        return HTTPException(status_code=503, detail="Storage unavailable")
    return HTTPException(status_code=400, detail=str(error))


_ENGINE_ERRORS = (
    RunAlreadyInProgress,
    EquipmentNotFound,
    TemplateNotFound,
    WorkOrderNotFound,
    InvalidFrequency,
    StorageError,
    ValueError,
)


# ═══════════════════════════════════════════════════════════════════════════════
# GENERATION & AUTOMATION
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/warehouses/{warehouse_id}/generate", summary="Generate due PM work orders")
def generate_work_orders(
    warehouse_id: str,
    engine: PMEngine = Depends(get_pm_engine),
) -> GenerationResponse:
    try:
        result = engine.generate_work_orders(warehouse_id)
    except _ENGINE_ERRORS as e:
        raise _to_http(e)
    return GenerationResponse.model_validate(result)


@router.post("/warehouses/{warehouse_id}/automation/run", summary="Run PM automation")
def run_automation(
    warehouse_id: str,
    engine: PMEngine = Depends(get_pm_engine),
) -> RunReportResponse:
    try:
        report = engine.run_automation(warehouse_id)
    except _ENGINE_ERRORS as e:
        raise _to_http(e)
    return RunReportResponse.model_validate(report)


@router.get("/warehouses/{warehouse_id}/automation/status", summary="PM automation status")
def automation_status(
    warehouse_id: str,
    engine: PMEngine = Depends(get_pm_engine),
) -> AutomationStatusResponse:
    status = engine.automation_status(warehouse_id)
    last_report = status["last_report"]
    return AutomationStatusResponse(
        warehouse_id=status["warehouse_id"],
        state=status["state"],
        started_at=status["started_at"],
        last_run_at=status["last_run_at"],
        last_report=RunReportResponse.model_validate(last_report) if last_report else None,
        abandoned_workers=status["abandoned_workers"],
    )


# ═══════════════════════════════════════════════════════════════════════════════
# SCHEDULES
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/equipment/{equipment_id}/schedule", summary="PM schedule of an equipment")
def get_schedule(
    equipment_id: str,
    engine: PMEngine = Depends(get_pm_engine),
) -> List[ScheduleResponse]:
    try:
        schedules = engine.get_schedule(equipment_id)
    except _ENGINE_ERRORS as e:
        raise _to_http(e)
    return [ScheduleResponse.model_validate(s) for s in schedules]


@router.get("/equipment/{equipment_id}/schedule/{template_id}", summary="PM schedule of one pair")
def get_pair_schedule(
    equipment_id: str,
    template_id: str,
    engine: PMEngine = Depends(get_pm_engine),
) -> ScheduleResponse:
    try:
        schedule = engine.get_pair_schedule(equipment_id, template_id)
    except _ENGINE_ERRORS as e:
        raise _to_http(e)
    return ScheduleResponse.model_validate(schedule)


@router.get("/warehouses/{warehouse_id}/forecast", summary="Forecast PM due in a date range")
def forecast_schedule(
    warehouse_id: str,
    start: Optional[date] = Query(None, description="First day (default: today)"),
    days: int = Query(30, ge=0, le=366, description="Horizon length in days"),
    engine: PMEngine = Depends(get_pm_engine),
) -> ForecastResponse:
    start = start or engine.today()
    try:
        forecast = engine.forecast_schedule(warehouse_id, start, start + timedelta(days=days))
    except _ENGINE_ERRORS as e:
        raise _to_http(e)
    return ForecastResponse.model_validate(forecast)


# ═══════════════════════════════════════════════════════════════════════════════
# WORK ORDERS
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/workorders/{work_order_id}/complete", summary="Complete a PM work order")
def complete_work_order(
    work_order_id: str,
    body: Optional[CompleteWorkOrderInput] = Body(None),
    engine: PMEngine = Depends(get_pm_engine),
) -> WorkOrderResponse:
    try:
        work_order = engine.complete_work_order(work_order_id, body.completed_at if body else None)
    except _ENGINE_ERRORS as e:
        raise _to_http(e)
    return WorkOrderResponse.model_validate(work_order)


# ═══════════════════════════════════════════════════════════════════════════════
# COMPLIANCE
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/equipment/{equipment_id}/compliance", summary="PM compliance of an equipment")
def compute_compliance(
    equipment_id: str,
    window_days: Optional[int] = Query(None, ge=0, description="Window length (default from settings)"),
    engine: PMEngine = Depends(get_pm_engine),
) -> ComplianceResponse:
    try:
        record = engine.compute_compliance(equipment_id, window_days)
    except _ENGINE_ERRORS as e:
        raise _to_http(e)
    return ComplianceResponse.model_validate(record)


@router.get("/warehouses/{warehouse_id}/compliance", summary="Fleet PM compliance")
def compute_fleet_compliance(
    warehouse_id: str,
    window_days: Optional[int] = Query(None, ge=0),
    engine: PMEngine = Depends(get_pm_engine),
) -> FleetComplianceResponse:
    try:
        record = engine.compute_fleet_compliance(warehouse_id, window_days)
    except _ENGINE_ERRORS as e:
        raise _to_http(e)
    return FleetComplianceResponse.model_validate(record)


@router.get("/warehouses/{warehouse_id}/escalations", summary="Equipment below the compliance target")
def escalations(
    warehouse_id: str,
    window_days: Optional[int] = Query(None, ge=0),
    engine: PMEngine = Depends(get_pm_engine),
) -> List[EscalationResponse]:
    try:
        facts = engine.escalations(warehouse_id, window_days)
    except _ENGINE_ERRORS as e:
        raise _to_http(e)
    return [EscalationResponse.model_validate(f) for f in facts]
