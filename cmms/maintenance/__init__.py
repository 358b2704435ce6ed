"""
Maintenance Module - Preventive Maintenance Scheduling & Compliance

Este módulo gera ordens de trabalho preventivas a partir de templates PM:
- Cálculo de datas (daily/weekly/monthly/quarterly/annually)
- Schedules derivados do histórico de ordens de trabalho
- Geração idempotente (uma ordem aberta por par equipamento/template)
- Compliance por equipamento e por armazém
- Execuções de automação serializadas por armazém
"""

from .automation import AutomationCoordinator, RunReport, RunStatus
from .compliance import ComplianceAggregator, ComplianceRecord
from .exceptions import (
    InvalidFrequency,
    PMEngineError,
    RunAlreadyInProgress,
    StorageError,
)
from .frequency import next_due_date
from .generator import GenerationResult, PMGenerator, SkipReason
from .models import (
    ComplianceStatus,
    Criticality,
    Equipment,
    EquipmentStatus,
    MaintenancePriority,
    PMFrequency,
    PMSchedule,
    PMTemplate,
    WorkOrder,
    WorkOrderStatus,
    WorkOrderType,
)
from .schedule import ScheduleResolver, resolve_schedule
from .service import PMEngine, get_pm_engine
from .storage import InMemoryPMRepository, PMRepository, SqlAlchemyPMRepository

__all__ = [
    "AutomationCoordinator",
    "RunReport",
    "RunStatus",
    "ComplianceAggregator",
    "ComplianceRecord",
    "InvalidFrequency",
    "PMEngineError",
    "RunAlreadyInProgress",
    "StorageError",
    "next_due_date",
    "GenerationResult",
    "PMGenerator",
    "SkipReason",
    "ComplianceStatus",
    "Criticality",
    "Equipment",
    "EquipmentStatus",
    "MaintenancePriority",
    "PMFrequency",
    "PMSchedule",
    "PMTemplate",
    "WorkOrder",
    "WorkOrderStatus",
    "WorkOrderType",
    "ScheduleResolver",
    "resolve_schedule",
    "PMEngine",
    "get_pm_engine",
    "InMemoryPMRepository",
    "PMRepository",
    "SqlAlchemyPMRepository",
]
