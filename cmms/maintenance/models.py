"""
════════════════════════════════════════════════════════════════════════════════════════════════════
PM MODELS - Equipamento, Templates PM e Ordens de Trabalho Preventivas
════════════════════════════════════════════════════════════════════════════════════════════════════

Enums, engine dataclasses and SQLAlchemy tables for the preventive maintenance engine.

Tabelas:
- pm_equipment: Equipamento (read-only para o motor PM)
- pm_templates: Templates de manutenção preventiva por modelo
- pm_work_orders: Ordens de trabalho (o motor só cria as preventivas)

Os schedules PM e registos de compliance são derivados, nunca persistidos.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, Column, Date, DateTime, Float, Index, Integer, String, Text, text

from ..db import Base
from .exceptions import InvalidFrequency


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class EquipmentStatus(str, Enum):
    """Estado do equipamento."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


class Criticality(str, Enum):
    """Criticidade do equipamento."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MaintenancePriority(str, Enum):
    """Prioridade da ordem de trabalho."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Sort rank, critical first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    MaintenancePriority.CRITICAL: 0,
    MaintenancePriority.HIGH: 1,
    MaintenancePriority.MEDIUM: 2,
    MaintenancePriority.LOW: 3,
}


class PMFrequency(str, Enum):
    """Frequência de um template PM."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"

    @classmethod
    def parse(cls, value: Any) -> "PMFrequency":
        """Coerce a raw template value, raising InvalidFrequency when unknown."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidFrequency(value)


class WorkOrderType(str, Enum):
    CORRECTIVE = "corrective"
    PREVENTIVE = "preventive"
    EMERGENCY = "emergency"


class WorkOrderStatus(str, Enum):
    """Estado da ordem de trabalho."""
    NEW = "new"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"       # Terminal
    VERIFIED = "verified"         # Terminal
    CLOSED = "closed"             # Terminal

    @property
    def is_open(self) -> bool:
        return self not in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    WorkOrderStatus.COMPLETED,
    WorkOrderStatus.VERIFIED,
    WorkOrderStatus.CLOSED,
})

OPEN_STATUSES = frozenset(s for s in WorkOrderStatus if s not in TERMINAL_STATUSES)


class ComplianceStatus(str, Enum):
    """Estado de compliance de um par (equipamento, template)."""
    COMPLIANT = "compliant"
    DUE = "due"
    OVERDUE = "overdue"


# Direct 1:1 mapping, no inference beyond this table.
PRIORITY_BY_CRITICALITY: Dict[Criticality, MaintenancePriority] = {
    Criticality.CRITICAL: MaintenancePriority.CRITICAL,
    Criticality.HIGH: MaintenancePriority.HIGH,
    Criticality.MEDIUM: MaintenancePriority.MEDIUM,
    Criticality.LOW: MaintenancePriority.LOW,
}


def priority_for(criticality: Criticality) -> MaintenancePriority:
    """Work order priority for an equipment criticality."""
    return PRIORITY_BY_CRITICALITY[Criticality(criticality)]


def _new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE DATACLASSES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class Equipment:
    """Equipamento registado num armazém."""
    id: str
    model: str
    status: EquipmentStatus
    criticality: Criticality
    warehouse_id: str
    asset_tag: str = ""
    area: Optional[str] = None
    description: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == EquipmentStatus.ACTIVE


@dataclass
class PMTemplate:
    """
    Definição reutilizável de uma ação PM para todos os equipamentos de um modelo.

    `frequency` keeps the raw stored value; it is parsed when a schedule is
    resolved so one malformed template only fails its own pairs.
    """
    id: str
    model: str
    component: str
    action: str
    frequency: Any
    warehouse_id: str
    active: bool = True
    description: Optional[str] = None
    estimated_duration_minutes: int = 60
    custom_fields: Optional[Dict[str, Any]] = None


@dataclass
class ChecklistItem:
    component: str
    action: str
    status: str = "pending"
    notes: str = ""
    sort_order: int = 0


@dataclass
class WorkOrder:
    """Ordem de trabalho, tal como o motor PM a vê."""
    id: str
    work_order_number: str
    type: WorkOrderType
    status: WorkOrderStatus
    priority: MaintenancePriority
    equipment_id: str
    warehouse_id: str
    title: str
    template_id: Optional[str] = None
    description: str = ""
    due_date: Optional[date] = None
    created_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    asset_model: Optional[str] = None
    notes: Optional[str] = None
    estimated_hours: Optional[float] = None
    checklist: List[ChecklistItem] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.status.is_open

    @property
    def is_preventive(self) -> bool:
        return self.type == WorkOrderType.PREVENTIVE

    @property
    def completion_date(self) -> Optional[date]:
        """Calendar date the work was completed; creation date when the timestamp is missing."""
        if self.status not in TERMINAL_STATUSES:
            return None
        stamp = self.completed_at or self.created_at
        return stamp.date() if stamp else None


@dataclass
class PMSchedule:
    """Schedule derivado de um par (equipamento, template)."""
    equipment_id: str
    template_id: str
    frequency: PMFrequency
    last_completed_date: Optional[date]
    next_due_date: date
    compliance_status: ComplianceStatus
    open_work_order_id: Optional[str] = None

    @property
    def is_overdue(self) -> bool:
        return self.compliance_status == ComplianceStatus.OVERDUE

    @property
    def needs_work_order(self) -> bool:
        return self.compliance_status in (ComplianceStatus.DUE, ComplianceStatus.OVERDUE)

    @property
    def has_open_work_order(self) -> bool:
        return self.open_work_order_id is not None


@dataclass
class PMEvent:
    """Facto emitido pelo gerador; a entrega de notificações é externa."""
    kind: str
    work_order: WorkOrder
    equipment: Equipment
    template: PMTemplate
    emitted_at: datetime = field(default_factory=utc_now)


# ═══════════════════════════════════════════════════════════════════════════════
# SQLAlchemy MODELS
# ═══════════════════════════════════════════════════════════════════════════════

class EquipmentRecord(Base):
    """SQLAlchemy row for equipment."""
    __tablename__ = "pm_equipment"

    id = Column(String(36), primary_key=True, default=_new_id)
    asset_tag = Column(String(64), unique=True, nullable=False)
    model = Column(String(128), nullable=False, index=True)
    description = Column(Text, nullable=True)
    area = Column(String(128), nullable=True)
    status = Column(String(16), nullable=False, default=EquipmentStatus.ACTIVE.value)
    criticality = Column(String(16), nullable=False, default=Criticality.MEDIUM.value)
    warehouse_id = Column(String(36), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("ix_pm_equipment_warehouse_status", "warehouse_id", "status"),
    )

    def to_domain(self) -> Equipment:
        return Equipment(
            id=self.id,
            asset_tag=self.asset_tag,
            model=self.model,
            status=EquipmentStatus(self.status),
            criticality=Criticality(self.criticality),
            warehouse_id=self.warehouse_id,
            area=self.area,
            description=self.description,
        )


class PMTemplateRecord(Base):
    """SQLAlchemy row for PM templates."""
    __tablename__ = "pm_templates"

    id = Column(String(36), primary_key=True, default=_new_id)
    model = Column(String(128), nullable=False, index=True)
    component = Column(String(256), nullable=False)
    action = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    estimated_duration = Column(Integer, default=60)  # minutes
    frequency = Column(String(16), nullable=False)
    custom_fields_json = Column(Text, nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    warehouse_id = Column(String(36), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    def to_domain(self) -> PMTemplate:
        return PMTemplate(
            id=self.id,
            model=self.model,
            component=self.component,
            action=self.action,
            frequency=self.frequency,
            warehouse_id=self.warehouse_id,
            active=bool(self.active),
            description=self.description,
            estimated_duration_minutes=self.estimated_duration or 60,
            custom_fields=json.loads(self.custom_fields_json) if self.custom_fields_json else None,
        )


_OPEN_PM_PAIR_CONDITION = (
    f"type = '{WorkOrderType.PREVENTIVE.value}' AND template_id IS NOT NULL AND status IN ("
    + ", ".join(sorted(f"'{s.value}'" for s in OPEN_STATUSES))
    + ")"
)


class WorkOrderRecord(Base):
    """SQLAlchemy row for work orders (all types; the engine reads the preventive ones)."""
    __tablename__ = "pm_work_orders"

    id = Column(String(36), primary_key=True, default=_new_id)
    work_order_number = Column(String(64), unique=True, nullable=False, index=True)
    type = Column(String(16), nullable=False, default=WorkOrderType.PREVENTIVE.value)
    title = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default=WorkOrderStatus.NEW.value)
    priority = Column(String(16), nullable=False, default=MaintenancePriority.MEDIUM.value)
    equipment_id = Column(String(36), nullable=False, index=True)
    template_id = Column(String(36), nullable=True)
    warehouse_id = Column(String(36), nullable=False, index=True)
    asset_model = Column(String(128), nullable=True)
    due_date = Column(Date, nullable=True)
    estimated_hours = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    checklist_json = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_pm_wo_pair_status", "equipment_id", "template_id", "status"),
        Index("ix_pm_wo_equipment_due", "equipment_id", "due_date"),
        # At most one open PM work order per (equipment, template).
        Index(
            "uq_pm_wo_open_pair",
            "equipment_id",
            "template_id",
            unique=True,
            sqlite_where=text(_OPEN_PM_PAIR_CONDITION),
            postgresql_where=text(_OPEN_PM_PAIR_CONDITION),
        ),
    )

    @classmethod
    def from_domain(cls, wo: WorkOrder) -> "WorkOrderRecord":
        return cls(
            id=wo.id,
            work_order_number=wo.work_order_number,
            type=wo.type.value,
            title=wo.title,
            description=wo.description,
            status=wo.status.value,
            priority=wo.priority.value,
            equipment_id=wo.equipment_id,
            template_id=wo.template_id,
            warehouse_id=wo.warehouse_id,
            asset_model=wo.asset_model,
            due_date=wo.due_date,
            estimated_hours=wo.estimated_hours,
            notes=wo.notes,
            checklist_json=json.dumps([item.__dict__ for item in wo.checklist]) if wo.checklist else None,
            created_at=wo.created_at,
            completed_at=wo.completed_at,
        )

    def to_domain(self) -> WorkOrder:
        checklist = [ChecklistItem(**item) for item in json.loads(self.checklist_json)] if self.checklist_json else []
        return WorkOrder(
            id=self.id,
            work_order_number=self.work_order_number,
            type=WorkOrderType(self.type),
            status=WorkOrderStatus(self.status),
            priority=MaintenancePriority(self.priority),
            equipment_id=self.equipment_id,
            template_id=self.template_id,
            warehouse_id=self.warehouse_id,
            title=self.title,
            description=self.description or "",
            due_date=self.due_date,
            created_at=_as_utc(self.created_at),
            completed_at=_as_utc(self.completed_at),
            asset_model=self.asset_model,
            notes=self.notes,
            estimated_hours=self.estimated_hours,
            checklist=checklist,
        )


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
