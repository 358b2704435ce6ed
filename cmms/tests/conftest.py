"""
Fixtures comuns para os testes do motor PM.
"""
import uuid
from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from cmms.api import app
from cmms.maintenance.models import (
    Criticality,
    Equipment,
    EquipmentStatus,
    MaintenancePriority,
    PMTemplate,
    WorkOrder,
    WorkOrderStatus,
    WorkOrderType,
)
from cmms.maintenance.service import PMEngine, get_pm_engine
from cmms.maintenance.storage import InMemoryPMRepository
from cmms.settings import PMEngineSettings

WAREHOUSE = "WH-01"
FIXED_NOW = datetime(2024, 2, 15, 8, 0, tzinfo=timezone.utc)
TODAY = FIXED_NOW.date()


@pytest.fixture
def clock():
    """Relógio fixo: 2024-02-15 08:00 UTC."""
    return lambda: FIXED_NOW


@pytest.fixture
def settings():
    return PMEngineSettings(database_url="sqlite://", run_timeout_seconds=5.0)


@pytest.fixture
def make_work_order():
    """Factory de ordens PM para montar históricos."""
    def _make(
        equipment_id: str,
        template_id: str,
        status: WorkOrderStatus = WorkOrderStatus.COMPLETED,
        due: date = None,
        completed: datetime = None,
        created: datetime = None,
        warehouse_id: str = WAREHOUSE,
        type: WorkOrderType = WorkOrderType.PREVENTIVE,
    ) -> WorkOrder:
        created = created or completed or FIXED_NOW
        return WorkOrder(
            id=str(uuid.uuid4()),
            work_order_number=f"PM-{uuid.uuid4().hex[:6].upper()}",
            type=type,
            status=status,
            priority=MaintenancePriority.MEDIUM,
            equipment_id=equipment_id,
            template_id=template_id,
            warehouse_id=warehouse_id,
            title="PM",
            due_date=due,
            created_at=created,
            completed_at=completed,
        )
    return _make


@pytest.fixture
def equipment():
    """Equipamento do armazém WH-01."""
    return [
        Equipment("EQ-PUMP-1", "PUMP-X", EquipmentStatus.ACTIVE, Criticality.CRITICAL, WAREHOUSE),
        Equipment("EQ-PUMP-2", "PUMP-X", EquipmentStatus.ACTIVE, Criticality.LOW, WAREHOUSE),
        Equipment("EQ-FAN-1", "FAN-Y", EquipmentStatus.INACTIVE, Criticality.MEDIUM, WAREHOUSE),
        Equipment("EQ-COMP-1", "COMP-Z", EquipmentStatus.ACTIVE, Criticality.HIGH, WAREHOUSE),
    ]


@pytest.fixture
def templates():
    """Templates PM do armazém WH-01."""
    return [
        PMTemplate("TPL-PUMP-OIL", "PUMP-X", "Gearbox", "Change oil", "monthly", WAREHOUSE),
        PMTemplate("TPL-PUMP-SEAL", "PUMP-X", "Seal", "Inspect seal", "quarterly", WAREHOUSE,
                   estimated_duration_minutes=90),
        PMTemplate("TPL-PUMP-OLD", "PUMP-X", "Casing", "Repaint", "annually", WAREHOUSE, active=False),
        PMTemplate("TPL-FAN", "FAN-Y", "Belt", "Check tension", "weekly", WAREHOUSE),
    ]


@pytest.fixture
def repository(equipment, templates):
    repo = InMemoryPMRepository()
    repo.add_equipment(*equipment)
    repo.add_template(*templates)
    return repo


@pytest.fixture
def engine(repository, settings, clock):
    return PMEngine(repository, settings=settings, clock=clock)


@pytest.fixture
def test_client(engine):
    """Cliente de teste FastAPI com o motor em memória."""
    app.dependency_overrides[get_pm_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()
