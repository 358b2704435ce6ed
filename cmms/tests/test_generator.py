"""
Testes para o PM Generator (G1-G5)
"""
import re
import threading
from datetime import date, datetime, timezone

import pytest

from cmms.maintenance.exceptions import StorageError
from cmms.maintenance.generator import PMGenerator, SkipReason
from cmms.maintenance.models import (
    MaintenancePriority,
    PMTemplate,
    WorkOrderStatus,
    WorkOrderType,
)
from cmms.maintenance.storage import InMemoryPMRepository

from conftest import FIXED_NOW, TODAY, WAREHOUSE


@pytest.fixture
def generator(repository, clock):
    return PMGenerator(repository, clock=clock)


def _pairs(work_orders):
    return sorted((wo.equipment_id, wo.template_id) for wo in work_orders)


class TestG1_Generation:
    """G1: Geração de ordens para pares devidos."""

    def test_creates_one_work_order_per_due_pair(self, generator):
        """G1.1: Cada par ativo nunca mantido gera uma ordem."""
        result = generator.generate_work_orders(WAREHOUSE)

        assert _pairs(result.created) == [
            ("EQ-PUMP-1", "TPL-PUMP-OIL"),
            ("EQ-PUMP-1", "TPL-PUMP-SEAL"),
            ("EQ-PUMP-2", "TPL-PUMP-OIL"),
            ("EQ-PUMP-2", "TPL-PUMP-SEAL"),
        ]
        assert result.errors == []
        assert not result.cancelled

    def test_work_order_content(self, generator):
        """G1.2: Número, título, tipo, estado e checklist da ordem."""
        result = generator.generate_work_orders(WAREHOUSE)
        wo = next(w for w in result.created if w.template_id == "TPL-PUMP-SEAL")

        assert re.fullmatch(r"PM-20240215-[0-9A-F]{6}", wo.work_order_number)
        assert wo.type == WorkOrderType.PREVENTIVE
        assert wo.status == WorkOrderStatus.NEW
        assert wo.title == "PM: Seal - Inspect seal"
        assert wo.description == "Preventive Maintenance: Seal - Inspect seal"
        assert wo.notes == "Auto-generated PM based on quarterly maintenance schedule"
        assert wo.due_date == TODAY
        assert wo.created_at == FIXED_NOW
        assert wo.estimated_hours == 1.5
        assert wo.asset_model == "PUMP-X"
        assert [(c.component, c.action, c.status) for c in wo.checklist] == [("Seal", "Inspect seal", "pending")]

    def test_priority_follows_criticality(self, generator):
        """G1.3: Prioridade = criticidade do equipamento."""
        result = generator.generate_work_orders(WAREHOUSE)
        priorities = {wo.equipment_id: wo.priority for wo in result.created}

        assert priorities["EQ-PUMP-1"] == MaintenancePriority.CRITICAL
        assert priorities["EQ-PUMP-2"] == MaintenancePriority.LOW

    def test_overdue_pair_keeps_computed_due_date(self, repository, generator, make_work_order):
        """G1.4: Par em atraso mantém a data devida calculada."""
        repository.add_work_order(make_work_order(
            "EQ-PUMP-1", "TPL-PUMP-OIL", completed=datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc),
        ))
        result = generator.generate_work_orders(WAREHOUSE)
        wo = next(w for w in result.created if (w.equipment_id, w.template_id) == ("EQ-PUMP-1", "TPL-PUMP-OIL"))

        assert wo.due_date == date(2024, 2, 1)

    def test_unknown_warehouse_creates_nothing(self, generator):
        """G1.5: Armazém sem equipamento não cria nada."""
        result = generator.generate_work_orders("WH-EMPTY")
        assert result.summary() == {"created": 0, "skipped": 0, "errors": 0}


class TestG2_Idempotence:
    """G2: Uma ordem aberta por par."""

    def test_second_run_creates_nothing(self, generator, repository):
        """G2.1: Segunda execução seguida não cria ordens."""
        first = generator.generate_work_orders(WAREHOUSE)
        second = generator.generate_work_orders(WAREHOUSE)

        assert len(first.created) == 4
        assert second.created == []
        duplicates = second.skipped_for(SkipReason.DUPLICATE_OPEN_WORK_ORDER)
        assert len(duplicates) == 4
        for equipment_id in ("EQ-PUMP-1", "EQ-PUMP-2"):
            for template_id in ("TPL-PUMP-OIL", "TPL-PUMP-SEAL"):
                open_orders = repository.list_pm_work_orders(
                    equipment_id, template_id, statuses=[WorkOrderStatus.NEW]
                )
                assert len(open_orders) == 1

    def test_lost_insert_race_is_duplicate_skip(self, equipment, templates, clock, make_work_order):
        """G2.2: Outra ordem aberta inserida entre a leitura e a escrita → skip duplicado."""
        competitor = make_work_order("EQ-PUMP-1", "TPL-PUMP-OIL", status=WorkOrderStatus.NEW)

        class RacingRepository(InMemoryPMRepository):
            def create_pm_work_order(self, work_order):
                if (work_order.equipment_id, work_order.template_id) == ("EQ-PUMP-1", "TPL-PUMP-OIL"):
                    self.add_work_order(competitor)
                return super().create_pm_work_order(work_order)

        repo = RacingRepository()
        repo.add_equipment(*equipment)
        repo.add_template(*templates)

        result = PMGenerator(repo, clock=clock).generate_work_orders(WAREHOUSE)

        assert len(result.created) == 3
        duplicates = result.skipped_for(SkipReason.DUPLICATE_OPEN_WORK_ORDER)
        assert [(s.equipment_id, s.template_id, s.detail) for s in duplicates] == [
            ("EQ-PUMP-1", "TPL-PUMP-OIL", competitor.work_order_number),
        ]
        open_orders = repo.list_pm_work_orders("EQ-PUMP-1", "TPL-PUMP-OIL", statuses=[WorkOrderStatus.NEW])
        assert [wo.id for wo in open_orders] == [competitor.id]

    def test_manual_open_work_order_satisfies_pair(self, repository, generator, make_work_order):
        """G2.3: Ordem manual aberta conta como a ordem do par."""
        manual = make_work_order("EQ-PUMP-2", "TPL-PUMP-SEAL", status=WorkOrderStatus.ASSIGNED, due=TODAY)
        repository.add_work_order(manual)

        result = generator.generate_work_orders(WAREHOUSE)

        assert ("EQ-PUMP-2", "TPL-PUMP-SEAL") not in _pairs(result.created)
        duplicate = result.skipped_for(SkipReason.DUPLICATE_OPEN_WORK_ORDER)
        assert [(s.equipment_id, s.template_id, s.detail) for s in duplicate] == [
            ("EQ-PUMP-2", "TPL-PUMP-SEAL", manual.work_order_number)
        ]

    def test_completion_reopens_pair_after_interval(self, repository, clock, make_work_order):
        """G2.4: Depois de concluída, o par só volta a gerar quando vencer."""
        repository.add_work_order(make_work_order(
            "EQ-PUMP-1", "TPL-PUMP-OIL", completed=datetime(2024, 2, 10, 9, 0, tzinfo=timezone.utc),
        ))
        result = PMGenerator(repository, clock=clock).generate_work_orders(WAREHOUSE)

        not_due = result.skipped_for(SkipReason.NOT_DUE)
        assert [(s.equipment_id, s.template_id) for s in not_due] == [("EQ-PUMP-1", "TPL-PUMP-OIL")]
        assert "2024-03-10" in not_due[0].detail


class TestG3_Eligibility:
    """G3: Equipamento e templates elegíveis."""

    def test_skip_reasons(self, generator):
        """G3.1: Inativos e sem template ficam registados."""
        result = generator.generate_work_orders(WAREHOUSE)

        assert [s.equipment_id for s in result.skipped_for(SkipReason.EQUIPMENT_INACTIVE)] == ["EQ-FAN-1"]
        assert [s.equipment_id for s in result.skipped_for(SkipReason.NO_MATCHING_TEMPLATE)] == ["EQ-COMP-1"]
        assert [s.template_id for s in result.skipped_for(SkipReason.TEMPLATE_INACTIVE)] == ["TPL-PUMP-OLD"]

    def test_inactive_equipment_never_gets_work_orders(self, generator):
        """G3.2: Equipamento inativo nunca recebe ordens."""
        result = generator.generate_work_orders(WAREHOUSE)
        assert all(wo.equipment_id != "EQ-FAN-1" for wo in result.created)
        assert all(wo.template_id != "TPL-PUMP-OLD" for wo in result.created)


class TestG4_ErrorIsolation:
    """G4: Erros por par não param o lote."""

    def test_invalid_frequency_only_fails_its_pairs(self, repository, generator):
        """G4.1: Template com frequência inválida falha só os seus pares."""
        repository.add_template(PMTemplate("TPL-PUMP-BAD", "PUMP-X", "Valve", "Check", "fortnightly", WAREHOUSE))

        result = generator.generate_work_orders(WAREHOUSE)

        assert len(result.created) == 4
        assert sorted((e.equipment_id, e.template_id) for e in result.errors) == [
            ("EQ-PUMP-1", "TPL-PUMP-BAD"),
            ("EQ-PUMP-2", "TPL-PUMP-BAD"),
        ]
        assert all(e.error_type == "InvalidFrequency" for e in result.errors)

    def test_write_failure_only_fails_its_pair(self, equipment, templates, clock):
        """G4.2: Falha de escrita num par não afeta os restantes."""

        class FlakyRepository(InMemoryPMRepository):
            def create_pm_work_order(self, work_order):
                if work_order.equipment_id == "EQ-PUMP-1" and work_order.template_id == "TPL-PUMP-OIL":
                    raise StorageError("disk full")
                return super().create_pm_work_order(work_order)

        repo = FlakyRepository()
        repo.add_equipment(*equipment)
        repo.add_template(*templates)

        result = PMGenerator(repo, clock=clock).generate_work_orders(WAREHOUSE)

        assert len(result.created) == 3
        assert len(result.errors) == 1
        assert "disk full" in str(result.errors[0])

    def test_setup_failure_propagates(self, clock):
        """G4.3: Falha ao carregar o armazém é fatal para a chamada."""

        class BrokenRepository(InMemoryPMRepository):
            def list_equipment(self, warehouse_id):
                raise RuntimeError("connection refused")

        with pytest.raises(StorageError):
            PMGenerator(BrokenRepository(), clock=clock).generate_work_orders(WAREHOUSE)


class TestG5_EventsAndCancellation:
    """G5: Eventos emitidos e cancelamento."""

    def test_emits_pm_due_event_per_work_order(self, repository, clock):
        """G5.1: Um evento pm_due por ordem criada."""
        events = []
        generator = PMGenerator(repository, clock=clock, listeners=[events.append])
        result = generator.generate_work_orders(WAREHOUSE)

        assert [e.kind for e in events] == ["pm_due"] * 4
        assert {e.work_order.id for e in events} == {wo.id for wo in result.created}

    def test_failing_listener_does_not_fail_pair(self, repository, clock):
        """G5.2: Listener com erro não impede a criação."""
        def broken(event):
            raise RuntimeError("smtp down")

        generator = PMGenerator(repository, clock=clock)
        generator.add_listener(broken)
        result = generator.generate_work_orders(WAREHOUSE)

        assert len(result.created) == 4
        assert result.errors == []

    def test_cancel_event_stops_pass(self, generator):
        """G5.3: Cancelamento antes do início não cria nada."""
        cancel = threading.Event()
        cancel.set()
        result = generator.generate_work_orders(WAREHOUSE, cancel_event=cancel)

        assert result.cancelled
        assert result.created == []

    def test_cancel_mid_pass_stops_before_next_insert(self, repository, clock):
        """G5.4: Cancelamento durante a passagem não insere mais ordens."""
        cancel = threading.Event()
        generator = PMGenerator(repository, clock=clock, listeners=[lambda event: cancel.set()])

        result = generator.generate_work_orders(WAREHOUSE, cancel_event=cancel)

        assert result.cancelled
        assert len(result.created) == 1
        assert result.errors == []
        stored = repository.list_pm_work_orders("EQ-PUMP-1") + repository.list_pm_work_orders("EQ-PUMP-2")
        assert [wo.id for wo in stored] == [result.created[0].id]

    def test_snapshot_is_detached(self, generator):
        """G5.5: Snapshot não acompanha alterações posteriores."""
        result = generator.generate_work_orders(WAREHOUSE)
        snapshot = result.snapshot()
        result.created.clear()
        result.skipped.append(result.skipped[0])

        assert len(snapshot.created) == 4
        assert len(snapshot.skipped) == len(result.skipped) - 1
