"""Errors raised by the preventive maintenance engine."""

from __future__ import annotations

from typing import Any, Optional


class PMEngineError(Exception):
    """Base class for preventive maintenance engine errors."""


class InvalidFrequency(PMEngineError, ValueError):
    """A template carries a frequency unit the engine does not know."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Unsupported PM frequency: {value!r}")


class RunAlreadyInProgress(PMEngineError):
    """
    An automation run is already active for the warehouse.

    Retryable: the caller should try again once the current run finishes.
    """

    def __init__(self, warehouse_id: str, started_at: Optional[Any] = None):
        self.warehouse_id = warehouse_id
        self.started_at = started_at
        super().__init__(f"PM automation already running for warehouse {warehouse_id}")


class StorageError(PMEngineError):
    """A read or write against the storage collaborator failed."""


class EquipmentNotFound(PMEngineError, LookupError):
    def __init__(self, equipment_id: str):
        self.equipment_id = equipment_id
        super().__init__(f"Equipment {equipment_id} not found")


class TemplateNotFound(PMEngineError, LookupError):
    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"PM template {template_id} not found")


class WorkOrderNotFound(PMEngineError, LookupError):
    def __init__(self, work_order_id: str):
        self.work_order_id = work_order_id
        super().__init__(f"Work order {work_order_id} not found")
