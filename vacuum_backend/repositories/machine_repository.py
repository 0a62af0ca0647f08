"""
Machine repository: in-process store for machine registry entries.

Reads return copies so callers never mutate stored state by accident;
writes go through field-level updates so a heartbeat landing between a
read and a write of another component is never lost.

Usage:
    repo = MachineRepository()
    repo.add(machine)
    repo.update_fields(machine.id, status=MachineStatus.ONLINE)
"""
import logging
import threading
from datetime import datetime
from typing import Optional, Any

from vacuum_backend.models.machine import Machine
from vacuum_backend.models.enums import MachineStatus
from vacuum_backend.exceptions import MachineNotFoundError, ValidationError

logger = logging.getLogger(__name__)


class MachineRepository:
    """
    Store for Machine entities keyed by id, with a secondary index by code.
    """

    def __init__(self):
        self._machines: dict[str, Machine] = {}
        self._code_index: dict[str, str] = {}
        self._lock = threading.Lock()

    def add(self, machine: Machine) -> Machine:
        """
        Insert a new machine.

        Raises:
            ValidationError: If the id or code is already registered
        """
        with self._lock:
            if machine.id in self._machines:
                raise ValidationError(f"Machine id '{machine.id}' already registered", "id", machine.id)
            code_key = machine.code.upper()
            if code_key in self._code_index:
                raise ValidationError(f"Machine code '{machine.code}' already registered", "code", machine.code)

            self._machines[machine.id] = machine.model_copy(deep=True)
            self._code_index[code_key] = machine.id

        logger.info(f"Machine stored: {machine.code} ({machine.id})")
        return machine.model_copy(deep=True)

    def get(self, machine_id: str) -> Optional[Machine]:
        with self._lock:
            machine = self._machines.get(machine_id)
            return machine.model_copy(deep=True) if machine else None

    def get_or_raise(self, machine_id: str) -> Machine:
        machine = self.get(machine_id)
        if machine is None:
            raise MachineNotFoundError(machine_id)
        return machine

    def get_by_code(self, code: str) -> Optional[Machine]:
        """Lookup by the QR sticker code (case insensitive)."""
        with self._lock:
            machine_id = self._code_index.get(code.strip().upper())
            if machine_id is None:
                return None
            return self._machines[machine_id].model_copy(deep=True)

    def list_all(self, status: Optional[MachineStatus] = None) -> list[Machine]:
        with self._lock:
            machines = [
                m.model_copy(deep=True)
                for m in self._machines.values()
                if status is None or m.status == status
            ]
        return sorted(machines, key=lambda m: m.code)

    def list_by_statuses(self, statuses: tuple[MachineStatus, ...]) -> list[Machine]:
        return [m for m in self.list_all() if m.status in statuses]

    def update_fields(self, machine_id: str, **fields: Any) -> Machine:
        """
        Apply a partial update atomically.

        Args:
            machine_id: Machine to update
            **fields: Attribute values to set

        Returns:
            Copy of the updated machine

        Raises:
            MachineNotFoundError: If the machine does not exist
        """
        with self._lock:
            machine = self._machines.get(machine_id)
            if machine is None:
                raise MachineNotFoundError(machine_id)
            for name, value in fields.items():
                setattr(machine, name, value)
            return machine.model_copy(deep=True)

    def record_heartbeat(
        self,
        machine_id: str,
        reported_at: datetime,
        temperature: Optional[float] = None,
        controller_id: Optional[str] = None
    ) -> Machine:
        """
        Store a heartbeat; last_heartbeat_at never moves backwards.

        Returns:
            Copy of the updated machine
        """
        with self._lock:
            machine = self._machines.get(machine_id)
            if machine is None:
                raise MachineNotFoundError(machine_id)

            if machine.last_heartbeat_at is None or reported_at > machine.last_heartbeat_at:
                machine.last_heartbeat_at = reported_at
            else:
                logger.debug(
                    f"Out-of-order heartbeat ignored for {machine.code}: "
                    f"{reported_at} <= {machine.last_heartbeat_at}"
                )
            if temperature is not None:
                machine.temperature = temperature
            if controller_id:
                machine.controller_id = controller_id
            return machine.model_copy(deep=True)

    def count_by_status(self) -> dict[MachineStatus, int]:
        with self._lock:
            counts = {status: 0 for status in MachineStatus}
            for machine in self._machines.values():
                counts[machine.status] += 1
            return counts
