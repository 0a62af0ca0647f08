"""
Shared test fixtures.

Provides:
- FakeClock: controllable time source injected into every service
- FakeChannel / FakeDeviceGateway: recording collaborators
- container: fully wired ServiceContainer without Redis
- add_machine / add_user: helpers to seed state
"""
import sys
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
import pytz

from vacuum_backend.core.dependency import ServiceContainer
from vacuum_backend.exceptions import NotificationDeliveryError, DeviceCommandError
from vacuum_backend.models.enums import MachineStatus
from vacuum_backend.models.machine import Machine, RegisterMachineRequest, MaintenanceOverride
from vacuum_backend.models.user import User
from vacuum_backend.repositories.redis_repository import RedisRepository
from vacuum_backend.services.machine_lock_service import InMemoryLockService


START = pytz.timezone("America/Sao_Paulo").localize(datetime(2026, 1, 10, 10, 0, 0))


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, minutes=minutes)
        return self.now


class FakeChannel:
    """Notification channel that records messages; fails the first N sends."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0
        self.sent: list[str] = []

    async def send(self, message: str, recipient: Optional[str] = None) -> None:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise NotificationDeliveryError("channel down", status_code=503)
        self.sent.append(message)


class FakeDeviceGateway:
    """Records device commands; optionally fails them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.commands: list[tuple] = []

    async def activate(self, machine_id: str, duration_seconds: int) -> None:
        if self.fail:
            raise DeviceCommandError(machine_id, "activate", details="no controller subscribed")
        self.commands.append(("activate", machine_id, duration_seconds))

    async def deactivate(self, machine_id: str) -> None:
        if self.fail:
            raise DeviceCommandError(machine_id, "deactivate", details="no controller subscribed")
        self.commands.append(("deactivate", machine_id))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def device():
    return FakeDeviceGateway()


@pytest.fixture
def container(clock, channel, device):
    """ServiceContainer with in-memory locks and no Redis connection."""
    return ServiceContainer(
        clock=clock,
        redis_repository=RedisRepository(),
        lock_backend=InMemoryLockService(ttl_seconds=30, clock=clock),
        notification_channel=channel,
        device_gateway=device
    )


def add_machine(
    container: ServiceContainer,
    code: str = "VAC-001",
    status: MachineStatus = MachineStatus.ONLINE,
    interval_hours: int = 100,
    operating_minutes: int = 0,
    heartbeat_age_seconds: Optional[float] = 10,
    override: bool = False,
    price_per_minute: Decimal = Decimal("1.00"),
    max_duration_minutes: int = 30
) -> Machine:
    """
    Register a machine and force its state for the test.

    heartbeat_age_seconds=None means no heartbeat was ever received.
    """
    machine = container.registry.register_machine(
        RegisterMachineRequest(
            code=code,
            location="Posto Teste",
            maintenance_interval_hours=interval_hours,
            price_per_minute=price_per_minute,
            max_duration_minutes=max_duration_minutes
        )
    )
    now = container.clock()
    last_heartbeat = None if heartbeat_age_seconds is None else now - timedelta(seconds=heartbeat_age_seconds)
    return container.machine_repository.update_fields(
        machine.id,
        status=status,
        current_operating_minutes=operating_minutes,
        last_heartbeat_at=last_heartbeat,
        override=MaintenanceOverride(active=override, reason="test" if override else None, by="admin" if override else None)
    )


def add_user(container: ServiceContainer, balance: Decimal = Decimal("100.00"), email: str = "cliente@example.com") -> User:
    return container.user_repository.add(User(email=email, name="Cliente", account_balance=balance))


@pytest.fixture
def make_machine(container):
    def _make(**kwargs) -> Machine:
        return add_machine(container, **kwargs)
    return _make


@pytest.fixture
def make_user(container):
    def _make(**kwargs) -> User:
        return add_user(container, **kwargs)
    return _make
