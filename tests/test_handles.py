"""Tests for the object handle table and its periodic sweeper."""

import logging
import time

import pytest

from nubridge.errors import HandleNotFoundError
from nubridge.handles import HandleSweeper
from nubridge.handles import ObjectHandleTable
from tests.fixtures.sample_library import AsyncResource
from tests.fixtures.sample_library import BrokenResource
from tests.fixtures.sample_library import Counter
from tests.fixtures.sample_library import Resource


class FakeClock:
    """Manually advanced time source."""

    now: float

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class ClassLevelCloser:
    closed: bool = False

    @classmethod
    def close(cls) -> None:
        cls.closed = True


def test_register_then_fetch_returns_same_object() -> None:
    table: ObjectHandleTable = ObjectHandleTable()
    counter: Counter = Counter()
    first_id: str = table.register(counter)
    second_id: str = table.register(counter)

    assert table.fetch(first_id) is counter
    assert first_id != second_id
    assert table.type_name_of(first_id) == "tests.fixtures.sample_library.Counter"
    assert len(table) == 2


def test_fetch_unknown_id_raises() -> None:
    table: ObjectHandleTable = ObjectHandleTable()
    with pytest.raises(HandleNotFoundError, match="Object with ID 'missing' not found"):
        table.fetch("missing")


def test_dispose_closes_referent_and_forgets_id() -> None:
    """Disposal removes the entry and runs the referent's close routine once."""
    table: ObjectHandleTable = ObjectHandleTable()
    resource: Resource = Resource()
    object_id: str = table.register(resource)

    assert table.dispose(object_id) is True
    assert resource.closed is True
    assert object_id not in table
    assert table.dispose(object_id) is False
    with pytest.raises(HandleNotFoundError):
        table.fetch(object_id)


def test_dispose_runs_async_disposer_in_background() -> None:
    table: ObjectHandleTable = ObjectHandleTable()
    resource: AsyncResource = AsyncResource()
    object_id: str = table.register(resource)

    assert table.dispose(object_id) is True
    assert resource.closed_event.wait(5.0) is True


def test_dispose_never_closes_classes() -> None:
    table: ObjectHandleTable = ObjectHandleTable()
    object_id: str = table.register(ClassLevelCloser)
    table.dispose(object_id)
    assert ClassLevelCloser.closed is False


def test_failing_close_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    table: ObjectHandleTable = ObjectHandleTable()
    object_id: str = table.register(BrokenResource())

    with caplog.at_level(logging.WARNING, logger="nubridge.handles"):
        assert table.dispose(object_id) is True
    assert "Disposal of handle" in caplog.text


def test_sweep_disposes_only_idle_entries() -> None:
    """Entries not fetched within the retention window are swept."""
    clock: FakeClock = FakeClock(0.0)
    table: ObjectHandleTable = ObjectHandleTable(clock)
    idle: Resource = Resource()
    busy: Resource = Resource()
    idle_id: str = table.register(idle)
    busy_id: str = table.register(busy)

    clock.now = 80.0
    table.fetch(busy_id)
    clock.now = 120.0
    swept: list[str] = table.sweep(100.0)

    assert swept == [idle_id]
    assert idle.closed is True
    assert busy.closed is False
    assert busy_id in table


def test_snapshot_does_not_refresh_access_time() -> None:
    clock: FakeClock = FakeClock(5.0)
    table: ObjectHandleTable = ObjectHandleTable(clock)
    object_id: str = table.register(Counter())
    clock.now = 50.0

    assert table.snapshot() == [(object_id, "tests.fixtures.sample_library.Counter", 5.0)]
    assert table.sweep(10.0) == [object_id]


def test_dispose_all_drains_table() -> None:
    table: ObjectHandleTable = ObjectHandleTable()
    resources: list[Resource] = [Resource(), Resource(), Resource()]
    for resource in resources:
        table.register(resource)

    assert table.dispose_all() == 3
    assert len(table) == 0
    assert all(resource.closed for resource in resources) is True


def test_sweeper_thread_removes_expired_handles() -> None:
    table: ObjectHandleTable = ObjectHandleTable()
    resource: Resource = Resource()
    table.register(resource)
    sweeper: HandleSweeper = HandleSweeper(table, interval_seconds=0.02, retention_seconds=0.001)

    sweeper.start()
    try:
        assert sweeper.is_running is True
        deadline: float = time.monotonic() + 5.0
        while len(table) > 0 and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        sweeper.stop()

    assert len(table) == 0
    assert resource.closed is True
    assert sweeper.is_running is False


def test_sweeper_rejects_non_positive_durations() -> None:
    table: ObjectHandleTable = ObjectHandleTable()
    with pytest.raises(ValueError):
        HandleSweeper(table, interval_seconds=0)
    with pytest.raises(ValueError):
        HandleSweeper(table, retention_seconds=-1)
