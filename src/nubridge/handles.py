"""Object handle table and periodic sweeper for nubridge."""

import asyncio
import inspect
import logging
import sys
import threading
import time
import types
import uuid
from collections.abc import Callable

from nubridge.errors import HandleNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS: float = 3600.0
DEFAULT_SWEEP_INTERVAL_SECONDS: float = 300.0


def default_type_name(value: object) -> str:
    """Return the module-qualified type name of ``value``.

    :param value: Any object.
    :returns: ``module.QualName``, or the bare qualname for builtins.
    """
    value_type: type = type(value)
    if value_type.__module__ == "builtins":
        return value_type.__qualname__
    return f"{value_type.__module__}.{value_type.__qualname__}"


class _HandleEntry:
    """One live handle."""

    value: object
    type_name: str
    last_accessed: float

    def __init__(self, value: object, type_name: str, last_accessed: float) -> None:
        self.value = value
        self.type_name = type_name
        self.last_accessed = last_accessed


def _is_standard_stream(value: object) -> bool:
    streams: tuple[object, ...] = (
        sys.stdin,
        sys.stdout,
        sys.stderr,
        sys.__stdin__,
        sys.__stdout__,
        sys.__stderr__,
    )
    return any(value is stream for stream in streams)


def _drive_async_disposer(object_id: str, awaitable_factory: Callable[[], object]) -> None:
    """Run an async disposer to completion on a private event loop.

    :param object_id: Handle id, used in log messages.
    :param awaitable_factory: Zero-argument callable returning the awaitable.
    """

    async def _await_disposer() -> None:
        await awaitable_factory()

    try:
        asyncio.run(_await_disposer())
    except Exception:
        logger.warning("Async disposal of handle %s failed", object_id, exc_info=True)


def _schedule_async_disposer(object_id: str, awaitable_factory: Callable[[], object]) -> None:
    thread: threading.Thread = threading.Thread(
        target=_drive_async_disposer,
        args=(object_id, awaitable_factory),
        name=f"nubridge-dispose-{object_id}",
        daemon=True,
    )
    thread.start()


def dispose_referent(object_id: str, value: object) -> None:
    """Invoke the disposal routine of a referent, if it exposes one.

    Synchronous ``close()`` and ``__exit__`` run inline. An object offering only
    ``aclose()`` or ``__aexit__`` is disposed fire-and-forget on a daemon thread.
    Failures are logged and never raised.

    :param object_id: Handle id the referent was stored under.
    :param value: Referent to dispose.
    """
    if isinstance(value, (type, types.ModuleType)) is True:
        return
    if _is_standard_stream(value) is True:
        return

    try:
        close_method: object = getattr(value, "close", None)
        if callable(close_method) is True:
            close_result: object = close_method()
            if inspect.isawaitable(close_result) is True:
                _schedule_async_disposer(object_id, lambda: close_result)
            return

        exit_method: object = getattr(value, "__exit__", None)
        if callable(exit_method) is True:
            exit_method(None, None, None)
            return

        aclose_method: object = getattr(value, "aclose", None)
        if callable(aclose_method) is True:
            _schedule_async_disposer(object_id, aclose_method)
            return

        aexit_method: object = getattr(value, "__aexit__", None)
        if callable(aexit_method) is True:
            _schedule_async_disposer(object_id, lambda: aexit_method(None, None, None))
    except Exception:
        logger.warning("Disposal of handle %s failed", object_id, exc_info=True)


class ObjectHandleTable:
    """Own foreign objects under opaque string ids with access-recency tracking."""

    _entries: dict[str, _HandleEntry]
    _lock: threading.RLock
    _clock: Callable[[], float]

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """Initialize an empty handle table.

        :param clock: Time source in seconds, used for access stamps.
        """
        self._entries = {}
        self._lock = threading.RLock()
        self._clock = clock

    def register(self, value: object, type_name: str | None = None) -> str:
        """Store a value under a fresh id.

        :param value: Object to own.
        :param type_name: Declared type name; derived from ``value`` when omitted.
        :returns: New handle id.
        """
        resolved_type_name: str = type_name if type_name is not None else default_type_name(value)
        object_id: str = str(uuid.uuid4())
        with self._lock:
            self._entries[object_id] = _HandleEntry(value, resolved_type_name, self._clock())
        logger.debug("Registered handle %s (%s)", object_id, resolved_type_name)
        return object_id

    def fetch(self, object_id: str) -> object:
        """Borrow a stored object and refresh its access stamp.

        :param object_id: Handle id.
        :returns: Stored object.
        :raises HandleNotFoundError: If the id is unknown or disposed.
        """
        with self._lock:
            entry: _HandleEntry | None = self._entries.get(object_id)
            if entry is None:
                raise HandleNotFoundError(object_id)
            entry.last_accessed = self._clock()
            return entry.value

    def type_name_of(self, object_id: str) -> str:
        """Return the declared type name recorded for a handle.

        :param object_id: Handle id.
        :returns: Declared type name.
        :raises HandleNotFoundError: If the id is unknown or disposed.
        """
        with self._lock:
            entry: _HandleEntry | None = self._entries.get(object_id)
            if entry is None:
                raise HandleNotFoundError(object_id)
            return entry.type_name

    def dispose(self, object_id: str) -> bool:
        """Remove a handle and dispose its referent.

        :param object_id: Handle id.
        :returns: ``True`` when a live entry was removed.
        """
        with self._lock:
            entry: _HandleEntry | None = self._entries.pop(object_id, None)
        if entry is None:
            return False
        dispose_referent(object_id, entry.value)
        logger.debug("Disposed handle %s", object_id)
        return True

    def sweep(self, retention_seconds: float) -> list[str]:
        """Dispose every entry not accessed within the retention window.

        :param retention_seconds: Retention window in seconds.
        :returns: Ids of the entries that were removed.
        """
        cutoff: float = self._clock() - retention_seconds
        expired: list[tuple[str, _HandleEntry]] = []
        with self._lock:
            for object_id, entry in list(self._entries.items()):
                if entry.last_accessed < cutoff:
                    expired.append((object_id, self._entries.pop(object_id)))

        for object_id, entry in expired:
            dispose_referent(object_id, entry.value)
        if len(expired) > 0:
            logger.info("Swept %d expired handle(s)", len(expired))
        return [object_id for object_id, _ in expired]

    def dispose_all(self) -> int:
        """Dispose every live entry.

        :returns: Number of entries removed.
        """
        with self._lock:
            drained: list[tuple[str, _HandleEntry]] = list(self._entries.items())
            self._entries.clear()
        for object_id, entry in drained:
            dispose_referent(object_id, entry.value)
        return len(drained)

    def snapshot(self) -> list[tuple[str, str, float]]:
        """Describe live handles without refreshing their access stamps.

        :returns: ``(id, type_name, last_accessed)`` tuples.
        """
        with self._lock:
            return [(object_id, entry.type_name, entry.last_accessed) for object_id, entry in self._entries.items()]

    def __contains__(self, object_id: object) -> bool:
        with self._lock:
            return object_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class HandleSweeper:
    """Run ``ObjectHandleTable.sweep`` on a fixed period from a daemon thread."""

    _table: ObjectHandleTable
    _interval_seconds: float
    _retention_seconds: float
    _stop_event: threading.Event
    _thread: threading.Thread | None

    def __init__(
        self,
        table: ObjectHandleTable,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
    ) -> None:
        """Initialize the sweeper.

        :param table: Table to sweep.
        :param interval_seconds: Seconds between sweeps.
        :param retention_seconds: Retention window passed to each sweep.
        :raises ValueError: If either duration is not positive.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be positive")
        self._table = table
        self._interval_seconds = interval_seconds
        self._retention_seconds = retention_seconds
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background thread. Calling twice is a no-op."""
        if self.is_running is True:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="nubridge-handle-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        """Stop the background thread.

        :param timeout: Seconds to wait for the thread to exit.
        """
        self._stop_event.set()
        thread: threading.Thread | None = self._thread
        if thread is not None:
            thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        while self._stop_event.wait(self._interval_seconds) is False:
            try:
                self._table.sweep(self._retention_seconds)
            except Exception:
                logger.exception("Periodic handle sweep failed")
