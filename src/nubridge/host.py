"""Session wiring for nubridge: handle table, provider, converter and dispatcher."""

import contextlib
import logging
import sys
import threading
import time
from collections.abc import Callable

from nubridge import catalog
from nubridge.converter import ValueConverter
from nubridge.dispatcher import CommandCall
from nubridge.dispatcher import CommandDispatcher
from nubridge.errors import NotInitializedError
from nubridge.errors import ProtocolDecodeError
from nubridge.handles import HandleSweeper
from nubridge.handles import ObjectHandleTable
from nubridge.introspection import IntrospectionProvider
from nubridge.introspection import PythonIntrospectionProvider
from nubridge.settings import PLUGIN_VERSION
from nubridge.settings import BridgeSettings
from nubridge.values import WireValue
from nubridge.values import encode_wire

logger = logging.getLogger(__name__)


def _signal_tag(payload: object) -> str:
    if isinstance(payload, str) is True:
        return payload
    if isinstance(payload, dict) is True and len(payload) == 1:
        return str(next(iter(payload.keys())))
    raise ProtocolDecodeError(f"Malformed signal: {payload!r}")


class BridgeHost:
    """Own the components of one bridge session and answer engine callbacks."""

    _settings: BridgeSettings
    _handles: ObjectHandleTable
    _sweeper: HandleSweeper
    _dispatcher: CommandDispatcher | None
    _init_error: str | None
    _interrupted: threading.Event
    _closed: bool

    def __init__(
        self,
        settings: BridgeSettings | None = None,
        provider: IntrospectionProvider | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Build the session components.

        A failure while building the provider or dispatcher is logged and leaves
        the host uninitialized; every command then reports that state.

        :param settings: Session settings.
        :param provider: Introspection provider; a ``PythonIntrospectionProvider`` by default.
        :param clock: Time source for handle access stamps.
        """
        self._settings = settings if settings is not None else BridgeSettings()
        self._handles = ObjectHandleTable(clock)
        self._sweeper = HandleSweeper(
            self._handles,
            interval_seconds=self._settings.sweep_interval_seconds,
            retention_seconds=self._settings.retention_seconds,
        )
        self._dispatcher = None
        self._init_error = None
        self._interrupted = threading.Event()
        self._closed = False

        try:
            resolved_provider: IntrospectionProvider = (
                provider
                if provider is not None
                else PythonIntrospectionProvider(preload=self._settings.preload_modules)
            )
            converter: ValueConverter = ValueConverter(
                self._handles,
                resolved_provider,
                max_flatten_properties=self._settings.max_flatten_properties,
                max_flatten_fields=self._settings.max_flatten_fields,
            )
            self._dispatcher = CommandDispatcher(
                self._handles,
                resolved_provider,
                converter,
                retention_seconds=self._settings.retention_seconds,
            )
        except Exception as exc:
            logger.exception("Bridge initialization failed")
            self._init_error = f"{type(exc).__name__}: {exc}"

    @property
    def settings(self) -> BridgeSettings:
        return self._settings

    @property
    def handles(self) -> ObjectHandleTable:
        return self._handles

    @property
    def is_initialized(self) -> bool:
        return self._dispatcher is not None

    @property
    def interrupted(self) -> bool:
        """Whether the last signal was ``Interrupt``. Informational only; running commands are not cancelled."""
        return self._interrupted.is_set()

    def start(self) -> None:
        """Start the periodic handle sweep."""
        if self.is_initialized is True:
            self._sweeper.start()

    def _not_initialized(self) -> NotInitializedError:
        return NotInitializedError(f"Bridge not properly initialized: {self._init_error}")

    def signature(self) -> list[object]:
        if self.is_initialized is False:
            return [encode_wire(WireValue.error(str(self._not_initialized())))]
        return list(catalog.COMMAND_SIGNATURES)

    def metadata(self) -> dict[str, object]:
        return {"version": PLUGIN_VERSION}

    def run(self, call: CommandCall) -> WireValue:
        """Dispatch one command.

        Output the command prints is redirected to stderr so stdout only
        carries protocol messages.

        :param call: Command call.
        :returns: Command result or Error value.
        """
        dispatcher: CommandDispatcher | None = self._dispatcher
        if dispatcher is None:
            return WireValue.error(str(self._not_initialized()))
        with contextlib.redirect_stdout(sys.stderr):
            return dispatcher.dispatch(call)

    def signal(self, payload: object) -> None:
        """Handle an ``Interrupt`` or ``Reset`` signal.

        Signals only toggle the :attr:`interrupted` flag. Commands run to
        completion and are never cancelled by a signal.

        :param payload: Signal payload, a tag string or single-key object.
        :raises ProtocolDecodeError: If the signal is unknown.
        """
        tag: str = _signal_tag(payload)
        if tag == "Interrupt":
            self._interrupted.set()
            logger.info("Interrupt signal received")
        elif tag == "Reset":
            self._interrupted.clear()
            logger.info("Reset signal received")
        else:
            raise ProtocolDecodeError(f"Unknown signal: {tag}")

    def close(self) -> None:
        """Stop the sweeper and dispose every live handle."""
        if self._closed is True:
            return
        self._closed = True
        self._sweeper.stop()
        disposed: int = self._handles.dispose_all()
        if disposed > 0:
            logger.info("Disposed %d handle(s) at shutdown", disposed)
        if self._dispatcher is not None:
            self._dispatcher.close()

    def __enter__(self) -> "BridgeHost":
        self.start()
        return self

    def __exit__(self, exc_type: object, exc_value: object, exc_traceback: object) -> None:
        self.close()
