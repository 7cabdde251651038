"""Line-delimited JSON protocol engine for nubridge."""

import json
import logging
from typing import Protocol
from typing import TextIO

from nubridge.dispatcher import CommandCall
from nubridge.errors import ProtocolDecodeError
from nubridge.settings import DEFAULT_PROTOCOL_NAME
from nubridge.settings import DEFAULT_PROTOCOL_VERSION
from nubridge.values import WireValue
from nubridge.values import decode_wire
from nubridge.values import encode_wire

logger = logging.getLogger(__name__)

TERMINATION_TAG: str = "Goodbye"
GREETING_TAGS: tuple[str, ...] = ("Hello", "Handshake")


class CallHandler(Protocol):
    """Host-side callbacks the engine routes messages to."""

    def signature(self) -> list[object]: ...

    def metadata(self) -> dict[str, object]: ...

    def run(self, call: CommandCall) -> WireValue: ...

    def signal(self, payload: object) -> None: ...


def _require_str_field(message: dict[str, object], key: str) -> str:
    """Extract and validate a string field.

    :param message: Decoded message object.
    :param key: Field name.
    :returns: String field value.
    :raises ProtocolDecodeError: If the field is missing or invalid.
    """
    value: object = message.get(key)
    if isinstance(value, str) is False:
        raise ProtocolDecodeError(f"{key} must be a string")
    return value


def _flag_name(raw: object) -> str:
    if isinstance(raw, dict) is True:
        raw = raw.get("item")
    if isinstance(raw, str) is False:
        raise ProtocolDecodeError("Named argument names must be strings")
    return raw


def _decode_named(raw: object) -> dict[str, WireValue]:
    """Decode named flags from an object or from a list of ``[name, value]`` pairs.

    A ``null`` value marks a bare switch and decodes to ``Bool(true)``.

    :param raw: Raw ``named`` field.
    :returns: Flag name to value mapping.
    :raises ProtocolDecodeError: If the field is malformed.
    """
    named: dict[str, WireValue] = {}
    if raw is None:
        return named
    pairs: list[tuple[object, object]]
    if isinstance(raw, dict) is True:
        pairs = list(raw.items())
    elif isinstance(raw, list) is True:
        pairs = []
        for item in raw:
            if isinstance(item, list) is False or len(item) != 2:
                raise ProtocolDecodeError("Named arguments must be [name, value] pairs")
            pairs.append((item[0], item[1]))
    else:
        raise ProtocolDecodeError("named must be an object or a list of pairs")

    for raw_name, raw_value in pairs:
        name: str = _flag_name(raw_name)
        named[name] = WireValue.of_bool(True) if raw_value is None else decode_wire(raw_value)
    return named


def _decode_input(raw: object) -> WireValue | None:
    """Decode the pipeline input of a Run call.

    :param raw: ``"Empty"``, ``{"Value": wire}`` or ``{"Value": [wire, metadata]}``.
    :returns: Input value, or ``None`` for an empty pipeline.
    :raises ProtocolDecodeError: If the input is malformed or a stream.
    """
    if raw is None or raw == "Empty":
        return None
    if isinstance(raw, dict) is False or len(raw) != 1:
        raise ProtocolDecodeError("input must be \"Empty\" or a single-key object")
    if "Value" not in raw:
        tag: str = next(iter(raw.keys()))
        raise ProtocolDecodeError(f"Unsupported pipeline input: {tag}")
    value: object = raw["Value"]
    if isinstance(value, list) is True:
        if len(value) == 0:
            raise ProtocolDecodeError("Value input must not be empty")
        value = value[0]
    return decode_wire(value)


def parse_run_payload(payload: object) -> CommandCall:
    """Parse a ``Run`` payload into a command call.

    :param payload: ``{name, call: {positional, named}, input}``.
    :returns: Parsed call.
    :raises ProtocolDecodeError: If the payload is malformed.
    """
    if isinstance(payload, dict) is False:
        raise ProtocolDecodeError("Run payload must be an object")
    name: str = _require_str_field(payload, "name")
    call_section: object = payload.get("call", {})
    if isinstance(call_section, dict) is False:
        raise ProtocolDecodeError("call must be an object")
    raw_positional: object = call_section.get("positional", [])
    if isinstance(raw_positional, list) is False:
        raise ProtocolDecodeError("positional must be an array")
    positional: list[WireValue] = [decode_wire(item) for item in raw_positional]
    named: dict[str, WireValue] = _decode_named(call_section.get("named"))
    return CommandCall(name, positional, named, _decode_input(payload.get("input")))


def _split_call(payload: object) -> tuple[int, object]:
    if isinstance(payload, list) is False or len(payload) != 2:
        raise ProtocolDecodeError("Call must be a [id, body] array")
    call_id: object = payload[0]
    if isinstance(call_id, int) is False or isinstance(call_id, bool) is True:
        raise ProtocolDecodeError("Call id must be an integer")
    return call_id, payload[1]


class ProtocolEngine:
    """Own the shell message loop: handshake, calls, signals and framing."""

    _handler: CallHandler
    _reader: TextIO
    _writer: TextIO
    _protocol_name: str
    _protocol_version: str
    _features: list[object]
    _wrap_pipeline_data: bool

    def __init__(
        self,
        handler: CallHandler,
        reader: TextIO,
        writer: TextIO,
        protocol_name: str = DEFAULT_PROTOCOL_NAME,
        protocol_version: str = DEFAULT_PROTOCOL_VERSION,
        features: list[object] | None = None,
        wrap_pipeline_data: bool = False,
    ) -> None:
        """Initialize the engine.

        :param handler: Host callbacks.
        :param reader: Input stream of newline-delimited JSON messages.
        :param writer: Output stream for responses.
        :param protocol_name: Protocol name announced in the handshake.
        :param protocol_version: Protocol version announced in the handshake.
        :param features: Feature list announced in the handshake.
        :param wrap_pipeline_data: Wrap Run results in a ``PipelineData`` envelope.
        """
        self._handler = handler
        self._reader = reader
        self._writer = writer
        self._protocol_name = protocol_name
        self._protocol_version = protocol_version
        self._features = list(features) if features is not None else []
        self._wrap_pipeline_data = wrap_pipeline_data

    def run(self) -> None:
        """Send the handshake, then serve messages until EOF or termination.

        :raises OSError: If the output stream fails.
        """
        self._send(
            {
                "Handshake": {
                    "protocol": self._protocol_name,
                    "version": self._protocol_version,
                    "features": self._features,
                }
            }
        )

        should_exit: bool = False
        while should_exit is False:
            raw_line: str
            try:
                raw_line = self._reader.readline()
            except UnicodeDecodeError as exc:
                logger.warning("Could not decode input line: %s", exc)
                self._send_error(0, f"JSON parsing error: {exc}")
                continue
            if raw_line == "":
                logger.debug("Input stream closed")
                break
            line: str = raw_line.strip()
            if line == "":
                continue
            should_exit = self._handle_line(line)

    def _handle_line(self, line: str) -> bool:
        """Decode and handle one line.

        A line that fails to decode or to handle is answered with an error at
        id 0; the session continues.

        :param line: Non-empty input line.
        :returns: ``True`` when the session should end.
        :raises OSError: If the output stream fails.
        """
        try:
            message: object = json.loads(line)
        except (ValueError, RecursionError) as exc:
            logger.warning("Could not parse message: %s", exc)
            self._send_error(0, f"JSON parsing error: {exc}")
            return False
        try:
            return self._handle_message(message)
        except OSError:
            raise
        except Exception as exc:
            logger.exception("Message handling failed")
            self._send_error(0, f"Internal error: {type(exc).__name__}: {exc}")
            return False

    def _handle_message(self, message: object) -> bool:
        if isinstance(message, str) is True:
            if message == TERMINATION_TAG:
                logger.info("Received %s, ending session", TERMINATION_TAG)
                return True
            logger.debug("Ignoring bare string message %r", message)
            return False

        if isinstance(message, dict) is False or len(message) != 1:
            self._send_error(0, "Unknown message format")
            return False

        tag: str = next(iter(message.keys()))
        payload: object = message[tag]
        if tag in GREETING_TAGS:
            self._acknowledge_greeting(payload)
        elif tag == "Call":
            self._handle_call(payload)
        elif tag == "Signal":
            self._handle_signal(payload)
        else:
            self._send_error(0, "Unknown message format")
        return False

    def _acknowledge_greeting(self, payload: object) -> None:
        if isinstance(payload, dict) is True:
            protocol: object = payload.get("protocol")
            if protocol is not None and protocol != self._protocol_name:
                logger.warning("Peer announced protocol %r, expected %r", protocol, self._protocol_name)
        logger.debug("Peer greeting acknowledged")

    def _handle_signal(self, payload: object) -> None:
        try:
            self._handler.signal(payload)
        except Exception:
            logger.warning("Signal handling failed for %r", payload, exc_info=True)

    def _handle_call(self, payload: object) -> None:
        """Answer one Call message with exactly one response.

        :param payload: ``[id, body]``.
        """
        call_id: int = 0
        response_body: object
        try:
            call_id, body = _split_call(payload)
            response_body = self._call_body(body)
        except ProtocolDecodeError as exc:
            logger.warning("Malformed call %s: %s", call_id, exc)
            response_body = encode_wire(WireValue.error(str(exc)))
        except Exception as exc:
            logger.exception("Call %s failed", call_id)
            response_body = encode_wire(WireValue.error(f"Internal error: {type(exc).__name__}: {exc}"))
        self._send({"CallResponse": [call_id, response_body]})

    def _call_body(self, body: object) -> object:
        if isinstance(body, str) is True:
            if body == "Signature":
                return {"Signature": self._handler.signature()}
            if body == "Metadata":
                return {"Metadata": self._handler.metadata()}
            return encode_wire(WireValue.error(f"Unknown call type: {body}"))

        if isinstance(body, dict) is True and "Run" in body:
            call: CommandCall = parse_run_payload(body["Run"])
            result: WireValue = self._handler.run(call)
            encoded: dict[str, object] = encode_wire(result)
            if self._wrap_pipeline_data is False or result.is_error is True:
                return encoded
            return {"PipelineData": ["Value", [encoded, None]]}

        if isinstance(body, dict) is True:
            tags: str = ", ".join(str(key) for key in body.keys())
            return encode_wire(WireValue.error(f"Unknown call type: {tags}"))
        return encode_wire(WireValue.error(f"Unknown call type: {type(body).__name__}"))

    def _send_error(self, call_id: int, message: str) -> None:
        self._send({"CallResponse": [call_id, encode_wire(WireValue.error(message))]})

    def _send(self, message: dict[str, object]) -> None:
        """Write one message as a single JSON line and flush.

        :param message: JSON-ready message.
        :raises OSError: If the output stream fails.
        """
        self._writer.write(json.dumps(message, separators=(",", ":"), allow_nan=False) + "\n")
        self._writer.flush()
