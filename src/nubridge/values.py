"""Wire value model and JSON codec for the shell protocol."""

import base64
import binascii
import datetime
import math
from typing import Literal

from nubridge.errors import ProtocolDecodeError

WireKind = Literal[
    "Nothing",
    "Bool",
    "Int",
    "Float",
    "String",
    "Binary",
    "Date",
    "Duration",
    "List",
    "Record",
    "Custom",
    "Error",
]
WIRE_KINDS: tuple[str, ...] = (
    "Nothing",
    "Bool",
    "Int",
    "Float",
    "String",
    "Binary",
    "Date",
    "Duration",
    "List",
    "Record",
    "Custom",
    "Error",
)
INT64_MIN: int = -(2**63)
INT64_MAX: int = 2**63 - 1
TICKS_PER_MICROSECOND: int = 10
_EMPTY_SPAN: dict[str, int] = {"start": 0, "end": 0}


def fits_int64(value: int) -> bool:
    """Check whether an integer fits the signed 64-bit wire range.

    :param value: Integer to check.
    :returns: ``True`` when ``value`` is representable as a wire Int.
    """
    return INT64_MIN <= value <= INT64_MAX


def timedelta_to_ticks(value: datetime.timedelta) -> int:
    """Convert a timedelta into 100-nanosecond ticks.

    :param value: Duration to convert.
    :returns: Tick count.
    """
    total_microseconds: int = (value.days * 86_400 + value.seconds) * 1_000_000 + value.microseconds
    return total_microseconds * TICKS_PER_MICROSECOND


def ticks_to_timedelta(ticks: int) -> datetime.timedelta:
    """Convert 100-nanosecond ticks into a timedelta.

    Sub-microsecond remainders are truncated toward zero.

    :param ticks: Tick count.
    :returns: Equivalent timedelta.
    """
    microseconds: int = abs(ticks) // TICKS_PER_MICROSECOND
    if ticks < 0:
        microseconds = -microseconds
    return datetime.timedelta(microseconds=microseconds)


class CustomRef:
    """Reference to an object held in the handle table."""

    object_id: str
    type_name: str

    def __init__(self, object_id: str, type_name: str) -> None:
        """Initialize the reference.

        :param object_id: Handle id.
        :param type_name: Declared type name of the referent.
        """
        self.object_id = object_id
        self.type_name = type_name

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CustomRef) is False:
            return NotImplemented
        return self.object_id == other.object_id and self.type_name == other.type_name

    def __hash__(self) -> int:
        return hash((self.object_id, self.type_name))

    def __repr__(self) -> str:
        return f"CustomRef(object_id={self.object_id!r}, type_name={self.type_name!r})"


class WireError:
    """Error payload with an optional nested cause."""

    message: str
    cause: "WireError | None"

    def __init__(self, message: str, cause: "WireError | None" = None) -> None:
        """Initialize the error payload.

        :param message: Human-readable message.
        :param cause: Optional nested cause.
        """
        self.message = message
        self.cause = cause

    def __eq__(self, other: object) -> bool:
        if isinstance(other, WireError) is False:
            return NotImplemented
        return self.message == other.message and self.cause == other.cause

    def __repr__(self) -> str:
        return f"WireError(message={self.message!r}, cause={self.cause!r})"


def _validate_payload(kind: str, payload: object) -> None:
    """Check that ``payload`` is the right Python type for ``kind``.

    :param kind: Wire kind name.
    :param payload: Candidate payload.
    :raises ValueError: If the kind is unknown or the payload does not match it.
    """
    if kind not in WIRE_KINDS:
        raise ValueError(f"Unknown wire kind: {kind}")

    valid: bool
    if kind == "Nothing":
        valid = payload is None
    elif kind == "Bool":
        valid = isinstance(payload, bool)
    elif kind == "Int" or kind == "Duration":
        valid = isinstance(payload, int) is True and isinstance(payload, bool) is False
        if valid is True and fits_int64(payload) is False:
            raise ValueError(f"{kind} payload {payload} does not fit in 64 bits")
    elif kind == "Float":
        valid = isinstance(payload, float)
    elif kind == "String":
        valid = isinstance(payload, str)
    elif kind == "Binary":
        valid = isinstance(payload, bytes)
    elif kind == "Date":
        valid = isinstance(payload, datetime.datetime)
    elif kind == "List":
        valid = isinstance(payload, list) is True and all(isinstance(item, WireValue) for item in payload)
    elif kind == "Record":
        valid = isinstance(payload, dict) is True and all(
            isinstance(key, str) is True and isinstance(item, WireValue) is True for key, item in payload.items()
        )
    elif kind == "Custom":
        valid = isinstance(payload, CustomRef)
    else:
        valid = isinstance(payload, WireError)

    if valid is False:
        raise ValueError(f"Invalid payload for wire kind {kind}: {type(payload).__name__}")


class WireValue:
    """One value of the shell's tagged union."""

    kind: WireKind
    payload: object

    def __init__(self, kind: WireKind, payload: object = None) -> None:
        """Initialize a wire value.

        :param kind: Variant name.
        :param payload: Variant payload, ``None`` for Nothing.
        :raises ValueError: If the payload does not match the kind.
        """
        _validate_payload(kind, payload)
        self.kind = kind
        self.payload = payload

    @classmethod
    def nothing(cls) -> "WireValue":
        return cls("Nothing")

    @classmethod
    def of_bool(cls, value: bool) -> "WireValue":
        return cls("Bool", value)

    @classmethod
    def of_int(cls, value: int) -> "WireValue":
        return cls("Int", value)

    @classmethod
    def of_float(cls, value: float) -> "WireValue":
        return cls("Float", float(value))

    @classmethod
    def of_string(cls, value: str) -> "WireValue":
        return cls("String", value)

    @classmethod
    def of_binary(cls, value: bytes) -> "WireValue":
        return cls("Binary", bytes(value))

    @classmethod
    def of_date(cls, value: datetime.datetime) -> "WireValue":
        return cls("Date", value)

    @classmethod
    def of_duration(cls, value: datetime.timedelta) -> "WireValue":
        return cls("Duration", timedelta_to_ticks(value))

    @classmethod
    def of_ticks(cls, ticks: int) -> "WireValue":
        return cls("Duration", ticks)

    @classmethod
    def of_list(cls, values: list["WireValue"]) -> "WireValue":
        return cls("List", list(values))

    @classmethod
    def of_record(cls, values: dict[str, "WireValue"]) -> "WireValue":
        return cls("Record", dict(values))

    @classmethod
    def of_custom(cls, object_id: str, type_name: str) -> "WireValue":
        return cls("Custom", CustomRef(object_id, type_name))

    @classmethod
    def error(cls, message: str, cause: WireError | None = None) -> "WireValue":
        return cls("Error", WireError(message, cause))

    @property
    def is_error(self) -> bool:
        return self.kind == "Error"

    def as_timedelta(self) -> datetime.timedelta:
        """Return a Duration payload as a timedelta.

        :returns: Duration as timedelta.
        :raises ValueError: If this value is not a Duration.
        """
        if self.kind != "Duration":
            raise ValueError(f"{self.kind} is not a Duration")
        return ticks_to_timedelta(self.payload)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, WireValue) is False:
            return NotImplemented
        return self.kind == other.kind and self.payload == other.payload

    def __repr__(self) -> str:
        if self.kind == "Nothing":
            return "WireValue(Nothing)"
        return f"WireValue({self.kind}, {self.payload!r})"


def _encode_error(error: WireError) -> dict[str, object]:
    encoded: dict[str, object] = {"msg": error.message}
    if error.cause is not None:
        encoded["inner"] = [_encode_error(error.cause)]
    return encoded


def encode_wire(value: WireValue) -> dict[str, object]:
    """Serialize a wire value into its JSON-ready tagged form.

    Non-finite floats have no JSON spelling and are sent as their string form.

    :param value: Value to encode.
    :returns: Single-key dictionary keyed by the variant name.
    """
    kind: str = value.kind
    span: dict[str, int] = dict(_EMPTY_SPAN)
    if kind == "Float" and math.isfinite(value.payload) is False:
        return {"String": {"val": repr(value.payload), "span": span}}
    if kind == "Nothing":
        return {"Nothing": {"span": span}}
    if kind == "Binary":
        return {"Binary": {"val": list(value.payload), "span": span}}
    if kind == "Date":
        return {"Date": {"val": value.payload.isoformat(), "span": span}}
    if kind == "List":
        return {"List": {"vals": [encode_wire(item) for item in value.payload], "span": span}}
    if kind == "Record":
        encoded_record: dict[str, object] = {}
        for key, item in value.payload.items():
            encoded_record[key] = encode_wire(item)
        return {"Record": {"val": encoded_record, "span": span}}
    if kind == "Custom":
        reference: CustomRef = value.payload
        return {
            "Custom": {
                "val": {"object_id": reference.object_id, "type_name": reference.type_name},
                "span": span,
            }
        }
    if kind == "Error":
        return {"Error": _encode_error(value.payload)}
    return {kind: {"val": value.payload, "span": span}}


def _require_val(kind: str, body: dict[str, object], key: str = "val") -> object:
    """Extract the payload field of an encoded variant.

    :param kind: Variant name, used in messages.
    :param body: Encoded variant body.
    :param key: Payload field name.
    :returns: Raw payload.
    :raises ProtocolDecodeError: If the field is missing.
    """
    if key not in body:
        raise ProtocolDecodeError(f"{kind} value is missing '{key}'")
    return body[key]


def _decode_error(raw: object) -> WireError:
    if isinstance(raw, dict) is False:
        raise ProtocolDecodeError("Error value must be an object")
    message: object = raw.get("msg")
    if isinstance(message, str) is False:
        raise ProtocolDecodeError("Error value must carry a string 'msg'")
    cause: WireError | None = None
    inner: object = raw.get("inner")
    if isinstance(inner, list) is True and len(inner) > 0:
        cause = _decode_error(inner[0])
    return WireError(message, cause)


def _decode_binary(raw: object) -> bytes:
    if isinstance(raw, str) is True:
        try:
            return base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ProtocolDecodeError(f"Binary value is not valid base64: {exc}") from exc
    if isinstance(raw, list) is False:
        raise ProtocolDecodeError("Binary value must be a list of bytes or a base64 string")
    for item in raw:
        is_byte: bool = isinstance(item, int) is True and isinstance(item, bool) is False
        if is_byte is False or item < 0 or item > 255:
            raise ProtocolDecodeError(f"Binary value contains a non-byte item: {item!r}")
    return bytes(raw)


def decode_wire(raw: object) -> WireValue:
    """Parse one JSON-decoded wire value.

    :param raw: Decoded JSON value, expected to be ``{Kind: {...}}``.
    :returns: Parsed wire value.
    :raises ProtocolDecodeError: If the value is malformed.
    """
    if isinstance(raw, dict) is False or len(raw) != 1:
        raise ProtocolDecodeError("Wire value must be an object with exactly one variant key")

    kind: str
    body: object
    kind, body = next(iter(raw.items()))
    if kind not in WIRE_KINDS:
        raise ProtocolDecodeError(f"Unknown wire value variant: {kind}")
    if kind == "Error":
        return WireValue("Error", _decode_error(body))
    if isinstance(body, dict) is False:
        raise ProtocolDecodeError(f"{kind} value body must be an object")

    if kind == "Nothing":
        return WireValue.nothing()

    if kind == "List":
        list_key: str = "vals" if "vals" in body else "val"
        items: object = _require_val(kind, body, list_key)
        if isinstance(items, list) is False:
            raise ProtocolDecodeError("List value must carry an array")
        return WireValue.of_list([decode_wire(item) for item in items])

    val: object = _require_val(kind, body)
    if kind == "Bool":
        if isinstance(val, bool) is False:
            raise ProtocolDecodeError("Bool value must be a boolean")
        return WireValue.of_bool(val)
    if kind == "Int" or kind == "Duration":
        is_int: bool = isinstance(val, int) is True and isinstance(val, bool) is False
        if is_int is False:
            raise ProtocolDecodeError(f"{kind} value must be an integer")
        if fits_int64(val) is False:
            raise ProtocolDecodeError(f"{kind} value {val} does not fit in 64 bits")
        return WireValue(kind, val)
    if kind == "Float":
        is_number: bool = isinstance(val, (int, float)) is True and isinstance(val, bool) is False
        if is_number is False:
            raise ProtocolDecodeError("Float value must be a number")
        return WireValue.of_float(float(val))
    if kind == "String":
        if isinstance(val, str) is False:
            raise ProtocolDecodeError("String value must be a string")
        return WireValue.of_string(val)
    if kind == "Binary":
        return WireValue.of_binary(_decode_binary(val))
    if kind == "Date":
        if isinstance(val, str) is False:
            raise ProtocolDecodeError("Date value must be an ISO-8601 string")
        try:
            parsed: datetime.datetime = datetime.datetime.fromisoformat(val)
        except ValueError as exc:
            raise ProtocolDecodeError(f"Date value is not ISO-8601: {val}") from exc
        return WireValue.of_date(parsed)
    if kind == "Record":
        if isinstance(val, dict) is False:
            raise ProtocolDecodeError("Record value must carry an object")
        record: dict[str, WireValue] = {}
        for key, item in val.items():
            record[key] = decode_wire(item)
        return WireValue.of_record(record)

    if isinstance(val, dict) is False:
        raise ProtocolDecodeError("Custom value must carry an object")
    object_id: object = val.get("object_id")
    if isinstance(object_id, str) is False:
        raise ProtocolDecodeError("Custom value must carry a string 'object_id'")
    type_name: object = val.get("type_name", "")
    if isinstance(type_name, str) is False:
        raise ProtocolDecodeError("Custom value 'type_name' must be a string")
    return WireValue.of_custom(object_id, type_name)
