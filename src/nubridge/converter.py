"""Conversion between wire values and Python objects for nubridge."""

import collections.abc
import dataclasses
import datetime
import decimal
import enum
import fractions
import functools
import inspect
import math
import types
import typing
from typing import Any

from nubridge.errors import ConversionError
from nubridge.handles import ObjectHandleTable
from nubridge.introspection import IntrospectionProvider
from nubridge.introspection import MemberDescriptor
from nubridge.introspection import shape_name
from nubridge.values import WireValue
from nubridge.values import fits_int64
from nubridge.values import timedelta_to_ticks

DEFAULT_MAX_FLATTEN_PROPERTIES: int = 50
DEFAULT_MAX_FLATTEN_FIELDS: int = 20
_NO_RULE: object = object()
_ANY_SHAPES: tuple[object, ...] = (Any, object, inspect.Parameter.empty)
_NUMERIC_TARGETS: tuple[type, ...] = (int, float, complex, decimal.Decimal, fractions.Fraction)
_LIST_TARGETS: tuple[object, ...] = (
    list,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Iterable,
    collections.abc.Collection,
    collections.abc.Reversible,
)
_SET_TARGETS: tuple[object, ...] = (set, frozenset, collections.abc.Set, collections.abc.MutableSet)
_MAPPING_TARGETS: tuple[object, ...] = (dict, collections.abc.Mapping, collections.abc.MutableMapping)


def simple_to_wire(value: object) -> WireValue | None:
    """Convert a value that has a direct wire counterpart.

    :param value: Python value.
    :returns: Wire value, or ``None`` when ``value`` is complex.
    """
    if value is None:
        return WireValue.nothing()
    if isinstance(value, bool) is True:
        return WireValue.of_bool(value)
    if isinstance(value, enum.Enum) is True:
        return WireValue.of_string(value.name)
    if isinstance(value, int) is True:
        if fits_int64(value) is False:
            return None
        return WireValue.of_int(int(value))
    if isinstance(value, float) is True:
        return _float_to_wire(value)
    if isinstance(value, str) is True:
        return WireValue.of_string(str(value))
    if isinstance(value, (bytes, bytearray, memoryview)) is True:
        return WireValue.of_binary(bytes(value))
    if isinstance(value, datetime.datetime) is True:
        return WireValue.of_date(value)
    if isinstance(value, datetime.date) is True:
        return WireValue.of_date(datetime.datetime.combine(value, datetime.time.min))
    if isinstance(value, datetime.timedelta) is True:
        ticks: int = timedelta_to_ticks(value)
        if fits_int64(ticks) is False:
            return None
        return WireValue.of_ticks(ticks)
    if isinstance(value, decimal.Decimal) is True:
        return _float_to_wire(float(value))
    return None


def _float_to_wire(value: float) -> WireValue:
    if math.isfinite(value) is False:
        return WireValue.of_string(repr(value))
    return WireValue.of_float(value)


def _is_enumerable(value: object) -> bool:
    if isinstance(value, collections.abc.Iterable) is False:
        return False
    return isinstance(value, collections.abc.Iterator) is False


def _normalize_shape(shape: object) -> object:
    """Strip typing wrappers that do not change conversion.

    :param shape: Raw annotation.
    :returns: Shape suitable for conversion rules.
    """
    current: object = shape
    while True:
        if current is None:
            return type(None)
        if isinstance(current, str) is True:
            return Any
        if isinstance(current, typing.TypeVar) is True:
            bound: object = current.__bound__
            current = bound if bound is not None else Any
            continue
        origin: object = typing.get_origin(current)
        if origin is typing.Annotated or origin is typing.ClassVar:
            current = typing.get_args(current)[0]
            continue
        supertype: object = getattr(current, "__supertype__", None)
        if supertype is not None:
            current = supertype
            continue
        return current


def _zero_value(target: object) -> object:
    if target is bool:
        return False
    if target is int:
        return 0
    if target is float:
        return 0.0
    if target is complex:
        return 0j
    if target is decimal.Decimal:
        return decimal.Decimal(0)
    if target is datetime.timedelta:
        return datetime.timedelta(0)
    return None


def _is_structured_class(target: type) -> bool:
    if target.__module__ == "builtins":
        return False
    if inspect.isabstract(target) is True:
        return False
    return issubclass(target, (enum.Enum, BaseException)) is False


def _public_attribute_names(value: object) -> list[str]:
    names: list[str] = []
    instance_dict: object = getattr(value, "__dict__", None)
    if isinstance(instance_dict, dict) is True:
        for attr_name in instance_dict:
            if isinstance(attr_name, str) is True and attr_name.startswith("_") is False:
                names.append(attr_name)
    for klass in type(value).__mro__:
        slots: object = vars(klass).get("__slots__", ())
        if isinstance(slots, str) is True:
            slots = (slots,)
        for slot_name in slots:
            if isinstance(slot_name, str) is False or slot_name.startswith("_") is True:
                continue
            if slot_name not in names:
                names.append(slot_name)
    return names


def _public_property_names(value_type: type) -> list[str]:
    names: list[str] = []
    for attr_name in dir(value_type):
        if attr_name.startswith("_") is True:
            continue
        raw: object = inspect.getattr_static(value_type, attr_name, None)
        if isinstance(raw, (property, functools.cached_property)) is True:
            names.append(attr_name)
    return names


class ValueConverter:
    """Translate wire values to Python objects and back."""

    _handles: ObjectHandleTable
    _provider: IntrospectionProvider
    _max_flatten_properties: int
    _max_flatten_fields: int

    def __init__(
        self,
        handles: ObjectHandleTable,
        provider: IntrospectionProvider,
        max_flatten_properties: int = DEFAULT_MAX_FLATTEN_PROPERTIES,
        max_flatten_fields: int = DEFAULT_MAX_FLATTEN_FIELDS,
    ) -> None:
        """Initialize the converter.

        :param handles: Table used to box complex results and resolve Custom values.
        :param provider: Provider used for type names and structured member lookup.
        :param max_flatten_properties: Property cap per flattened object.
        :param max_flatten_fields: Attribute cap per flattened object.
        """
        self._handles = handles
        self._provider = provider
        self._max_flatten_properties = max_flatten_properties
        self._max_flatten_fields = max_flatten_fields

    def to_foreign(self, value: WireValue, shape: object = Any) -> object:
        """Convert a wire value to a Python object of the given shape.

        :param value: Wire value.
        :param shape: Target annotation; ``Any`` selects the natural mapping.
        :returns: Converted Python object.
        :raises ConversionError: If the value does not fit the shape.
        :raises HandleNotFoundError: If a Custom value refers to an unknown handle.
        """
        normalized: object = _normalize_shape(shape)
        if normalized in _ANY_SHAPES:
            return self._natural(value)

        origin: object = typing.get_origin(normalized)
        if origin is typing.Union or origin is types.UnionType:
            return self._to_union(value, normalized)
        if origin is typing.Literal:
            literal_value: object = self._natural(value)
            if literal_value in typing.get_args(normalized):
                return literal_value
            raise ConversionError(f"Cannot convert {value.kind} to {shape_name(normalized)}")

        target: object = origin if origin is not None else normalized
        if inspect.isclass(target) is False:
            raise ConversionError(f"Cannot convert {value.kind} to {shape_name(normalized)}")
        if value.kind == "Nothing":
            return _zero_value(target)
        if value.kind == "Custom":
            return self._resolve_custom(value, normalized, target)
        if value.kind == "Error":
            raise ConversionError(f"Cannot convert Error to {shape_name(normalized)}")

        converted: object = self._convert_by_rule(value, normalized, target)
        if converted is not _NO_RULE:
            return converted
        return self._coerce(value, normalized, target)

    def _natural(self, value: WireValue) -> object:
        kind: str = value.kind
        if kind == "Nothing":
            return None
        if kind == "Duration":
            return value.as_timedelta()
        if kind == "List":
            return [self._natural(item) for item in value.payload]
        if kind == "Record":
            return {key: self._natural(item) for key, item in value.payload.items()}
        if kind == "Custom":
            return self._handles.fetch(value.payload.object_id)
        if kind == "Error":
            raise ConversionError("Cannot convert Error to Any")
        return value.payload

    def _to_union(self, value: WireValue, shape: object) -> object:
        arms: tuple[object, ...] = typing.get_args(shape)
        none_type: type = type(None)
        if value.kind == "Nothing" and none_type in arms:
            return None
        for arm in arms:
            if arm is none_type:
                continue
            try:
                return self.to_foreign(value, arm)
            except ConversionError:
                continue
        raise ConversionError(f"Cannot convert {value.kind} to {shape_name(shape)}")

    def _resolve_custom(self, value: WireValue, shape: object, target: type) -> object:
        referent: object = self._handles.fetch(value.payload.object_id)
        try:
            matches: bool = isinstance(referent, target)
        except TypeError:
            matches = True
        if matches is False:
            raise ConversionError(f"Cannot convert Custom({value.payload.type_name}) to {shape_name(shape)}")
        return referent

    def _convert_by_rule(self, value: WireValue, shape: object, target: type) -> object:
        """Apply the direct conversion rule for ``value.kind``.

        :param value: Wire value, never Nothing, Custom or Error.
        :param shape: Normalized shape, used for element shapes.
        :param target: Runtime class behind ``shape``.
        :returns: Converted value, or ``_NO_RULE`` when no rule applies.
        :raises ConversionError: If a rule applies but the value does not fit.
        """
        kind: str = value.kind
        payload: object = value.payload

        if kind == "Bool":
            return payload if target is bool else _NO_RULE

        if kind == "Int" or kind == "Float":
            if issubclass(target, bool) is True:
                return _NO_RULE
            if issubclass(target, enum.Enum) is True:
                if kind == "Float":
                    return _NO_RULE
                try:
                    return target(payload)
                except ValueError as exc:
                    raise ConversionError(f"Cannot convert Int to {shape_name(shape)}: {exc}") from exc
            try:
                if issubclass(target, int) is True:
                    return target(int(payload))
                if issubclass(target, (float, complex, fractions.Fraction)) is True:
                    return target(payload)
                if issubclass(target, decimal.Decimal) is True:
                    return target(str(payload))
            except (ValueError, OverflowError) as exc:
                raise ConversionError(f"Cannot convert {kind} to {shape_name(shape)}: {exc}") from exc
            return _NO_RULE

        if kind == "String":
            if issubclass(target, str) is True:
                return target(payload)
            if issubclass(target, enum.Enum) is True:
                wanted: str = payload.lower()
                for member_name, member in target.__members__.items():
                    if member_name.lower() == wanted:
                        return member
                raise ConversionError(f"Cannot convert String to {shape_name(shape)}: no member named '{payload}'")
            return _NO_RULE

        if kind == "Binary":
            if issubclass(target, (bytes, bytearray)) is True:
                return target(payload)
            if target is memoryview:
                return memoryview(payload)
            return _NO_RULE

        if kind == "Date":
            if issubclass(target, datetime.datetime) is True:
                return payload
            if issubclass(target, datetime.date) is True:
                return payload.date()
            return _NO_RULE

        if kind == "Duration":
            if issubclass(target, datetime.timedelta) is True:
                return value.as_timedelta()
            return _NO_RULE

        if kind == "List":
            return self._convert_list(value, shape, target)

        if kind == "Record":
            return self._convert_record(value, shape, target)

        return _NO_RULE

    def _convert_list(self, value: WireValue, shape: object, target: type) -> object:
        items: list[WireValue] = value.payload
        arguments: tuple[object, ...] = typing.get_args(shape)
        if target is tuple:
            if len(arguments) == 0:
                return tuple(self._natural(item) for item in items)
            if len(arguments) == 2 and arguments[1] is Ellipsis:
                return tuple(self.to_foreign(item, arguments[0]) for item in items)
            if len(arguments) != len(items):
                raise ConversionError(
                    f"Cannot convert List of {len(items)} item(s) to {shape_name(shape)}"
                )
            return tuple(self.to_foreign(item, item_shape) for item, item_shape in zip(items, arguments))

        element_shape: object = arguments[0] if len(arguments) > 0 else Any
        if target in _SET_TARGETS:
            converted_items: list[object] = [self.to_foreign(item, element_shape) for item in items]
            if target is frozenset:
                return frozenset(converted_items)
            return set(converted_items)
        if target in _LIST_TARGETS:
            return [self.to_foreign(item, element_shape) for item in items]
        return _NO_RULE

    def _convert_record(self, value: WireValue, shape: object, target: type) -> object:
        record: dict[str, WireValue] = value.payload
        if target in _MAPPING_TARGETS:
            arguments: tuple[object, ...] = typing.get_args(shape)
            value_shape: object = arguments[1] if len(arguments) == 2 else Any
            return {key: self.to_foreign(item, value_shape) for key, item in record.items()}
        if _is_structured_class(target) is False:
            return _NO_RULE
        if dataclasses.is_dataclass(target) is True:
            return self._build_dataclass(record, target)
        return self._build_object(record, target)

    def _build_dataclass(self, record: dict[str, WireValue], target: type) -> object:
        hints: dict[str, object]
        try:
            hints = typing.get_type_hints(target)
        except (NameError, TypeError):
            hints = {}
        fields_by_name: dict[str, dataclasses.Field] = {
            field.name.lower(): field for field in dataclasses.fields(target) if field.init is True
        }
        kwargs: dict[str, object] = {}
        for key, item in record.items():
            field: dataclasses.Field | None = fields_by_name.get(key.lower())
            if field is None:
                continue
            kwargs[field.name] = self.to_foreign(item, hints.get(field.name, Any))
        try:
            return target(**kwargs)
        except Exception as exc:
            raise ConversionError(f"Cannot convert Record to {shape_name(target)}: {exc}") from exc

    def _build_object(self, record: dict[str, WireValue], target: type) -> object:
        try:
            instance: object = target()
        except Exception as exc:
            raise ConversionError(
                f"Cannot convert Record to {shape_name(target)}: no parameterless constructor ({exc})"
            ) from exc

        writable: dict[str, MemberDescriptor] = {}
        for member in self._provider.list_members(instance):
            if member.kind in ("property", "field") and member.can_write is True:
                writable.setdefault(member.name.lower(), member)

        for key, item in record.items():
            member: MemberDescriptor | None = writable.get(key.lower())
            if member is None:
                continue
            converted: object = self.to_foreign(item, member.shape)
            try:
                self._provider.set_member(instance, member, converted, [])
            except Exception as exc:
                raise ConversionError(f"Cannot set '{member.name}' on {shape_name(target)}: {exc}") from exc
        return instance

    def _coerce(self, value: WireValue, shape: object, target: type) -> object:
        """Last-resort conversion once no direct rule matched.

        :param value: Wire value.
        :param shape: Normalized shape, for messages.
        :param target: Runtime class behind ``shape``.
        :returns: Coerced value.
        :raises ConversionError: If coercion fails.
        """
        if value.kind == "String" and target in _NUMERIC_TARGETS:
            try:
                return target(value.payload.strip())
            except (ValueError, ArithmeticError):
                pass
        elif value.kind != "Bool":
            natural: object = self._natural(value)
            try:
                assignable: bool = isinstance(natural, target)
            except TypeError:
                assignable = False
            if assignable is True:
                return natural
        raise ConversionError(f"Cannot convert {value.kind} to {shape_name(shape)}")

    def to_wire(self, value: object) -> WireValue:
        """Convert a Python value, boxing complex values as handles.

        :param value: Python value.
        :returns: Direct wire value, or Custom for complex values.
        """
        simple: WireValue | None = simple_to_wire(value)
        if simple is not None:
            return simple
        type_name: str = self._provider.type_name(type(value))
        object_id: str = self._handles.register(value, type_name)
        return WireValue.of_custom(object_id, type_name)

    def flatten(self, value: object, visiting: set[int] | None = None) -> WireValue:
        """Render a Python value as plain wire data for display.

        Re-iterable values become lists, mappings and objects become records.
        Iterators and generators are shown as objects so they are not consumed. A
        reference already on the current path renders as a circular-reference
        marker string.

        :param value: Python value.
        :param visiting: Identities of objects on the current traversal path.
        :returns: Wire value without Custom handles.
        """
        if visiting is None:
            visiting = set()
        simple: WireValue | None = simple_to_wire(value)
        if simple is not None:
            return simple
        if isinstance(value, (int, datetime.timedelta)) is True:
            return WireValue.of_string(str(value))

        identity: int = id(value)
        if identity in visiting:
            return WireValue.of_string(f"[Circular Reference: {type(value).__name__}]")
        visiting.add(identity)
        try:
            if isinstance(value, collections.abc.Mapping) is True:
                entries: dict[str, WireValue] = {}
                for key, item in value.items():
                    entries[str(key)] = self.flatten(item, visiting)
                return WireValue.of_record(entries)
            if _is_enumerable(value) is True:
                return WireValue.of_list([self.flatten(item, visiting) for item in value])
            return self._flatten_object(value, visiting)
        finally:
            visiting.discard(identity)

    def _flatten_member(self, value: object, attr_name: str, visiting: set[int]) -> WireValue:
        try:
            member_value: object = getattr(value, attr_name)
        except Exception as exc:
            return WireValue.of_string(f"[Error: {exc}]")
        return self.flatten(member_value, visiting)

    def _flatten_object(self, value: object, visiting: set[int]) -> WireValue:
        value_type: type = type(value)
        record: dict[str, WireValue] = {
            "__type__": WireValue.of_string(value_type.__name__),
            "__full_type__": WireValue.of_string(self._provider.type_name(value_type)),
        }

        for attr_name in _public_property_names(value_type)[: self._max_flatten_properties]:
            record[attr_name.lower()] = self._flatten_member(value, attr_name, visiting)

        field_count: int = 0
        for attr_name in _public_attribute_names(value):
            if field_count >= self._max_flatten_fields:
                break
            key: str = attr_name.lower()
            if key in record:
                continue
            record[key] = self._flatten_member(value, attr_name, visiting)
            field_count += 1
        return WireValue.of_record(record)
