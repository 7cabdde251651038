"""Tests for wire/Python value conversion and display flattening."""

import datetime
import types
from typing import Literal

import pytest

from nubridge.converter import ValueConverter
from nubridge.errors import ConversionError
from nubridge.errors import HandleNotFoundError
from nubridge.handles import ObjectHandleTable
from nubridge.introspection import PythonIntrospectionProvider
from nubridge.values import WireValue
from tests.fixtures.sample_library import Color
from tests.fixtures.sample_library import Countdown
from tests.fixtures.sample_library import Counter
from tests.fixtures.sample_library import Fragile
from tests.fixtures.sample_library import Node
from tests.fixtures.sample_library import Options
from tests.fixtures.sample_library import Point
from tests.fixtures.sample_library import PositivePoint


@pytest.fixture()
def handles() -> ObjectHandleTable:
    return ObjectHandleTable()


@pytest.fixture()
def converter(handles: ObjectHandleTable) -> ValueConverter:
    return ValueConverter(handles, PythonIntrospectionProvider())


@pytest.mark.parametrize(
    "value",
    [
        WireValue.nothing(),
        WireValue.of_bool(False),
        WireValue.of_int(-7),
        WireValue.of_float(2.5),
        WireValue.of_string("text"),
        WireValue.of_binary(b"\x00\x01"),
        WireValue.of_date(datetime.datetime(2024, 5, 6, 7, 8, 9, tzinfo=datetime.timezone.utc)),
        WireValue.of_ticks(12_340),
    ],
)
def test_primitive_values_survive_natural_conversion(converter: ValueConverter, value: WireValue) -> None:
    """Primitive values come back unchanged after a trip through Python."""
    assert converter.to_wire(converter.to_foreign(value)) == value


def test_numeric_shapes(converter: ValueConverter) -> None:
    converted: object = converter.to_foreign(WireValue.of_int(3), float)
    assert converted == 3.0
    assert isinstance(converted, float) is True
    assert converter.to_foreign(WireValue.of_string(" 42 "), int) == 42
    assert converter.to_foreign(WireValue.of_float(2.9), int) == 2


def test_bool_never_coerces_to_number(converter: ValueConverter) -> None:
    with pytest.raises(ConversionError, match="Cannot convert Bool to int"):
        converter.to_foreign(WireValue.of_bool(True), int)
    with pytest.raises(ConversionError):
        converter.to_foreign(WireValue.of_int(1), bool)


def test_nothing_maps_to_zero_value_or_none(converter: ValueConverter) -> None:
    assert converter.to_foreign(WireValue.nothing(), int) == 0
    assert converter.to_foreign(WireValue.nothing(), int | None) is None
    assert converter.to_foreign(WireValue.nothing(), Counter) is None


def test_union_tries_arms_in_order(converter: ValueConverter) -> None:
    assert converter.to_foreign(WireValue.of_string("12"), int | str) == 12
    assert converter.to_foreign(WireValue.of_string("abc"), int | str) == "abc"


def test_literal_shape(converter: ValueConverter) -> None:
    assert converter.to_foreign(WireValue.of_string("fast"), Literal["fast", "slow"]) == "fast"
    with pytest.raises(ConversionError):
        converter.to_foreign(WireValue.of_string("medium"), Literal["fast", "slow"])


def test_collections_follow_element_shapes(converter: ValueConverter) -> None:
    numbers: WireValue = WireValue.of_list([WireValue.of_string("1"), WireValue.of_int(2)])
    assert converter.to_foreign(numbers, list[int]) == [1, 2]
    assert converter.to_foreign(numbers, set[int]) == {1, 2}

    pair: WireValue = WireValue.of_list([WireValue.of_int(1), WireValue.of_string("a")])
    assert converter.to_foreign(pair, tuple[int, str]) == (1, "a")
    with pytest.raises(ConversionError):
        converter.to_foreign(pair, tuple[int, str, str])

    record: WireValue = WireValue.of_record({"a": WireValue.of_int(1)})
    assert converter.to_foreign(record, dict[str, float]) == {"a": 1.0}


def test_record_builds_dataclass_case_insensitively(converter: ValueConverter) -> None:
    record: WireValue = WireValue.of_record({"X": WireValue.of_int(3), "y": WireValue.of_int(4), "z": WireValue.of_int(9)})
    point: object = converter.to_foreign(record, Point)
    assert point == Point(3, 4)


def test_record_builds_object_through_parameterless_constructor(converter: ValueConverter) -> None:
    record: WireValue = WireValue.of_record({"Name": WireValue.of_string("fast")})
    options: object = converter.to_foreign(record, Options)
    assert isinstance(options, Options) is True
    assert options.name == "fast"
    assert options.retries == 3


def test_enum_from_name_or_value(converter: ValueConverter) -> None:
    assert converter.to_foreign(WireValue.of_string("green"), Color) is Color.GREEN
    assert converter.to_foreign(WireValue.of_int(1), Color) is Color.RED
    with pytest.raises(ConversionError, match="no member named 'blue'"):
        converter.to_foreign(WireValue.of_string("blue"), Color)
    assert converter.to_wire(Color.RED) == WireValue.of_string("RED")


def test_custom_values_resolve_through_handle_table(converter: ValueConverter, handles: ObjectHandleTable) -> None:
    counter: Counter = Counter(4)
    object_id: str = handles.register(counter)
    reference: WireValue = WireValue.of_custom(object_id, "tests.fixtures.sample_library.Counter")

    assert converter.to_foreign(reference) is counter
    assert converter.to_foreign(reference, Counter) is counter
    with pytest.raises(ConversionError):
        converter.to_foreign(reference, Point)
    with pytest.raises(HandleNotFoundError):
        converter.to_foreign(WireValue.of_custom("gone", "x"))


def test_complex_results_become_handles(converter: ValueConverter, handles: ObjectHandleTable) -> None:
    """Values without a direct wire form are boxed under a fresh handle."""
    counter: Counter = Counter()
    boxed: WireValue = converter.to_wire(counter)
    assert boxed.kind == "Custom"
    assert boxed.payload.type_name == "tests.fixtures.sample_library.Counter"
    assert handles.fetch(boxed.payload.object_id) is counter

    assert converter.to_wire(2**70).payload.type_name == "int"
    assert converter.to_wire([1, 2]).payload.type_name == "list"
    assert len(handles) == 3


def test_flatten_marks_cycles(converter: ValueConverter) -> None:
    node: Node = Node("a")
    node.next = node
    flattened: WireValue = converter.flatten(node)

    assert flattened.kind == "Record"
    assert flattened.payload["__type__"] == WireValue.of_string("Node")
    assert flattened.payload["__full_type__"] == WireValue.of_string("tests.fixtures.sample_library.Node")
    assert flattened.payload["name"] == WireValue.of_string("a")
    assert flattened.payload["next"] == WireValue.of_string("[Circular Reference: Node]")
    assert flattened.payload["children"] == WireValue.of_list([])


def test_flatten_renders_shared_references_fully(converter: ValueConverter) -> None:
    """Only references on the current path count as cycles."""
    parent: Node = Node("parent")
    leaf: Node = Node("leaf")
    parent.children = [leaf, leaf]
    children: list[WireValue] = converter.flatten(parent).payload["children"].payload

    assert len(children) == 2
    for child in children:
        assert child.payload["name"] == WireValue.of_string("leaf")


def test_flatten_reports_failing_members(converter: ValueConverter) -> None:
    flattened: WireValue = converter.flatten(Fragile())
    assert flattened.payload["broken"] == WireValue.of_string("[Error: nope]")
    assert flattened.payload["fine"] == WireValue.of_string("ok")


def test_flatten_collections_and_wide_values(converter: ValueConverter) -> None:
    flattened: WireValue = converter.flatten({"numbers": [1, 2], "big": 2**70, 3: None})
    assert flattened.payload["numbers"] == WireValue.of_list([WireValue.of_int(1), WireValue.of_int(2)])
    assert flattened.payload["big"] == WireValue.of_string(str(2**70))
    assert flattened.payload["3"] == WireValue.nothing()


def test_flatten_caps_attribute_count(handles: ObjectHandleTable) -> None:
    capped: ValueConverter = ValueConverter(handles, PythonIntrospectionProvider(), max_flatten_fields=2)
    wide: types.SimpleNamespace = types.SimpleNamespace(a=1, b=2, c=3, d=4, e=5)
    flattened: WireValue = capped.flatten(wide)

    assert sorted(flattened.payload.keys()) == ["__full_type__", "__type__", "a", "b"]


def test_record_rejected_by_dataclass_validation(converter: ValueConverter) -> None:
    """Validation errors raised while building the target become conversion errors."""
    record: WireValue = WireValue.of_record({"x": WireValue.of_int(-1)})
    with pytest.raises(ConversionError, match="coordinates must be non-negative"):
        converter.to_foreign(record, PositivePoint)


def test_non_finite_floats_become_text(converter: ValueConverter) -> None:
    assert converter.to_wire(float("-inf")) == WireValue.of_string("-inf")
    assert converter.to_wire(float("nan")) == WireValue.of_string("nan")
    assert converter.flatten({"limit": float("inf")}).payload["limit"] == WireValue.of_string("inf")


def test_flatten_lists_iterables_without_length(converter: ValueConverter) -> None:
    flattened: WireValue = converter.flatten(Countdown(3))
    assert flattened == WireValue.of_list([WireValue.of_int(3), WireValue.of_int(2), WireValue.of_int(1)])


def test_flatten_leaves_iterators_unconsumed(converter: ValueConverter) -> None:
    remaining: object = iter([1, 2, 3])
    flattened: WireValue = converter.flatten(remaining)
    assert flattened.kind == "Record"
    assert list(remaining) == [1, 2, 3]
