"""Tests for overload selection."""

from typing import Any

import pytest

from nubridge.converter import ValueConverter
from nubridge.handles import ObjectHandleTable
from nubridge.introspection import MemberDescriptor
from nubridge.introspection import ParameterDescriptor
from nubridge.introspection import PythonIntrospectionProvider
from nubridge.overloads import OverloadMatch
from nubridge.overloads import describe_candidates
from nubridge.overloads import select_overload
from nubridge.values import WireValue
from tests.fixtures.sample_library import Counter
from tests.fixtures.sample_library import MathLib
from tests.fixtures.sample_library import Point
from tests.fixtures.sample_library import PositivePoint


@pytest.fixture()
def provider() -> PythonIntrospectionProvider:
    return PythonIntrospectionProvider()


@pytest.fixture()
def converter(provider: PythonIntrospectionProvider) -> ValueConverter:
    return ValueConverter(ObjectHandleTable(), provider)


def _max_candidates(provider: PythonIntrospectionProvider) -> list[MemberDescriptor]:
    return [member for member in provider.list_members(MathLib, instance=False) if member.name == "Max"]


def test_overload_stubs_are_listed_in_declaration_order(provider: PythonIntrospectionProvider) -> None:
    candidates: list[MemberDescriptor] = _max_candidates(provider)
    assert describe_candidates(candidates) == "(a: int, b: int), (a: str, b: str), (a: Any, b: Any)"
    assert all(candidate.is_static for candidate in candidates) is True


def test_first_convertible_candidate_wins(provider: PythonIntrospectionProvider, converter: ValueConverter) -> None:
    candidates: list[MemberDescriptor] = _max_candidates(provider)

    ints: OverloadMatch | None = select_overload(
        candidates, [WireValue.of_int(10), WireValue.of_int(20)], converter.to_foreign
    )
    assert ints is not None
    assert ints.member is candidates[0]
    assert ints.arguments == [10, 20]

    words: OverloadMatch | None = select_overload(
        candidates, [WireValue.of_string("a"), WireValue.of_string("b")], converter.to_foreign
    )
    assert words is not None
    assert words.member is candidates[1]
    assert words.arguments == ["a", "b"]


def test_numeric_strings_bind_to_earlier_numeric_overload(
    provider: PythonIntrospectionProvider, converter: ValueConverter
) -> None:
    """Declaration order decides ties, so numeric text lands on the int overload."""
    candidates: list[MemberDescriptor] = _max_candidates(provider)
    arguments: list[WireValue] = [WireValue.of_string("5"), WireValue.of_string("7")]

    selected: list[MemberDescriptor] = []
    for _ in range(3):
        match: OverloadMatch | None = select_overload(candidates, arguments, converter.to_foreign)
        assert match is not None
        selected.append(match.member)
        assert match.arguments == [5, 7]
    assert all(member is candidates[0] for member in selected) is True


def test_arity_mismatch_yields_no_match(provider: PythonIntrospectionProvider, converter: ValueConverter) -> None:
    arguments: list[WireValue] = [WireValue.of_int(1), WireValue.of_int(2), WireValue.of_int(3)]
    assert select_overload(_max_candidates(provider), arguments, converter.to_foreign) is None


def test_optional_parameters_allow_zero_arguments(
    provider: PythonIntrospectionProvider, converter: ValueConverter
) -> None:
    constructors: list[MemberDescriptor] = [
        member for member in provider.list_members(Counter, instance=False) if member.kind == "constructor"
    ]
    match: OverloadMatch | None = select_overload(constructors, [], converter.to_foreign)
    assert match is not None
    assert match.arguments == []
    assert [parameter.name for parameter in match.member.parameters] == ["start", "step"]


def test_zero_arguments_skip_candidates_with_required_parameters(converter: ValueConverter) -> None:
    needs_one: MemberDescriptor = MemberDescriptor(
        "build", "method", "Factory", parameters=[ParameterDescriptor("size", int)]
    )
    needs_none: MemberDescriptor = MemberDescriptor(
        "build", "method", "Factory", parameters=[ParameterDescriptor("size", int, is_optional=True)]
    )
    match: OverloadMatch | None = select_overload([needs_one, needs_none], [], converter.to_foreign)
    assert match is not None
    assert match.member is needs_none


def test_variadic_parameters_accept_extra_arguments(converter: ValueConverter) -> None:
    variadic: MemberDescriptor = MemberDescriptor(
        "join",
        "method",
        "Joiner",
        parameters=[ParameterDescriptor("first", str), ParameterDescriptor("rest", Any, True, is_variadic=True)],
    )
    arguments: list[WireValue] = [WireValue.of_string("a"), WireValue.of_int(1), WireValue.of_bool(True)]
    match: OverloadMatch | None = select_overload([variadic], arguments, converter.to_foreign)
    assert match is not None
    assert match.arguments == ["a", 1, True]


def test_describe_without_candidates() -> None:
    assert describe_candidates([]) == "(none)"


def test_candidate_rejecting_its_argument_is_skipped(converter: ValueConverter) -> None:
    """A record the first candidate's type refuses falls through to the next one."""
    strict: MemberDescriptor = MemberDescriptor(
        "plot", "method", "Plotter", parameters=[ParameterDescriptor("point", PositivePoint)]
    )
    lenient: MemberDescriptor = MemberDescriptor("plot", "method", "Plotter", parameters=[ParameterDescriptor("point", Point)])
    arguments: list[WireValue] = [WireValue.of_record({"x": WireValue.of_int(-2), "y": WireValue.of_int(5)})]

    match: OverloadMatch | None = select_overload([strict, lenient], arguments, converter.to_foreign)
    assert match is not None
    assert match.member is lenient
    assert match.arguments == [Point(-2, 5)]
