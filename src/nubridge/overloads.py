"""Constructor and method overload selection for nubridge."""

from collections.abc import Callable

from nubridge.errors import ConversionError
from nubridge.introspection import MemberDescriptor
from nubridge.values import WireValue

Converter = Callable[[WireValue, object], object]


class OverloadMatch:
    """Selected candidate together with its converted arguments."""

    member: MemberDescriptor
    arguments: list[object]

    def __init__(self, member: MemberDescriptor, arguments: list[object]) -> None:
        self.member = member
        self.arguments = arguments


def _convert_all(
    candidate: MemberDescriptor,
    arguments: list[WireValue],
    convert: Converter,
) -> list[object] | None:
    """Trial-convert every argument against a candidate's parameter shapes.

    :param candidate: Candidate whose arity already matched.
    :param arguments: Wire arguments in positional order.
    :param convert: Conversion callable, ``convert(value, shape)``.
    :returns: Converted arguments, or ``None`` when any conversion fails.
    """
    converted: list[object] = []
    for position, argument in enumerate(arguments):
        try:
            converted.append(convert(argument, candidate.parameter_shape(position)))
        except ConversionError:
            return None
    return converted


def select_overload(
    candidates: list[MemberDescriptor],
    arguments: list[WireValue],
    convert: Converter,
) -> OverloadMatch | None:
    """Pick the first candidate that accepts all arguments.

    Candidates are tried in order. A candidate matches when the argument count
    fits its parameters and every argument converts to the declared shape. With
    zero arguments and no match, the first candidate without required parameters
    is used.

    :param candidates: Same-named constructors or methods in declaration order.
    :param arguments: Wire arguments in positional order.
    :param convert: Conversion callable, ``convert(value, shape)``.
    :returns: The match, or ``None`` when no candidate accepts the arguments.
    """
    for candidate in candidates:
        if candidate.accepts_arity(len(arguments)) is False:
            continue
        converted: list[object] | None = _convert_all(candidate, arguments, convert)
        if converted is None:
            continue
        return OverloadMatch(candidate, converted)

    if len(arguments) == 0:
        for candidate in candidates:
            if candidate.required_count == 0:
                return OverloadMatch(candidate, [])
    return None


def describe_candidates(candidates: list[MemberDescriptor]) -> str:
    """Render candidate parameter lists for error messages.

    :param candidates: Candidates to list.
    :returns: Text such as ``(a: int, b: int), (text: str)``.
    """
    rendered: list[str] = []
    for candidate in candidates:
        rendered.append("(" + ", ".join(parameter.describe() for parameter in candidate.parameters) + ")")
    if len(rendered) == 0:
        return "(none)"
    return ", ".join(rendered)
