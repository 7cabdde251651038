"""Command dispatch for the shell-facing ``py`` commands."""

import asyncio
import datetime
import inspect
import logging
import traceback
import types
from collections.abc import Callable

from nubridge import catalog
from nubridge.converter import ValueConverter
from nubridge.errors import BridgeError
from nubridge.errors import HandleNotFoundError
from nubridge.errors import InvocationFailure
from nubridge.errors import MemberNotFoundError
from nubridge.errors import OverloadNotFoundError
from nubridge.errors import TypeNotFoundError
from nubridge.handles import DEFAULT_RETENTION_SECONDS
from nubridge.handles import ObjectHandleTable
from nubridge.introspection import IntrospectionProvider
from nubridge.introspection import MemberDescriptor
from nubridge.introspection import ModuleDescriptor
from nubridge.introspection import TypeDescriptor
from nubridge.introspection import shape_name
from nubridge.overloads import OverloadMatch
from nubridge.overloads import describe_candidates
from nubridge.overloads import select_overload
from nubridge.values import WireError
from nubridge.values import WireValue

logger = logging.getLogger(__name__)

MAX_DESCRIBED_METHODS: int = 20
_MEMBER_KIND_ALIASES: dict[str, str] = {
    "constructor": "constructor",
    "constructors": "constructor",
    "method": "method",
    "methods": "method",
    "property": "property",
    "properties": "property",
    "field": "field",
    "fields": "field",
    "indexer": "indexer",
    "indexers": "indexer",
}


class CommandCall:
    """One shell command invocation."""

    name: str
    positional: list[WireValue]
    named: dict[str, WireValue]
    input: WireValue | None

    def __init__(
        self,
        name: str,
        positional: list[WireValue] | None = None,
        named: dict[str, WireValue] | None = None,
        input: WireValue | None = None,
    ) -> None:
        """Initialize the call.

        :param name: Command name, such as ``py call``.
        :param positional: Positional arguments.
        :param named: Named flags.
        :param input: Pipeline input, ``None`` when the pipeline was empty.
        """
        self.name = name
        self.positional = list(positional) if positional is not None else []
        self.named = dict(named) if named is not None else {}
        self.input = input

    def __repr__(self) -> str:
        return f"CommandCall(name={self.name!r}, positional={self.positional!r}, named={self.named!r})"


class _Target:
    """Receiver of an instance or static member access."""

    value: object
    type_label: str
    is_static: bool

    def __init__(self, value: object, type_label: str, is_static: bool) -> None:
        self.value = value
        self.type_label = type_label
        self.is_static = is_static


def _require_positional(call: CommandCall, index: int, label: str) -> WireValue:
    """Extract a required positional argument.

    :param call: Command call.
    :param index: Argument position.
    :param label: Parameter name, used in messages.
    :returns: Argument value.
    :raises BridgeError: If the argument is missing.
    """
    if index >= len(call.positional):
        raise BridgeError(f"Required positional parameter '{label}' at index {index} not found")
    return call.positional[index]


def _require_string(value: WireValue, label: str) -> str:
    """Extract a string payload.

    :param value: Wire value.
    :param label: Parameter name, used in messages.
    :returns: String payload.
    :raises BridgeError: If the value is not a String.
    """
    if value.kind != "String":
        raise BridgeError(f"{label} must be a string, got {value.kind}")
    return value.payload


def _named_bool(call: CommandCall, name: str) -> bool:
    value: WireValue | None = call.named.get(name)
    if value is None or value.kind == "Nothing":
        return False
    if value.kind != "Bool":
        raise BridgeError(f"--{name} must be a boolean switch")
    return value.payload


def _type_label(value: object) -> str:
    if isinstance(value, types.ModuleType) is True:
        return value.__name__
    if inspect.isclass(value) is True:
        return value.__name__
    return type(value).__name__


def _strings(values: list[str]) -> WireValue:
    return WireValue.of_list([WireValue.of_string(item) for item in values])


def _module_record(descriptor: ModuleDescriptor) -> WireValue:
    return WireValue.of_record(
        {
            "name": WireValue.of_string(descriptor.name),
            "version": WireValue.of_string(descriptor.version),
            "location": WireValue.of_string(descriptor.location),
            "is_package": WireValue.of_bool(descriptor.is_package),
            "type_count": WireValue.of_int(descriptor.type_count),
            "loaded_by_bridge": WireValue.of_bool(descriptor.loaded_by_bridge),
        }
    )


def _type_record(descriptor: TypeDescriptor, include_members: bool) -> WireValue:
    record: dict[str, WireValue] = {
        "name": WireValue.of_string(descriptor.name),
        "full_name": WireValue.of_string(descriptor.full_name),
        "module": WireValue.of_string(descriptor.module),
        "is_class": WireValue.of_bool(descriptor.is_class),
        "is_abstract": WireValue.of_bool(descriptor.is_abstract),
        "is_enum": WireValue.of_bool(descriptor.is_enum),
        "is_dataclass": WireValue.of_bool(descriptor.is_dataclass),
        "is_exception": WireValue.of_bool(descriptor.is_exception),
        "bases": _strings(descriptor.bases),
    }
    if include_members is True:
        record["properties"] = _strings(descriptor.properties)
        record["methods"] = _strings(descriptor.methods[:MAX_DESCRIBED_METHODS])
    return WireValue.of_record(record)


def _member_record(member: MemberDescriptor) -> WireValue:
    return WireValue.of_record(
        {
            "member_type": WireValue.of_string(member.kind),
            "name": WireValue.of_string(member.name),
            "return_type": WireValue.of_string(shape_name(member.shape)),
            "is_static": WireValue.of_bool(member.is_static),
            "parameters": _strings([parameter.describe() for parameter in member.parameters]),
            "can_read": WireValue.of_bool(member.can_read),
            "can_write": WireValue.of_bool(member.can_write),
            "is_async": WireValue.of_bool(member.is_async),
        }
    )


class CommandDispatcher:
    """Resolve ``py`` commands to conversions and provider operations."""

    _handles: ObjectHandleTable
    _provider: IntrospectionProvider
    _converter: ValueConverter
    _retention_seconds: float
    _loop: asyncio.AbstractEventLoop | None
    _commands: dict[str, Callable[[CommandCall], WireValue]]

    def __init__(
        self,
        handles: ObjectHandleTable,
        provider: IntrospectionProvider,
        converter: ValueConverter,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
    ) -> None:
        """Initialize the dispatcher.

        :param handles: Session handle table.
        :param provider: Introspection provider.
        :param converter: Value converter bound to ``handles``.
        :param retention_seconds: Default retention window for ``py collect``.
        """
        self._handles = handles
        self._provider = provider
        self._converter = converter
        self._retention_seconds = retention_seconds
        self._loop = None
        self._commands = {
            catalog.CMD_NEW: self._create,
            catalog.CMD_CALL: self._invoke,
            catalog.CMD_GET: self._get,
            catalog.CMD_SET: self._set,
            catalog.CMD_MODULES: self._list_modules,
            catalog.CMD_TYPES: self._list_types,
            catalog.CMD_MEMBERS: self._list_members,
            catalog.CMD_LOAD: self._load,
            catalog.CMD_OBJ: self._describe,
            catalog.CMD_DISPOSE: self._dispose,
            catalog.CMD_HANDLES: self._list_handles,
            catalog.CMD_COLLECT: self._collect,
        }

    @property
    def command_names(self) -> list[str]:
        return list(self._commands.keys())

    def dispatch(self, call: CommandCall) -> WireValue:
        """Run one command and return its wire result.

        Errors never propagate: every failure is returned as an Error value.

        :param call: Command call.
        :returns: Result value or Error value.
        """
        handler: Callable[[CommandCall], WireValue] | None = self._commands.get(call.name)
        if handler is None:
            return WireValue.error(f"Unknown command: {call.name}")

        logger.debug("Dispatching %r", call)
        try:
            return handler(call)
        except InvocationFailure as exc:
            logger.debug("%s failed:\n%s", call.name, exc.original_traceback)
            cause: WireError | None = None
            if exc.original_traceback.strip() != "":
                cause = WireError(exc.original_traceback.strip())
            return WireValue.error(str(exc), cause)
        except BridgeError as exc:
            logger.debug("%s failed: %s", call.name, exc)
            return WireValue.error(str(exc))
        except Exception as exc:
            logger.exception("%s failed unexpectedly", call.name)
            return WireValue.error(f"{call.name} failed: {type(exc).__name__}: {exc}")

    def close(self) -> None:
        """Close the event loop used for awaiting async results."""
        loop: asyncio.AbstractEventLoop | None = self._loop
        self._loop = None
        if loop is not None and loop.is_closed() is False:
            loop.close()

    def _run_awaitable(self, awaitable: object, member_name: str) -> object:
        """Await a result on the dispatcher's event loop.

        :param awaitable: Coroutine, task or other awaitable.
        :param member_name: Method name, used in messages.
        :returns: Awaited result.
        :raises InvocationFailure: If awaiting raised.
        """
        if self._loop is None or self._loop.is_closed() is True:
            self._loop = asyncio.new_event_loop()

        async def _await_result() -> object:
            return await awaitable

        try:
            return self._loop.run_until_complete(_await_result())
        except Exception as exc:
            raise InvocationFailure(
                f"await method '{member_name}'",
                type(exc).__name__,
                str(exc),
                traceback.format_exc(),
            ) from exc

    def _resolve_target(self, call: CommandCall) -> _Target:
        """Resolve the receiver of an instance or static access.

        A Custom input is an instance receiver. A String input is first tried as a
        type name for static access, then used as a plain ``str`` instance.

        :param call: Command call.
        :returns: Resolved target.
        :raises BridgeError: If the input is neither a Custom nor a String.
        """
        source: WireValue | None = call.input
        if source is not None and source.kind == "Custom":
            receiver: object = self._handles.fetch(source.payload.object_id)
            return _Target(receiver, _type_label(receiver), False)
        if source is not None and source.kind == "String":
            found: object | None = self._provider.find_type(source.payload)
            if found is not None:
                return _Target(found, _type_label(found), True)
            return _Target(source.payload, "str", False)
        raise BridgeError("Invalid target. Provide an object handle or a type name for static members.")

    def _members_of(self, target: _Target) -> list[MemberDescriptor]:
        return self._provider.list_members(target.value, static=True, instance=target.is_static is False)

    def _named_members(self, target: _Target, name: str, kinds: tuple[str, ...]) -> list[MemberDescriptor]:
        """Find members by name, case-insensitively, exact-case matches first.

        :param target: Receiver.
        :param name: Requested member name.
        :param kinds: Member kinds to consider.
        :returns: Matching members in declaration order.
        """
        wanted: str = name.lower()
        matching: list[MemberDescriptor] = [
            member
            for member in self._members_of(target)
            if member.kind in kinds and member.name.lower() == wanted
        ]
        exact: list[MemberDescriptor] = [member for member in matching if member.name == name]
        others: list[MemberDescriptor] = [member for member in matching if member.name != name]
        return exact + others

    def _data_member(self, target: _Target, name: str, writable: bool) -> MemberDescriptor | None:
        candidates: list[MemberDescriptor] = self._named_members(target, name, ("property", "field"))
        for kind in ("property", "field"):
            for member in candidates:
                if member.kind != kind:
                    continue
                usable: bool = member.can_write if writable is True else member.can_read
                if usable is True:
                    return member
        return None

    def _indexer_match(self, target: _Target, index_args: list[WireValue], writable: bool) -> OverloadMatch | None:
        indexers: list[MemberDescriptor] = []
        for member in self._members_of(target):
            if member.kind != "indexer":
                continue
            usable: bool = member.can_write if writable is True else member.can_read
            if usable is True and len(member.parameters) == len(index_args):
                indexers.append(member)
        return select_overload(indexers, index_args, self._converter.to_foreign)

    def _create(self, call: CommandCall) -> WireValue:
        type_label: str = _require_string(_require_positional(call, 0, "type_name"), "type_name")
        module_value: WireValue | None = call.named.get("module")
        if module_value is not None and module_value.kind != "Nothing":
            self._provider.load(_require_string(module_value, "module"))

        arguments: list[WireValue] = call.positional[1:]
        named_args: WireValue | None = call.named.get("args")
        if named_args is not None and named_args.kind != "Nothing":
            if named_args.kind != "List":
                raise BridgeError(f"--args must be a list, got {named_args.kind}")
            arguments = named_args.payload

        type_object: object | None = self._provider.find_type(type_label)
        if type_object is None or inspect.isclass(type_object) is False:
            raise TypeNotFoundError(type_label)

        candidates: list[MemberDescriptor] = [
            member
            for member in self._provider.list_members(type_object, static=True, instance=False)
            if member.kind == "constructor"
        ]
        match: OverloadMatch | None = select_overload(candidates, arguments, self._converter.to_foreign)
        if match is None:
            raise OverloadNotFoundError(
                f"No matching constructor found for {type_label}. "
                + f"Available constructors: {describe_candidates(candidates)}"
            )

        instance: object = self._provider.construct(type_object, match.member, match.arguments)
        type_name: str = self._provider.type_name(type_object)
        object_id: str = self._handles.register(instance, type_name)
        logger.info("Created %s as handle %s", type_name, object_id)
        return WireValue.of_custom(object_id, type_name)

    def _invoke(self, call: CommandCall) -> WireValue:
        method_name: str = _require_string(_require_positional(call, 0, "method"), "method")
        arguments: list[WireValue] = call.positional[1:]
        target: _Target = self._resolve_target(call)

        candidates: list[MemberDescriptor] = self._named_members(target, method_name, ("method",))
        if len(candidates) == 0:
            raise MemberNotFoundError(f"Method '{method_name}' not found on type '{target.type_label}'")
        match: OverloadMatch | None = select_overload(candidates, arguments, self._converter.to_foreign)
        if match is None:
            raise OverloadNotFoundError(
                f"No matching overload found for {method_name}. "
                + f"Available overloads: {describe_candidates(candidates)}"
            )

        result: object = self._provider.invoke(target.value, match.member, match.arguments)
        if inspect.isawaitable(result) is True:
            result = self._run_awaitable(result, match.member.name)
        return self._converter.to_wire(result)

    def _get(self, call: CommandCall) -> WireValue:
        member_name: str = _require_string(_require_positional(call, 0, "member"), "member")
        index_args: list[WireValue] = call.positional[1:]
        target: _Target = self._resolve_target(call)

        if len(index_args) > 0:
            indexer: OverloadMatch | None = self._indexer_match(target, index_args, writable=False)
            if indexer is not None:
                indexed: object = self._provider.get_member(target.value, indexer.member, indexer.arguments)
                return self._converter.to_wire(indexed)

        member: MemberDescriptor | None = self._data_member(target, member_name, writable=False)
        if member is None:
            raise MemberNotFoundError(f"Property or field '{member_name}' not found on type '{target.type_label}'")
        value: object = self._provider.get_member(target.value, member, [])

        if len(index_args) > 0:
            keys: list[object] = [self._converter.to_foreign(argument) for argument in index_args]
            key: object = keys[0] if len(keys) == 1 else tuple(keys)
            try:
                value = value[key]
            except Exception as exc:
                raise InvocationFailure(
                    f"index member '{member.name}'",
                    type(exc).__name__,
                    str(exc),
                    traceback.format_exc(),
                ) from exc
        return self._converter.to_wire(value)

    def _set(self, call: CommandCall) -> WireValue:
        member_name: str = _require_string(_require_positional(call, 0, "member"), "member")
        _require_positional(call, 1, "value")
        new_value: WireValue = call.positional[-1]
        index_args: list[WireValue] = call.positional[1:-1]
        target: _Target = self._resolve_target(call)

        if len(index_args) > 0:
            indexer: OverloadMatch | None = self._indexer_match(target, index_args, writable=True)
            if indexer is None:
                raise MemberNotFoundError(
                    f"No writable indexer on type '{target.type_label}' accepts the index arguments"
                )
            converted_item: object = self._converter.to_foreign(new_value, indexer.member.shape)
            self._provider.set_member(target.value, indexer.member, converted_item, indexer.arguments)
            return WireValue.nothing()

        member: MemberDescriptor | None = self._data_member(target, member_name, writable=True)
        if member is None:
            raise MemberNotFoundError(
                f"Writable property or field '{member_name}' not found on type '{target.type_label}'"
            )
        converted: object = self._converter.to_foreign(new_value, member.shape)
        self._provider.set_member(target.value, member, converted, [])
        logger.debug("Set %s on %s", member.name, target.type_label)
        return WireValue.nothing()

    def _list_modules(self, call: CommandCall) -> WireValue:
        return WireValue.of_list([_module_record(descriptor) for descriptor in self._provider.list_modules()])

    def _list_types(self, call: CommandCall) -> WireValue:
        module_name: str = _require_string(_require_positional(call, 0, "module"), "module")
        descriptors: list[TypeDescriptor] = self._provider.list_types(module_name)
        return WireValue.of_list([_type_record(descriptor, include_members=False) for descriptor in descriptors])

    def _list_members(self, call: CommandCall) -> WireValue:
        type_label: str = _require_string(_require_positional(call, 0, "type_name"), "type_name")
        type_object: object | None = self._provider.find_type(type_label)
        if type_object is None:
            raise TypeNotFoundError(type_label)

        kind_filter: str | None = None
        kind_value: WireValue | None = call.named.get("kind")
        if kind_value is not None and kind_value.kind != "Nothing":
            requested: str = _require_string(kind_value, "--kind").lower()
            kind_filter = _MEMBER_KIND_ALIASES.get(requested)
            if kind_filter is None:
                raise BridgeError(
                    f"Unknown member kind '{requested}'. Use one of: constructor, method, property, field, indexer"
                )

        static_only: bool = _named_bool(call, "static")
        instance_only: bool = _named_bool(call, "instance")
        include_static: bool = static_only is True or instance_only is False
        include_instance: bool = instance_only is True or static_only is False
        members: list[MemberDescriptor] = self._provider.list_members(
            type_object,
            static=include_static,
            instance=include_instance,
        )
        return WireValue.of_list(
            [_member_record(member) for member in members if kind_filter is None or member.kind == kind_filter]
        )

    def _load(self, call: CommandCall) -> WireValue:
        path_or_name: str = _require_string(_require_positional(call, 0, "path_or_name"), "path_or_name")
        return _module_record(self._provider.load(path_or_name))

    def _describe(self, call: CommandCall) -> WireValue:
        source: WireValue | None = call.input
        if source is None:
            raise BridgeError("No input provided")
        if source.kind == "String":
            found: object | None = self._provider.find_type(source.payload)
            if found is not None:
                return _type_record(self._provider.describe_type(found), include_members=True)
        value: object
        if source.kind == "Custom":
            value = self._handles.fetch(source.payload.object_id)
        else:
            value = self._converter.to_foreign(source)
        return self._converter.flatten(value)

    def _dispose(self, call: CommandCall) -> WireValue:
        reference: WireValue | None = call.positional[0] if len(call.positional) > 0 else call.input
        if reference is None:
            raise BridgeError("Provide a handle to dispose as an argument or as input")
        object_id: str
        if reference.kind == "Custom":
            object_id = reference.payload.object_id
        elif reference.kind == "String":
            object_id = reference.payload
        else:
            raise BridgeError(f"Cannot dispose a {reference.kind} value; expected a handle")
        if self._handles.dispose(object_id) is False:
            raise HandleNotFoundError(object_id)
        return WireValue.nothing()

    def _list_handles(self, call: CommandCall) -> WireValue:
        rows: list[WireValue] = []
        for object_id, type_name, last_accessed in self._handles.snapshot():
            accessed_at: datetime.datetime = datetime.datetime.fromtimestamp(last_accessed, tz=datetime.timezone.utc)
            rows.append(
                WireValue.of_record(
                    {
                        "id": WireValue.of_string(object_id),
                        "type_name": WireValue.of_string(type_name),
                        "last_accessed": WireValue.of_date(accessed_at),
                    }
                )
            )
        return WireValue.of_list(rows)

    def _collect(self, call: CommandCall) -> WireValue:
        retention_seconds: float = self._retention_seconds
        older_than: WireValue | None = call.named.get("older-than")
        if older_than is not None and older_than.kind != "Nothing":
            if older_than.kind != "Duration":
                raise BridgeError(f"--older-than must be a duration, got {older_than.kind}")
            retention_seconds = older_than.as_timedelta().total_seconds()
        disposed: list[str] = self._handles.sweep(retention_seconds)
        return WireValue.of_record(
            {
                "disposed": WireValue.of_int(len(disposed)),
                "remaining": WireValue.of_int(len(self._handles)),
            }
        )
