"""Type lookup, member enumeration and dynamic invocation for nubridge."""

import builtins
import dataclasses
import enum
import functools
import importlib
import importlib.util
import inspect
import logging
import os
import sys
import traceback
import types
import typing
from typing import Any
from typing import Literal
from typing import Protocol

from nubridge.errors import BridgeError
from nubridge.errors import InvocationFailure

logger = logging.getLogger(__name__)

MemberKind = Literal["constructor", "method", "property", "field", "indexer"]
_POSITIONAL_KINDS: tuple[object, ...] = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)


def shape_name(shape: object) -> str:
    """Render a parameter or value shape for messages and listings.

    :param shape: Class, typing construct or ``Any``.
    :returns: Short readable name.
    """
    if shape is Any or shape is inspect.Parameter.empty:
        return "Any"
    if shape is type(None):
        return "None"
    if inspect.isclass(shape) is True and typing.get_origin(shape) is None:
        return shape.__qualname__
    return repr(shape).replace("typing.", "")


def _type_like(value: object) -> bool:
    return inspect.isclass(value) is True or isinstance(value, types.ModuleType) is True


def _resolve_hints(owner: object) -> dict[str, object]:
    """Resolve annotations of a function or class, tolerating broken ones.

    :param owner: Function or class.
    :returns: Resolved hints, or an empty mapping when resolution fails.
    """
    try:
        return typing.get_type_hints(owner)
    except Exception:
        logger.debug("Could not resolve type hints for %r", owner, exc_info=True)
        return {}


def _unwrap_classvar(shape: object) -> object:
    if typing.get_origin(shape) is typing.ClassVar:
        arguments: tuple[object, ...] = typing.get_args(shape)
        if len(arguments) == 1:
            return arguments[0]
        return Any
    return shape


def _unwrap_stub(stub: object) -> object:
    # get_overloads keeps staticmethod/classmethod wrappers as registered
    return getattr(stub, "__func__", stub)


def _parameter_shape(parameter: inspect.Parameter, hints: dict[str, object]) -> object:
    hinted: object = hints.get(parameter.name, inspect.Parameter.empty)
    if hinted is not inspect.Parameter.empty:
        return hinted
    annotation: object = parameter.annotation
    if annotation is inspect.Parameter.empty or isinstance(annotation, str) is True:
        return Any
    return annotation


class ParameterDescriptor:
    """One positional parameter of a callable member."""

    name: str
    shape: object
    is_optional: bool
    is_variadic: bool

    def __init__(self, name: str, shape: object, is_optional: bool = False, is_variadic: bool = False) -> None:
        self.name = name
        self.shape = shape
        self.is_optional = is_optional
        self.is_variadic = is_variadic

    def describe(self) -> str:
        prefix: str = "*" if self.is_variadic is True else ""
        suffix: str = "=..." if self.is_optional is True and self.is_variadic is False else ""
        return f"{prefix}{self.name}: {shape_name(self.shape)}{suffix}"


class MemberDescriptor:
    """Describe one resolvable member of a type, module or instance."""

    name: str
    kind: MemberKind
    declaring_type: str
    parameters: list[ParameterDescriptor]
    shape: object
    is_static: bool
    can_read: bool
    can_write: bool
    is_async: bool

    def __init__(
        self,
        name: str,
        kind: MemberKind,
        declaring_type: str,
        parameters: list[ParameterDescriptor] | None = None,
        shape: object = Any,
        is_static: bool = False,
        can_read: bool = True,
        can_write: bool = False,
        is_async: bool = False,
    ) -> None:
        """Initialize the descriptor.

        :param name: Member name as declared.
        :param kind: Member category.
        :param declaring_type: Name of the declaring type or module.
        :param parameters: Positional parameters, for callables and indexers.
        :param shape: Return shape for callables, value shape otherwise.
        :param is_static: Whether the member is reachable without an instance.
        :param can_read: Whether the member can be read.
        :param can_write: Whether the member can be assigned.
        :param is_async: Whether calling the member produces an awaitable.
        """
        self.name = name
        self.kind = kind
        self.declaring_type = declaring_type
        self.parameters = list(parameters) if parameters is not None else []
        self.shape = shape
        self.is_static = is_static
        self.can_read = can_read
        self.can_write = can_write
        self.is_async = is_async

    @property
    def required_count(self) -> int:
        return sum(
            1 for parameter in self.parameters if parameter.is_optional is False and parameter.is_variadic is False
        )

    @property
    def is_variadic(self) -> bool:
        return any(parameter.is_variadic for parameter in self.parameters)

    def accepts_arity(self, count: int) -> bool:
        """Check whether ``count`` positional arguments can bind to this member.

        :param count: Number of positional arguments.
        :returns: ``True`` when the count is within the parameter bounds.
        """
        if count < self.required_count:
            return False
        if self.is_variadic is True:
            return True
        return count <= len(self.parameters)

    def parameter_shape(self, index: int) -> object:
        """Return the shape for the positional argument at ``index``.

        :param index: Zero-based argument position.
        :returns: Declared shape of the parameter that receives the argument.
        :raises IndexError: If no parameter receives that position.
        """
        if index < len(self.parameters) and self.parameters[index].is_variadic is False:
            return self.parameters[index].shape
        for parameter in self.parameters:
            if parameter.is_variadic is True:
                return parameter.shape
        raise IndexError(f"{self.name} has no parameter at position {index}")

    def signature_text(self) -> str:
        rendered: str = ", ".join(parameter.describe() for parameter in self.parameters)
        return f"{self.name}({rendered})"

    def __repr__(self) -> str:
        return f"MemberDescriptor({self.kind} {self.declaring_type}.{self.signature_text()})"


class ModuleDescriptor:
    """Descriptive record for one importable module."""

    name: str
    version: str
    location: str
    is_package: bool
    type_count: int
    loaded_by_bridge: bool

    def __init__(
        self,
        name: str,
        version: str,
        location: str,
        is_package: bool,
        type_count: int,
        loaded_by_bridge: bool,
    ) -> None:
        self.name = name
        self.version = version
        self.location = location
        self.is_package = is_package
        self.type_count = type_count
        self.loaded_by_bridge = loaded_by_bridge


class TypeDescriptor:
    """Descriptive record for one class or module namespace."""

    name: str
    full_name: str
    module: str
    is_class: bool
    is_abstract: bool
    is_enum: bool
    is_dataclass: bool
    is_exception: bool
    bases: list[str]
    properties: list[str]
    methods: list[str]

    def __init__(
        self,
        name: str,
        full_name: str,
        module: str,
        is_class: bool,
        is_abstract: bool,
        is_enum: bool,
        is_dataclass: bool,
        is_exception: bool,
        bases: list[str],
        properties: list[str],
        methods: list[str],
    ) -> None:
        self.name = name
        self.full_name = full_name
        self.module = module
        self.is_class = is_class
        self.is_abstract = is_abstract
        self.is_enum = is_enum
        self.is_dataclass = is_dataclass
        self.is_exception = is_exception
        self.bases = bases
        self.properties = properties
        self.methods = methods


class IntrospectionProvider(Protocol):
    """Capability the dispatcher needs from the foreign runtime."""

    def find_type(self, name: str) -> object | None: ...

    def type_name(self, type_object: object) -> str: ...

    def list_members(self, subject: object, static: bool = True, instance: bool = True) -> list[MemberDescriptor]: ...

    def construct(self, type_object: object, member: MemberDescriptor, args: list[object]) -> object: ...

    def invoke(self, target: object, member: MemberDescriptor, args: list[object]) -> object: ...

    def get_member(self, target: object, member: MemberDescriptor, index_args: list[object]) -> object: ...

    def set_member(
        self,
        target: object,
        member: MemberDescriptor,
        value: object,
        index_args: list[object],
    ) -> None: ...

    def load(self, path_or_name: str) -> ModuleDescriptor: ...

    def list_modules(self) -> list[ModuleDescriptor]: ...

    def list_types(self, module_name: str) -> list[TypeDescriptor]: ...

    def describe_type(self, type_object: object) -> TypeDescriptor: ...


def _resolve_qualname_or_none(root: object, qualname: str) -> object | None:
    """Resolve a dotted qualname to a class or module below ``root``.

    :param root: Module or class to start from.
    :param qualname: Dotted name such as ``Outer.Inner``.
    :returns: Resolved class or module, or ``None``.
    """
    current: object = root
    for piece in qualname.split("."):
        if piece == "":
            return None
        current = getattr(current, piece, None)
        if current is None:
            return None
    if _type_like(current) is False:
        return None
    return current


def _index_key(index_args: list[object]) -> object:
    if len(index_args) == 1:
        return index_args[0]
    return tuple(index_args)


def _wrap_failure(operation: str, exc: Exception) -> InvocationFailure:
    return InvocationFailure(operation, type(exc).__name__, str(exc), traceback.format_exc())


class PythonIntrospectionProvider:
    """Expose the running interpreter's modules and classes to the dispatcher."""

    _loaded: dict[str, types.ModuleType]

    def __init__(self, preload: list[str] | None = None) -> None:
        """Initialize the provider.

        :param preload: Module names or file paths to load eagerly.
        :raises InvocationFailure: If a preload module cannot be loaded.
        """
        self._loaded = {}
        for path_or_name in preload or []:
            self.load(path_or_name)

    def type_name(self, type_object: object) -> str:
        """Return the declared name used for handles and messages.

        :param type_object: Class or module.
        :returns: ``module.QualName`` for classes, the module name for modules.
        """
        if isinstance(type_object, types.ModuleType) is True:
            return type_object.__name__
        if inspect.isclass(type_object) is False:
            type_object = type(type_object)
        if type_object.__module__ == "builtins":
            return type_object.__qualname__
        return f"{type_object.__module__}.{type_object.__qualname__}"

    def _import_or_none(self, module_name: str) -> types.ModuleType | None:
        existing: types.ModuleType | None = sys.modules.get(module_name)
        if existing is not None:
            return existing
        try:
            return importlib.import_module(module_name)
        except ImportError:
            return None
        except Exception:
            logger.warning("Importing %s raised while resolving a type name", module_name, exc_info=True)
            return None

    def find_type(self, name: str) -> object | None:
        """Resolve a type name to a class, or a module used as a static namespace.

        Accepted forms are ``pkg.mod:Qual.Name``, ``pkg.mod.Qual`` and bare names.
        Bare names are looked up in explicitly loaded modules, ``builtins`` and
        already-imported modules, then case-insensitively in loaded modules.
        Bare names are never imported.

        :param name: Requested type name.
        :returns: Resolved class or module, or ``None``.
        """
        cleaned: str = name.strip()
        if cleaned == "":
            return None

        if ":" in cleaned:
            module_name: str
            qualname: str
            module_name, _, qualname = cleaned.partition(":")
            module: types.ModuleType | None = self._import_or_none(module_name)
            if module is None:
                return None
            return _resolve_qualname_or_none(module, qualname)

        for loaded_module in self._loaded.values():
            found: object | None = _resolve_qualname_or_none(loaded_module, cleaned)
            if found is not None:
                return found

        builtin_value: object = getattr(builtins, cleaned, None)
        if inspect.isclass(builtin_value) is True:
            return builtin_value

        imported: types.ModuleType | None = sys.modules.get(cleaned)
        if imported is not None:
            return imported

        if "." in cleaned:
            dotted: object | None = self._find_dotted(cleaned)
            if dotted is not None:
                return dotted

        return self._find_case_insensitive(cleaned)

    def _find_dotted(self, name: str) -> object | None:
        pieces: list[str] = name.split(".")
        for split_at in range(len(pieces), 0, -1):
            module_name: str = ".".join(pieces[:split_at])
            module: types.ModuleType | None = self._import_or_none(module_name)
            if module is None:
                continue
            if split_at == len(pieces):
                return module
            found: object | None = _resolve_qualname_or_none(module, ".".join(pieces[split_at:]))
            if found is not None:
                return found
        return None

    def _find_case_insensitive(self, name: str) -> object | None:
        wanted: str = name.lower()
        for loaded_module in self._loaded.values():
            for attr_name, value in vars(loaded_module).items():
                if attr_name.lower() == wanted and inspect.isclass(value) is True:
                    return value
        return None

    def list_members(self, subject: object, static: bool = True, instance: bool = True) -> list[MemberDescriptor]:
        """Enumerate public members of a class, module or instance.

        :param subject: Class, module or instance to inspect.
        :param static: Include members reachable without an instance.
        :param instance: Include members that need an instance.
        :returns: Matching members. Candidates sharing a name keep declaration order.
        """
        members: list[MemberDescriptor]
        if isinstance(subject, types.ModuleType) is True:
            members = self._module_members(subject)
        elif inspect.isclass(subject) is True:
            members = self._class_members(subject)
        else:
            members = self._instance_members(subject)

        filtered: list[MemberDescriptor] = []
        for member in members:
            if member.is_static is True and static is False:
                continue
            if member.is_static is False and instance is False:
                continue
            filtered.append(member)
        return filtered

    def _callable_members(
        self,
        name: str,
        function: object,
        declaring_type: str,
        is_static: bool,
        skip_first: bool,
        kind: MemberKind = "method",
    ) -> list[MemberDescriptor]:
        """Build one candidate per overload plus one for the implementation.

        :param name: Member name.
        :param function: Underlying function or builtin.
        :param declaring_type: Declaring type name.
        :param is_static: Whether the member is static.
        :param skip_first: Drop the first positional parameter (``self``/``cls``).
        :param kind: Member kind, ``method`` or ``constructor``.
        :returns: Candidate descriptors in declaration order.
        """
        variants: list[object] = []
        if inspect.isfunction(function) is True:
            variants.extend(_unwrap_stub(stub) for stub in typing.get_overloads(function))
        variants.append(function)
        is_async: bool = inspect.iscoroutinefunction(function)

        candidates: list[MemberDescriptor] = []
        for variant in variants:
            hints: dict[str, object] = _resolve_hints(variant) if inspect.isfunction(variant) is True else {}
            parameters: list[ParameterDescriptor] = self._positional_parameters(variant, hints, skip_first)
            candidates.append(
                MemberDescriptor(
                    name,
                    kind,
                    declaring_type,
                    parameters=parameters,
                    shape=hints.get("return", Any),
                    is_static=is_static,
                    can_read=False,
                    can_write=False,
                    is_async=is_async,
                )
            )
        return candidates

    def _positional_parameters(
        self,
        function: object,
        hints: dict[str, object],
        skip_first: bool,
    ) -> list[ParameterDescriptor]:
        try:
            signature: inspect.Signature = inspect.signature(function)
        except (TypeError, ValueError):
            return [ParameterDescriptor("args", Any, is_optional=True, is_variadic=True)]

        parameters: list[inspect.Parameter] = list(signature.parameters.values())
        if skip_first is True and len(parameters) > 0 and parameters[0].kind in _POSITIONAL_KINDS:
            parameters = parameters[1:]

        described: list[ParameterDescriptor] = []
        for parameter in parameters:
            if parameter.kind in _POSITIONAL_KINDS:
                has_default: bool = parameter.default is not inspect.Parameter.empty
                described.append(ParameterDescriptor(parameter.name, _parameter_shape(parameter, hints), has_default))
            elif parameter.kind == inspect.Parameter.VAR_POSITIONAL:
                described.append(
                    ParameterDescriptor(parameter.name, _parameter_shape(parameter, hints), True, is_variadic=True)
                )
        return described

    def _constructors(self, cls: type, declaring_type: str) -> list[MemberDescriptor]:
        candidates: list[MemberDescriptor] = []
        init_function: object = inspect.getattr_static(cls, "__init__", None)
        if inspect.isfunction(init_function) is True:
            for stub in typing.get_overloads(init_function):
                stub_hints: dict[str, object] = _resolve_hints(stub)
                candidates.append(
                    MemberDescriptor(
                        cls.__name__,
                        "constructor",
                        declaring_type,
                        parameters=self._positional_parameters(stub, stub_hints, skip_first=True),
                        shape=cls,
                        is_static=True,
                    )
                )

        hints: dict[str, object] = {}
        if inspect.isfunction(init_function) is True:
            hints = _resolve_hints(init_function)
        candidates.append(
            MemberDescriptor(
                cls.__name__,
                "constructor",
                declaring_type,
                parameters=self._positional_parameters(cls, hints, skip_first=False),
                shape=cls,
                is_static=True,
            )
        )
        return candidates

    def _class_attribute_members(
        self,
        name: str,
        raw: object,
        hints: dict[str, object],
        declaring_type: str,
    ) -> list[MemberDescriptor]:
        if isinstance(raw, property) is True:
            shape: object = Any
            if raw.fget is not None:
                shape = _resolve_hints(raw.fget).get("return", Any)
            return [
                MemberDescriptor(
                    name,
                    "property",
                    declaring_type,
                    shape=shape,
                    can_read=raw.fget is not None,
                    can_write=raw.fset is not None,
                )
            ]
        if isinstance(raw, functools.cached_property) is True:
            cached_shape: object = _resolve_hints(raw.func).get("return", Any)
            return [MemberDescriptor(name, "property", declaring_type, shape=cached_shape, can_write=True)]
        if isinstance(raw, staticmethod) is True:
            return self._callable_members(name, raw.__func__, declaring_type, is_static=True, skip_first=False)
        if isinstance(raw, classmethod) is True:
            return self._callable_members(name, raw.__func__, declaring_type, is_static=True, skip_first=True)
        if inspect.isfunction(raw) is True:
            return self._callable_members(name, raw, declaring_type, is_static=False, skip_first=True)
        if inspect.isroutine(raw) is True:
            is_class_method: bool = isinstance(raw, types.ClassMethodDescriptorType)
            return self._callable_members(name, raw, declaring_type, is_static=is_class_method, skip_first=True)
        if isinstance(raw, (types.MemberDescriptorType, types.GetSetDescriptorType)) is True:
            slot_shape: object = _unwrap_classvar(hints.get(name, Any))
            return [MemberDescriptor(name, "field", declaring_type, shape=slot_shape, can_write=True)]
        field_shape: object = _unwrap_classvar(hints.get(name, Any))
        return [MemberDescriptor(name, "field", declaring_type, shape=field_shape, is_static=True, can_write=True)]

    def _indexers(self, cls: type, declaring_type: str) -> list[MemberDescriptor]:
        getter: object = inspect.getattr_static(cls, "__getitem__", None)
        if getter is None:
            return []
        setter: object = inspect.getattr_static(cls, "__setitem__", None)

        key_shapes: list[object] = [Any]
        value_shape: object = Any
        if inspect.isfunction(getter) is True:
            getter_hints: dict[str, object] = _resolve_hints(getter)
            getter_parameters: list[ParameterDescriptor] = self._positional_parameters(getter, getter_hints, True)
            if len(getter_parameters) > 0:
                key_shape: object = getter_parameters[0].shape
                key_arguments: tuple[object, ...] = typing.get_args(key_shape)
                is_fixed_tuple: bool = (
                    typing.get_origin(key_shape) is tuple and len(key_arguments) > 0 and Ellipsis not in key_arguments
                )
                key_shapes = list(key_arguments) if is_fixed_tuple is True else [key_shape]
            value_shape = getter_hints.get("return", Any)
        if inspect.isfunction(setter) is True:
            setter_parameters: list[ParameterDescriptor] = self._positional_parameters(
                setter, _resolve_hints(setter), True
            )
            if len(setter_parameters) > 1:
                value_shape = setter_parameters[1].shape

        parameters: list[ParameterDescriptor] = [
            ParameterDescriptor(f"key{position}", key_shape_item) for position, key_shape_item in enumerate(key_shapes)
        ]
        return [
            MemberDescriptor(
                "__getitem__",
                "indexer",
                declaring_type,
                parameters=parameters,
                shape=value_shape,
                can_read=True,
                can_write=setter is not None,
            )
        ]

    def _class_members(self, cls: type) -> list[MemberDescriptor]:
        declaring_type: str = self.type_name(cls)
        members: list[MemberDescriptor] = self._constructors(cls, declaring_type)
        hints: dict[str, object] = _resolve_hints(cls)
        seen: set[str] = set()
        for attr_name in dir(cls):
            if attr_name.startswith("_") is True:
                continue
            try:
                raw: object = inspect.getattr_static(cls, attr_name)
            except AttributeError:
                continue
            seen.add(attr_name)
            members.extend(self._class_attribute_members(attr_name, raw, hints, declaring_type))

        for attr_name, hint in hints.items():
            if attr_name.startswith("_") is True or attr_name in seen:
                continue
            if typing.get_origin(hint) is typing.ClassVar:
                continue
            members.append(MemberDescriptor(attr_name, "field", declaring_type, shape=hint, can_write=True))

        members.extend(self._indexers(cls, declaring_type))
        return members

    def _instance_members(self, value: object) -> list[MemberDescriptor]:
        members: list[MemberDescriptor] = [
            member for member in self._class_members(type(value)) if member.kind != "constructor"
        ]
        known: set[str] = {member.name for member in members}
        declaring_type: str = self.type_name(type(value))
        instance_dict: object = getattr(value, "__dict__", None)
        if isinstance(instance_dict, dict) is True:
            for attr_name in instance_dict:
                if isinstance(attr_name, str) is False or attr_name.startswith("_") is True:
                    continue
                if attr_name in known:
                    continue
                members.append(MemberDescriptor(attr_name, "field", declaring_type, can_write=True))
        return members

    def _module_members(self, module: types.ModuleType) -> list[MemberDescriptor]:
        declaring_type: str = module.__name__
        members: list[MemberDescriptor] = []
        for attr_name in sorted(vars(module)):
            if attr_name.startswith("_") is True:
                continue
            raw: object = vars(module)[attr_name]
            if inspect.isroutine(raw) is True:
                members.extend(
                    self._callable_members(attr_name, raw, declaring_type, is_static=True, skip_first=False)
                )
            else:
                members.append(
                    MemberDescriptor(attr_name, "field", declaring_type, is_static=True, can_write=True)
                )
        return members

    def construct(self, type_object: object, member: MemberDescriptor, args: list[object]) -> object:
        """Instantiate a class.

        :param type_object: Class to instantiate.
        :param member: Selected constructor candidate.
        :param args: Converted positional arguments.
        :returns: New instance.
        :raises InvocationFailure: If the constructor raised.
        """
        try:
            return type_object(*args)
        except Exception as exc:
            raise _wrap_failure(f"create object of type '{self.type_name(type_object)}'", exc) from exc

    def invoke(self, target: object, member: MemberDescriptor, args: list[object]) -> object:
        """Call a method on an instance, class or module.

        :param target: Receiver.
        :param member: Selected method candidate.
        :param args: Converted positional arguments.
        :returns: Raw result, possibly an awaitable.
        :raises InvocationFailure: If the method raised.
        """
        try:
            bound: object = getattr(target, member.name)
            return bound(*args)
        except Exception as exc:
            raise _wrap_failure(f"call method '{member.name}'", exc) from exc

    def get_member(self, target: object, member: MemberDescriptor, index_args: list[object]) -> object:
        try:
            if member.kind == "indexer":
                return target[_index_key(index_args)]
            return getattr(target, member.name)
        except Exception as exc:
            raise _wrap_failure(f"get member '{member.name}'", exc) from exc

    def set_member(
        self,
        target: object,
        member: MemberDescriptor,
        value: object,
        index_args: list[object],
    ) -> None:
        try:
            if member.kind == "indexer":
                target[_index_key(index_args)] = value
                return
            setattr(target, member.name, value)
        except Exception as exc:
            raise _wrap_failure(f"set member '{member.name}'", exc) from exc

    def load(self, path_or_name: str) -> ModuleDescriptor:
        """Import a module by name, or execute a ``.py`` file or package directory.

        :param path_or_name: Dotted module name, file path or package directory.
        :returns: Descriptor of the loaded module.
        :raises InvocationFailure: If the import fails.
        """
        candidate: str = os.path.abspath(os.path.expanduser(path_or_name))
        try:
            module: types.ModuleType
            if os.path.isdir(candidate) is True:
                module = self._load_from_path(os.path.join(candidate, "__init__.py"), os.path.basename(candidate))
            elif os.path.isfile(candidate) is True:
                module_name: str = os.path.splitext(os.path.basename(candidate))[0]
                module = self._load_from_path(candidate, module_name)
            else:
                module = importlib.import_module(path_or_name)
        except Exception as exc:
            raise _wrap_failure(f"load module '{path_or_name}'", exc) from exc

        self._loaded[module.__name__] = module
        logger.info("Loaded module %s", module.__name__)
        return self._describe_module(module)

    def _load_from_path(self, file_path: str, module_name: str) -> types.ModuleType:
        if os.path.isfile(file_path) is False:
            raise FileNotFoundError(f"No module source at {file_path}")
        is_package: bool = os.path.basename(file_path) == "__init__.py"
        search_locations: list[str] | None = [os.path.dirname(file_path)] if is_package is True else None
        spec = importlib.util.spec_from_file_location(
            module_name,
            file_path,
            submodule_search_locations=search_locations,
        )
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot build an import spec for {file_path}")

        parent_directory: str = os.path.dirname(file_path)
        if is_package is True:
            parent_directory = os.path.dirname(parent_directory)
        if parent_directory not in sys.path:
            sys.path.append(parent_directory)

        module: types.ModuleType = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise
        return module

    def _public_classes(self, module: types.ModuleType) -> list[type]:
        classes: list[type] = []
        for attr_name, value in vars(module).items():
            if attr_name.startswith("_") is True or inspect.isclass(value) is False:
                continue
            if getattr(value, "__module__", None) == module.__name__:
                classes.append(value)
        return sorted(classes, key=lambda cls: cls.__name__)

    def _describe_module(self, module: types.ModuleType) -> ModuleDescriptor:
        version: object = getattr(module, "__version__", "")
        location: object = getattr(module, "__file__", None)
        return ModuleDescriptor(
            name=module.__name__,
            version=str(version) if version is not None else "",
            location=location if isinstance(location, str) is True else "",
            is_package=hasattr(module, "__path__"),
            type_count=len(self._public_classes(module)),
            loaded_by_bridge=module.__name__ in self._loaded,
        )

    def list_modules(self) -> list[ModuleDescriptor]:
        """Describe every imported public module.

        :returns: Module descriptors sorted by name.
        """
        descriptors: list[ModuleDescriptor] = []
        for module_name, module in sorted(list(sys.modules.items())):
            if isinstance(module, types.ModuleType) is False:
                continue
            if any(piece.startswith("_") for piece in module_name.split(".")) is True:
                continue
            try:
                descriptors.append(self._describe_module(module))
            except Exception:
                logger.debug("Skipping module %s that cannot be described", module_name, exc_info=True)
        return descriptors

    def list_types(self, module_name: str) -> list[TypeDescriptor]:
        """Describe the public classes defined by a module.

        :param module_name: Module name; must already be imported or loaded.
        :returns: Type descriptors sorted by name.
        :raises BridgeError: If the module is not imported.
        """
        module: types.ModuleType | None = self._loaded.get(module_name) or sys.modules.get(module_name)
        if module is None:
            raise BridgeError(f"Module '{module_name}' not found. Load it with 'py load' first.")
        return [self.describe_type(cls) for cls in self._public_classes(module)]

    def describe_type(self, type_object: object) -> TypeDescriptor:
        """Describe a class or module namespace.

        :param type_object: Class or module.
        :returns: Type descriptor.
        """
        members: list[MemberDescriptor] = self.list_members(type_object)
        properties: list[str] = sorted({member.name for member in members if member.kind in ("property", "field")})
        methods: list[str] = sorted({member.name for member in members if member.kind == "method"})

        if isinstance(type_object, types.ModuleType) is True:
            return TypeDescriptor(
                name=type_object.__name__.rsplit(".", 1)[-1],
                full_name=type_object.__name__,
                module=type_object.__name__,
                is_class=False,
                is_abstract=False,
                is_enum=False,
                is_dataclass=False,
                is_exception=False,
                bases=[],
                properties=properties,
                methods=methods,
            )

        return TypeDescriptor(
            name=type_object.__name__,
            full_name=self.type_name(type_object),
            module=type_object.__module__,
            is_class=True,
            is_abstract=inspect.isabstract(type_object),
            is_enum=issubclass(type_object, enum.Enum),
            is_dataclass=dataclasses.is_dataclass(type_object),
            is_exception=issubclass(type_object, BaseException),
            bases=[self.type_name(base) for base in type_object.__bases__],
            properties=properties,
            methods=methods,
        )
