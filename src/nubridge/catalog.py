"""Static command catalog reported to the shell on ``Signature`` calls."""

COMMAND_PREFIX: str = "py"
CATEGORY: str = "Experimental"

CMD_NEW: str = f"{COMMAND_PREFIX} new"
CMD_CALL: str = f"{COMMAND_PREFIX} call"
CMD_GET: str = f"{COMMAND_PREFIX} get"
CMD_SET: str = f"{COMMAND_PREFIX} set"
CMD_MODULES: str = f"{COMMAND_PREFIX} modules"
CMD_TYPES: str = f"{COMMAND_PREFIX} types"
CMD_MEMBERS: str = f"{COMMAND_PREFIX} members"
CMD_LOAD: str = f"{COMMAND_PREFIX} load"
CMD_OBJ: str = f"{COMMAND_PREFIX} obj"
CMD_DISPOSE: str = f"{COMMAND_PREFIX} dispose"
CMD_HANDLES: str = f"{COMMAND_PREFIX} handles"
CMD_COLLECT: str = f"{COMMAND_PREFIX} collect"


def _positional(name: str, desc: str, shape: object = "String") -> dict[str, object]:
    return {"name": name, "desc": desc, "shape": shape, "var_id": None}


def _flag(long: str, desc: str, arg: object = None, short: str | None = None) -> dict[str, object]:
    return {
        "long": long,
        "short": short,
        "arg": arg,
        "required": False,
        "desc": desc,
        "var_id": None,
        "default_value": None,
    }


_HELP_FLAG: dict[str, object] = _flag("help", "Display the help message for this command", short="h")


def _signature(
    name: str,
    description: str,
    required: list[dict[str, object]] | None = None,
    optional: list[dict[str, object]] | None = None,
    rest: dict[str, object] | None = None,
    named: list[dict[str, object]] | None = None,
) -> dict[str, object]:
    return {
        "sig": {
            "name": name,
            "description": description,
            "extra_description": "",
            "search_terms": ["python", "object"],
            "required_positional": required or [],
            "optional_positional": optional or [],
            "rest_positional": rest,
            "named": [_HELP_FLAG] + (named or []),
            "input_output_types": [["Any", "Any"]],
            "allow_variants_without_examples": True,
            "is_filter": False,
            "creates_scope": False,
            "allows_unknown_args": False,
            "category": CATEGORY,
        },
        "examples": [],
    }


COMMAND_SIGNATURES: list[dict[str, object]] = [
    _signature(
        CMD_NEW,
        "Create a Python object and return a handle to it",
        required=[_positional("type_name", "Class name, e.g. 'collections.OrderedDict' or 'pkg.mod:Class'")],
        rest=_positional("ctor_args", "Constructor arguments", "Any"),
        named=[
            _flag("args", "Constructor arguments as a list", {"List": "Any"}),
            _flag("module", "Module name or file path to load before resolving the type", "String"),
        ],
    ),
    _signature(
        CMD_CALL,
        "Call a method on a handle (input) or a static method on a type name (input)",
        required=[_positional("method", "Method name")],
        rest=_positional("args", "Method arguments", "Any"),
    ),
    _signature(
        CMD_GET,
        "Read a property, field or indexer from a handle or type",
        required=[_positional("member", "Property or field name")],
        rest=_positional("index", "Index arguments for indexers", "Any"),
    ),
    _signature(
        CMD_SET,
        "Assign a property, field or indexer on a handle or type",
        required=[_positional("member", "Property or field name"), _positional("value", "Value to assign", "Any")],
        rest=_positional("more", "Index arguments followed by the value, for indexers", "Any"),
    ),
    _signature(CMD_MODULES, "List imported Python modules"),
    _signature(
        CMD_TYPES,
        "List public classes defined by a module",
        required=[_positional("module", "Module name")],
    ),
    _signature(
        CMD_MEMBERS,
        "List members of a type",
        required=[_positional("type_name", "Type name")],
        named=[
            _flag("kind", "Only list one kind: method, property, field, constructor or indexer", "String"),
            _flag("static", "Only list static members"),
            _flag("instance", "Only list instance members"),
        ],
    ),
    _signature(
        CMD_LOAD,
        "Import a module by name, or load a .py file or package directory",
        required=[_positional("path_or_name", "Module name or path")],
    ),
    _signature(CMD_OBJ, "Render the input value, handle or type name as plain data"),
    _signature(
        CMD_DISPOSE,
        "Release a handle and dispose its object",
        optional=[_positional("handle", "Handle id or value; defaults to the input", "Any")],
    ),
    _signature(CMD_HANDLES, "List live object handles"),
    _signature(
        CMD_COLLECT,
        "Dispose handles that have not been used recently",
        named=[_flag("older-than", "Retention window; defaults to the configured one", "Duration")],
    ),
]


def command_names() -> list[str]:
    return [entry["sig"]["name"] for entry in COMMAND_SIGNATURES]
