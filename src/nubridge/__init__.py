"""Public package API for nubridge."""

from nubridge.api import serve
from nubridge.dispatcher import CommandCall
from nubridge.dispatcher import CommandDispatcher
from nubridge.errors import BridgeError
from nubridge.errors import ConversionError
from nubridge.errors import HandleNotFoundError
from nubridge.errors import InvocationFailure
from nubridge.errors import MemberNotFoundError
from nubridge.errors import NotInitializedError
from nubridge.errors import OverloadNotFoundError
from nubridge.errors import ProtocolDecodeError
from nubridge.errors import TypeNotFoundError
from nubridge.handles import ObjectHandleTable
from nubridge.host import BridgeHost
from nubridge.protocol import ProtocolEngine
from nubridge.settings import PLUGIN_VERSION
from nubridge.settings import BridgeSettings
from nubridge.values import WireValue

__version__: str = PLUGIN_VERSION

__all__: list[str] = [
    "serve",
    "BridgeHost",
    "BridgeSettings",
    "CommandCall",
    "CommandDispatcher",
    "ObjectHandleTable",
    "ProtocolEngine",
    "WireValue",
    "BridgeError",
    "ConversionError",
    "HandleNotFoundError",
    "InvocationFailure",
    "MemberNotFoundError",
    "NotInitializedError",
    "OverloadNotFoundError",
    "ProtocolDecodeError",
    "TypeNotFoundError",
]
