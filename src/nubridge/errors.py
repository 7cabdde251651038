"""Custom error types for nubridge."""


class BridgeError(Exception):
    """Base class for all nubridge errors."""


class ProtocolDecodeError(BridgeError):
    """Raised for malformed messages or wire values on the shell channel."""


class HandleNotFoundError(BridgeError):
    """Raised when an object handle id is unknown or already disposed."""

    object_id: str

    def __init__(self, object_id: str) -> None:
        """Initialize the error.

        :param object_id: Handle id that failed to resolve.
        """
        self.object_id = object_id
        super().__init__(f"Object with ID '{object_id}' not found")


class TypeNotFoundError(BridgeError):
    """Raised when a type name does not resolve."""

    type_name: str

    def __init__(self, type_name: str) -> None:
        """Initialize the error.

        :param type_name: Requested type name.
        """
        self.type_name = type_name
        super().__init__(f"Type '{type_name}' not found. Make sure the module is loaded.")


class MemberNotFoundError(BridgeError):
    """Raised when a method, property, field or indexer does not resolve."""


class OverloadNotFoundError(BridgeError):
    """Raised when no constructor or method candidate accepts the arguments."""


class ConversionError(BridgeError):
    """Raised when a wire value cannot be converted to a target shape."""


class InvocationFailure(BridgeError):
    """Raised when the foreign call itself raised an exception."""

    operation: str
    original_type_name: str
    original_message: str
    original_traceback: str

    def __init__(
        self,
        operation: str,
        original_type_name: str,
        original_message: str,
        original_traceback: str,
    ) -> None:
        """Initialize an invocation failure wrapper.

        :param operation: Short description of what was attempted.
        :param original_type_name: Raised exception type name.
        :param original_message: Raised exception message.
        :param original_traceback: Formatted traceback text.
        """
        self.operation = operation
        self.original_type_name = original_type_name
        self.original_message = original_message
        self.original_traceback = original_traceback
        super().__init__(f"Failed to {operation}: {original_type_name}: {original_message}")


class NotInitializedError(BridgeError):
    """Raised when the bridge failed to start up and cannot serve commands."""
