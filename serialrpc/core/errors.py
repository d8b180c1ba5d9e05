"""Domain-specific errors for serialrpc."""


class SerialRpcError(Exception):
    """Base error for serialrpc."""


class PortConnectionError(SerialRpcError):
    """Raised when a connection to the serial port cannot be established."""


class PortUnavailableError(PortConnectionError):
    """Raised when the requested port does not exist or cannot be opened."""


class PortBusyError(PortConnectionError):
    """Raised when another process already holds the port."""


class UnsupportedParametersError(PortConnectionError):
    """Raised when the port rejects the requested line parameters."""


class ProtocolError(SerialRpcError):
    """Base error for frames that break the wire protocol."""


class ProtocolDecodeError(ProtocolError):
    """Raised when a frame body cannot be parsed."""


class UnsolicitedReplyError(ProtocolError):
    """Raised when a result or error frame arrives with no call pending."""


class ActionNotFoundError(SerialRpcError):
    """Raised when the peer requests an action that is not registered."""


class ActionExecutionError(SerialRpcError):
    """Raised when a registered action handler fails."""


class RemoteExecutionError(SerialRpcError):
    """Raised when the peer reports a failure for an outgoing call."""

    def __init__(self, message: str, *, action: str | None = None) -> None:
        super().__init__(message)
        self.action = action


class ActionFailedError(SerialRpcError):
    """Raised when an outgoing call cannot be completed locally."""


class ConnectionClosedError(ActionFailedError):
    """Raised when the connection is closed before a call completes."""


class CallTimeoutError(ActionFailedError):
    """Raised when an outgoing call waits longer than its timeout."""


class TransportError(SerialRpcError):
    """Base transport error."""


class TransportIdleError(TransportError):
    """Raised when a read finds no data yet; not a failure."""


class TransportIOError(TransportError):
    """Raised on genuine read or write failures."""


class ProfileLoadError(SerialRpcError):
    """Raised when reading profile sources fails."""


class ProfileValidationError(SerialRpcError):
    """Raised when a profile file does not conform to schema or semantics."""
