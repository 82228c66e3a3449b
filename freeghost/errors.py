"""Error hierarchy shared by the node's components."""


class NodeError(Exception):
    """Base class of every error raised by the node.

    Subclasses set ``prefix``; the rendered message is ``"<prefix>: <detail>"``,
    or just the prefix when no detail is given.
    """

    prefix = ""

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail)
        self.detail = detail

    def __str__(self) -> str:
        if not self.prefix:
            return self.detail
        if not self.detail:
            return self.prefix
        return f"{self.prefix}: {self.detail}"


class ConfigError(NodeError):
    prefix = "Configuration error"


class IdentityError(NodeError):
    prefix = "Identity error"


class NetworkError(NodeError):
    prefix = "Network error"


class InvalidStateVersionError(NetworkError):
    prefix = "Invalid state version"


class NoMajorityStateError(NetworkError):
    prefix = "No majority state"


class PluginError(NodeError):
    prefix = "Plugin error"


class InitError(NodeError):
    prefix = "Initialization error"


class CryptoError(NodeError):
    prefix = "Crypto error"


class StorageError(NodeError):
    prefix = "Storage error"


class EncryptionError(StorageError):
    prefix = "Encryption error"


class DecryptionError(StorageError):
    prefix = "Decryption error"


class KeyManagementError(StorageError):
    prefix = "Key management error"


class DatabaseError(StorageError):
    prefix = "Database error"


class InvalidFormatError(StorageError):
    prefix = "Invalid data format"


class TransportError(NodeError):
    prefix = "Transport error"


class TransportConnectionError(TransportError):
    prefix = "Connection error"


class TransportSendError(TransportError):
    prefix = "Send error"


class TransportReceiveError(TransportError):
    prefix = "Receive error"


class TransportUnavailableError(TransportError):
    prefix = "Transport not available"


class InvalidMessageError(TransportError):
    prefix = "Invalid message format"


class TransportTimeoutError(TransportError):
    prefix = "Connection timeout"


class CircuitBreakerOpenError(TransportError):
    prefix = "Circuit breaker open"


class ProtocolError(TransportError):
    prefix = "Transport protocol error"


class AuthenticationFailedError(TransportError):
    prefix = "Transport authentication failed"