"""Sandboxed plugin loading: signature and hash checks, security contexts and limits."""

import hashlib
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import ClassVar

from freeghost.errors import PluginError

_CHUNK_SIZE = 64 * 1024


class IsolationError(PluginError):
    prefix = "Plugin isolation error"


class InvalidSignatureError(IsolationError):
    prefix = "Invalid plugin signature"


class InvalidHashError(IsolationError):
    prefix = "Invalid plugin hash"


class ResourceExceededError(IsolationError):
    prefix = "Plugin resource limit exceeded"


class PluginLoadError(IsolationError):
    prefix = "Plugin load error"


@dataclass(frozen=True)
class ResourceLimits:
    """Upper bounds on what an isolated plugin may consume."""

    max_memory_mb: int = 100
    max_cpu_percent: int = 25
    max_disk_mb: int = 50
    max_network_kbps: int = 1000
    allowed_syscalls: tuple[int, ...] = ()


@dataclass(frozen=True)
class Permission:
    """A capability granted to a plugin; system calls carry their number."""

    name: str
    syscall: int | None = None

    READ_BIOMETRIC_DATA: ClassVar["Permission"]
    WRITE_TEMPLATE: ClassVar["Permission"]
    NETWORK_ACCESS: ClassVar["Permission"]
    STORAGE_ACCESS: ClassVar["Permission"]

    @classmethod
    def system_call(cls, number) -> "Permission":
        return cls("SystemCall", int(number))


Permission.READ_BIOMETRIC_DATA = Permission("ReadBiometricData")
Permission.WRITE_TEMPLATE = Permission("WriteTemplate")
Permission.NETWORK_ACCESS = Permission("NetworkAccess")
Permission.STORAGE_ACCESS = Permission("StorageAccess")


class IsolationLevel(Enum):
    PROCESS = "Process"
    CONTAINER = "Container"
    SECURE_ENCLAVE = "SecureEnclave"


@dataclass(frozen=True)
class IsolatedPluginMetadata:
    """Identity of a plugin binary together with its signature and SHA3-256 hash."""

    id: str
    name: str
    version: str
    signature: bytes = b""
    hash: bytes = b""


@dataclass(frozen=True)
class SecurityContext:
    plugin_id: str
    namespace_id: str
    resource_limits: ResourceLimits = field(default_factory=ResourceLimits)
    permissions: tuple[Permission, ...] = ()
    isolation_level: IsolationLevel = IsolationLevel.PROCESS


def file_hash(path) -> bytes:
    """SHA3-256 digest of the file at ``path``."""
    hasher = hashlib.sha3_256()
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                hasher.update(chunk)
    except OSError as exc:
        raise PluginLoadError(f"cannot read {path}: {exc}") from exc
    return hasher.digest()


def generate_namespace_id(metadata: IsolatedPluginMetadata) -> str:
    """``ns_`` followed by the hex SHA3-256 of the plugin id and version."""
    hasher = hashlib.sha3_256()
    hasher.update(metadata.id.encode("utf-8"))
    hasher.update(metadata.version.encode("utf-8"))
    return f"ns_{hasher.hexdigest()}"


class SecurityValidator:
    """Accepts plugins whose signature is trusted and whose binary matches its hash."""

    def __init__(self, trusted_signatures=()) -> None:
        self._trusted = {bytes(s) for s in trusted_signatures}

    def validate_plugin(self, path, metadata: IsolatedPluginMetadata) -> IsolatedPluginMetadata:
        self.verify_signature(metadata)
        self.verify_hash(path, metadata)
        return metadata

    def verify_signature(self, metadata: IsolatedPluginMetadata) -> None:
        if bytes(metadata.signature) not in self._trusted:
            raise InvalidSignatureError()

    def verify_hash(self, path, metadata: IsolatedPluginMetadata) -> None:
        if file_hash(path) != bytes(metadata.hash):
            raise InvalidHashError()


@dataclass(frozen=True)
class SecurePlugin:
    """A plugin admitted into its own security context."""

    context: SecurityContext
    path: Path

    @property
    def id(self) -> str:
        return self.context.plugin_id


class ResourceMonitor:
    """Tracks the resource limits of every registered plugin."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._limits: dict[str, ResourceLimits] = {}

    def register_plugin(self, plugin: SecurePlugin) -> None:
        with self._lock:
            self._limits[plugin.id] = plugin.context.resource_limits

    def check_resource_usage(self, plugin_id) -> bool:
        """Whether the plugin is within its limits; unknown plugins are an error."""
        with self._lock:
            if plugin_id not in self._limits:
                raise IsolationError(f"Plugin not monitored: {plugin_id}")
        return True

    def limits_for(self, plugin_id) -> ResourceLimits | None:
        with self._lock:
            return self._limits.get(plugin_id)


class SecurePluginManager:
    """Validates plugins and admits them under default isolation and limits."""

    def __init__(self, validator: SecurityValidator | None = None) -> None:
        self.validator = validator if validator is not None else SecurityValidator()
        self.resource_monitor = ResourceMonitor()
        self._lock = threading.Lock()
        self._plugins: dict[str, SecurePlugin] = {}

    def load_plugin(self, path, metadata: IsolatedPluginMetadata) -> SecurePlugin:
        validated = self.validator.validate_plugin(path, metadata)
        context = self.create_security_context(validated)
        plugin = SecurePlugin(context=context, path=Path(path))
        self.resource_monitor.register_plugin(plugin)
        with self._lock:
            self._plugins[validated.id] = plugin
        return plugin

    def create_security_context(self, metadata: IsolatedPluginMetadata) -> SecurityContext:
        return SecurityContext(
            plugin_id=metadata.id,
            namespace_id=generate_namespace_id(metadata),
            resource_limits=ResourceLimits(),
            permissions=(),
            isolation_level=IsolationLevel.PROCESS,
        )

    def plugin(self, plugin_id) -> SecurePlugin | None:
        with self._lock:
            return self._plugins.get(plugin_id)