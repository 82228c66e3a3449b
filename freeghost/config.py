"""Node configuration: typed sections, defaults, loading and validation."""

import json
import os
import tomllib
from collections.abc import Mapping
from dataclasses import MISSING, dataclass, field, fields
from datetime import timedelta
from pathlib import Path

from freeghost.errors import ConfigError

_U16_MAX = 0xFFFF
_U32_MAX = 0xFFFFFFFF
_ENV_PREFIX = "APP_"
_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


@dataclass(frozen=True, kw_only=True)
class NodeConfig:
    id: str
    host: str
    port: int = field(metadata={"max": _U16_MAX})
    log_level: str = "info"
    data_dir: str


@dataclass(frozen=True, kw_only=True)
class NetworkConfig:
    use_tor: bool
    peers: list[str]
    max_connections: int = 50
    connection_timeout: int = 30
    heartbeat_interval: int = 60
    peer_cleanup_interval: int = 300
    bootstrap_nodes: list[str]
    listen_addresses: list[str]


@dataclass(frozen=True, kw_only=True)
class StorageConfig:
    path: str
    encryption_key: str
    max_size_gb: int = 10
    backup_interval: int = 86400
    compression_enabled: bool = True


@dataclass(frozen=True, kw_only=True)
class PluginsConfig:
    enabled: bool = True
    directory: str
    allowed_origins: list[str]
    auto_update: bool = False
    sandbox_enabled: bool = True


@dataclass(frozen=True, kw_only=True)
class SecurityConfig:
    tls_enabled: bool = False
    tls_cert_path: str | None = None
    tls_key_path: str | None = None
    max_request_size: int = 10_485_760
    rate_limit_requests: int = field(default=100, metadata={"max": _U32_MAX})
    rate_limit_window: int = 60


@dataclass(frozen=True, kw_only=True)
class Config:
    node: NodeConfig
    network: NetworkConfig
    storage: StorageConfig
    plugins: PluginsConfig
    security: SecurityConfig

    def validate(self) -> None:
        """Raise ConfigError if the settings are inconsistent."""
        if self.node.port == 0:
            raise ConfigError("Invalid port number")
        if self.network.max_connections == 0:
            raise ConfigError("max_connections must be greater than 0")
        if not self.network.peers and not self.network.bootstrap_nodes:
            raise ConfigError("No peers or bootstrap nodes configured")
        if self.storage.max_size_gb == 0:
            raise ConfigError("max_size_gb must be greater than 0")
        if not self.storage.encryption_key:
            raise ConfigError("encryption_key must be set")
        if self.security.tls_enabled and (
            self.security.tls_cert_path is None or self.security.tls_key_path is None
        ):
            raise ConfigError("TLS cert and key paths must be set when TLS is enabled")

    def connection_timeout(self) -> timedelta:
        return timedelta(seconds=self.network.connection_timeout)

    def heartbeat_interval(self) -> timedelta:
        return timedelta(seconds=self.network.heartbeat_interval)

    def peer_cleanup_interval(self) -> timedelta:
        return timedelta(seconds=self.network.peer_cleanup_interval)

    def backup_interval(self) -> timedelta:
        return timedelta(seconds=self.storage.backup_interval)


def _coerce_str(value, where: str) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise ConfigError(f"invalid type for `{where}`: expected a string")


def _coerce(tp, value, where: str, maximum: int | None):
    if tp is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _TRUE:
                return True
            if text in _FALSE:
                return False
        raise ConfigError(f"invalid type for `{where}`: expected a boolean")
    if tp is int:
        if isinstance(value, int) and not isinstance(value, bool):
            number = value
        elif isinstance(value, str):
            try:
                number = int(value.strip())
            except ValueError:
                raise ConfigError(f"invalid type for `{where}`: expected an integer") from None
        else:
            raise ConfigError(f"invalid type for `{where}`: expected an integer")
        if number < 0:
            raise ConfigError(f"invalid value for `{where}`: must not be negative")
        if maximum is not None and number > maximum:
            raise ConfigError(f"invalid value for `{where}`: must be at most {maximum}")
        return number
    if tp == list[str]:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, (list, tuple)):
            return [_coerce_str(item, where) for item in value]
        raise ConfigError(f"invalid type for `{where}`: expected a list")
    if tp == (str | None):
        return None if value is None else _coerce_str(value, where)
    return _coerce_str(value, where)


def _build_section(cls, name: str, raw):
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"invalid type for `{name}`: expected a table")
    values = {}
    for f in fields(cls):
        where = f"{name}.{f.name}"
        if f.name in raw:
            values[f.name] = _coerce(f.type, raw[f.name], where, f.metadata.get("max"))
        elif f.default is not MISSING:
            values[f.name] = f.default
        else:
            raise ConfigError(f"missing field `{where}`")
    return cls(**values)


def config_from_mapping(data) -> Config:
    """Build a Config from nested mappings, filling in defaults and coercing types."""
    if not isinstance(data, Mapping):
        raise ConfigError("configuration root must be a table")
    sections = {f.name: _build_section(f.type, f.name, data.get(f.name)) for f in fields(Config)}
    return Config(**sections)


def _find_file(directory: Path, stem: str) -> Path | None:
    for suffix in (".toml", ".json"):
        candidate = directory / f"{stem}{suffix}"
        if candidate.is_file():
            return candidate
    return None


def _read_file(path: Path) -> dict:
    try:
        if path.suffix == ".toml":
            with path.open("rb") as fh:
                data = tomllib.load(fh)
        else:
            with path.open(encoding="utf-8") as fh:
                data = json.load(fh)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"failed to read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: configuration root must be a table")
    return data


def _merge(base: Mapping, override: Mapping) -> dict:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = _merge(current, value)
        else:
            merged[key] = value
    return merged


def _from_environment(environ: Mapping[str, str]) -> dict:
    data: dict = {}
    for key, value in environ.items():
        if not key.upper().startswith(_ENV_PREFIX):
            continue
        section, _, name = key[len(_ENV_PREFIX):].lower().partition("_")
        if section and name:
            data.setdefault(section, {})[name] = value
    return data


def load_config(config_dir=None, environ=None) -> Config:
    """Load defaults, ``default`` and optional ``local`` files, then APP_* variables.

    ``APP_NODE_HOST`` sets ``node.host``; the first word after the prefix names
    the section, the rest the key.
    """
    directory = Path("config") if config_dir is None else Path(config_dir)
    env = os.environ if environ is None else environ

    default_file = _find_file(directory, "default")
    if default_file is None:
        raise ConfigError(f"configuration file \"{directory / 'default'}\" not found")
    data = _read_file(default_file)

    local_file = _find_file(directory, "local")
    if local_file is not None:
        data = _merge(data, _read_file(local_file))

    data = _merge(data, _from_environment(env))
    config = config_from_mapping(data)
    config.validate()
    return config