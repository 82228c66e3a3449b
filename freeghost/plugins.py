"""Plugin interface, a signature-checked registry and version compatibility rules."""

import copy
import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

import semver

from freeghost.errors import PluginError

logger = logging.getLogger(__name__)


@dataclass
class PluginMetadata:
    name: str
    version: str
    signature: bytes = b""
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class PluginConfig:
    enabled: bool = True
    path: Path = field(default_factory=Path)
    settings: Any = None

    def __post_init__(self) -> None:
        self.path = Path(self.path)


class Plugin(ABC):
    """A unit of functionality loaded into the node."""

    @abstractmethod
    def metadata(self) -> PluginMetadata: ...

    @abstractmethod
    async def initialize(self, config: PluginConfig) -> None: ...

    @abstractmethod
    async def shutdown(self) -> None: ...


@dataclass(frozen=True)
class PluginState:
    """Lifecycle state of a registered plugin; failed states carry the error."""

    name: str
    error: str | None = None

    INACTIVE: ClassVar["PluginState"]
    ACTIVE: ClassVar["PluginState"]

    @classmethod
    def failed(cls, error: str) -> "PluginState":
        return cls("failed", error)


PluginState.INACTIVE = PluginState("inactive")
PluginState.ACTIVE = PluginState("active")


@dataclass
class _PluginInstance:
    plugin: Plugin
    config: PluginConfig
    state: PluginState = PluginState.INACTIVE


class PluginRegistry:
    """Holds plugins whose metadata signature is among the trusted ones."""

    def __init__(self, trusted_signatures=()) -> None:
        self._trusted = {bytes(s) for s in trusted_signatures}
        self._instances: dict[uuid.UUID, _PluginInstance] = {}

    def verify_signature(self, signature) -> bool:
        return bytes(signature) in self._trusted

    def register(self, plugin: Plugin, config: PluginConfig) -> uuid.UUID:
        metadata = plugin.metadata()
        if not self.verify_signature(metadata.signature):
            raise PluginError("Invalid plugin signature")
        self._instances[metadata.id] = _PluginInstance(plugin, config)
        return metadata.id

    async def initialize_all(self) -> None:
        """Initialise every plugin, marking each active or failed."""
        for plugin_id, instance in list(self._instances.items()):
            try:
                await instance.plugin.initialize(copy.deepcopy(instance.config))
            except Exception as exc:
                logger.error("Plugin %s failed to initialise: %s", plugin_id, exc)
                instance.state = PluginState.failed(str(exc))
            else:
                instance.state = PluginState.ACTIVE

    def state(self, plugin_id) -> PluginState:
        instance = self._instances.get(plugin_id)
        if instance is None:
            raise PluginError(f"Plugin not found: {plugin_id}")
        return instance.state


_PARTIAL = re.compile(
    r"(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:-([0-9A-Za-z.-]+))?(?:\+([0-9A-Za-z.-]+))?"
)
_OPERATORS = (">=", "<=", "==", "=", ">", "<", "^", "~")


def _parse_partial(text: str) -> tuple[semver.Version, int]:
    match = _PARTIAL.fullmatch(text)
    if match is None:
        raise ValueError(f"invalid version {text!r}")
    major, minor, patch, prerelease, build = match.groups()
    precision = 1 + (minor is not None) + (patch is not None)
    if (prerelease or build) and precision < 3:
        raise ValueError(f"invalid version {text!r}")
    version = semver.Version(
        int(major), int(minor or 0), int(patch or 0), prerelease=prerelease, build=build
    )
    return version, precision


def _next(version: semver.Version, precision: int) -> semver.Version:
    if precision == 1:
        return semver.Version(version.major + 1, 0, 0)
    return semver.Version(version.major, version.minor + 1, 0)


def _caret_upper(version: semver.Version, precision: int) -> semver.Version:
    if version.major > 0 or precision == 1:
        return semver.Version(version.major + 1, 0, 0)
    if version.minor > 0 or precision == 2:
        return semver.Version(0, version.minor + 1, 0)
    return semver.Version(0, 0, version.patch + 1)


def _comparator(text: str):
    text = text.strip()
    if text == "*":
        return lambda v: True
    operator = next((op for op in _OPERATORS if text.startswith(op)), "^")
    if text.startswith(operator):
        text = text[len(operator):].strip()
    bound, precision = _parse_partial(text)
    exact = precision == 3
    match operator:
        case "=" | "==":
            if exact:
                return lambda v: v == bound
            upper = _next(bound, precision)
            return lambda v: bound <= v < upper
        case ">":
            if exact:
                return lambda v: v > bound
            upper = _next(bound, precision)
            return lambda v: v >= upper
        case ">=":
            return lambda v: v >= bound
        case "<":
            return lambda v: v < bound
        case "<=":
            if exact:
                return lambda v: v <= bound
            upper = _next(bound, precision)
            return lambda v: v < upper
        case "~":
            upper = semver.Version(bound.major + 1, 0, 0) if precision == 1 else _next(bound, 2)
            return lambda v: bound <= v < upper
        case _:
            upper = _caret_upper(bound, precision)
            return lambda v: bound <= v < upper


def _requirement(text: str):
    try:
        comparators = [_comparator(part) for part in str(text).split(",")]
    except ValueError as exc:
        raise PluginError(f"Invalid version requirement {text!r}: {exc}") from exc
    return lambda version: all(check(version) for check in comparators)


def _parse_version(text) -> semver.Version:
    if isinstance(text, semver.Version):
        return text
    try:
        return semver.Version.parse(str(text))
    except (TypeError, ValueError) as exc:
        raise PluginError(f"Invalid plugin version: {exc}") from exc


class VersionManager:
    """Rejects plugins older than a minimum or outside per-name requirements.

    Requirements use the usual ``^``, ``~``, ``=``, ``>``, ``>=``, ``<``, ``<=``
    and ``*`` forms, comma separated; a bare version means ``^``.
    """

    def __init__(self, min_version, compatibility_map=None) -> None:
        self.min_version = _parse_version(min_version)
        self._requirements = {
            name: [_requirement(req) for req in reqs]
            for name, reqs in (compatibility_map or {}).items()
        }

    def check_compatibility(self, plugin: Plugin) -> semver.Version:
        """Return the plugin's parsed version, or raise PluginError."""
        metadata = plugin.metadata()
        version = _parse_version(metadata.version)
        if version < self.min_version:
            raise PluginError("Plugin version too old")
        for matches in self._requirements.get(metadata.name, ()):
            if not matches(version):
                raise PluginError("Incompatible plugin version")
        return version