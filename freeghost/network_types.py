"""Messages, peers and the replicated network state with its updates."""

import copy
import hashlib
import json
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from enum import Enum

from freeghost.errors import (
    InvalidFormatError,
    InvalidMessageError,
    InvalidStateVersionError,
    NetworkError,
)


def _now() -> int:
    return int(time.time())


def _compact_json(data) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


@contextmanager
def _decoding(error_cls):
    try:
        yield
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise error_cls(f"{type(exc).__name__}: {exc}") from exc


class MessageType(Enum):
    """Kinds of network message; custom kinds are carried as plain strings."""

    IDENTITY_VERIFICATION = "IdentityVerification"
    TEMPLATE_UPDATE = "TemplateUpdate"
    KEY_ROTATION = "KeyRotation"
    HEALTH_CHECK = "HealthCheck"
    STATE_REQUEST = "StateRequest"
    STATE_RESPONSE = "StateResponse"
    HEARTBEAT = "Heartbeat"


def _message_type_to_json(message_type):
    if isinstance(message_type, MessageType):
        return message_type.value
    return {"Custom": str(message_type)}


def _message_type_from_json(data):
    if isinstance(data, str):
        return MessageType(data)
    if isinstance(data, dict) and list(data) == ["Custom"] and isinstance(data["Custom"], str):
        return data["Custom"]
    raise ValueError(f"unknown message type {data!r}")


class TransportType(Enum):
    TOR = "Tor"
    TCP = "Tcp"
    QUIC = "Quic"


@dataclass
class NetworkMessage:
    """A message exchanged between peers; ``message_type`` may be a custom str."""

    message_type: MessageType | str
    payload: bytes = b""
    sender: str = ""
    recipient: str | None = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    timestamp: int = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "message_type": _message_type_to_json(self.message_type),
            "payload": list(self.payload),
            "timestamp": self.timestamp,
            "sender": self.sender,
            "recipient": self.recipient,
        }

    @classmethod
    def from_dict(cls, data) -> "NetworkMessage":
        with _decoding(InvalidMessageError):
            recipient = data["recipient"]
            return cls(
                id=uuid.UUID(data["id"]),
                message_type=_message_type_from_json(data["message_type"]),
                payload=bytes(data["payload"]),
                timestamp=int(data["timestamp"]),
                sender=str(data["sender"]),
                recipient=None if recipient is None else str(recipient),
            )

    def to_bytes(self) -> bytes:
        return _compact_json(self.to_dict())

    @classmethod
    def from_bytes(cls, data) -> "NetworkMessage":
        with _decoding(InvalidMessageError):
            decoded = json.loads(bytes(data).decode("utf-8"))
        return cls.from_dict(decoded)


@dataclass
class PeerCapabilities:
    supports_tor: bool = False
    supports_quic: bool = False
    is_validator: bool = False
    storage_capacity: int = 0
    bandwidth_score: float = 0.0


@dataclass
class NetworkPeer:
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    addresses: list[str] = field(default_factory=list)
    transport_types: list[TransportType] = field(default_factory=list)
    last_seen: int = field(default_factory=_now)
    capabilities: PeerCapabilities = field(default_factory=PeerCapabilities)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "addresses": list(self.addresses),
            "transport_types": [t.value for t in self.transport_types],
            "last_seen": self.last_seen,
            "capabilities": asdict(self.capabilities),
        }

    @classmethod
    def from_dict(cls, data) -> "NetworkPeer":
        with _decoding(InvalidFormatError):
            caps = data["capabilities"]
            return cls(
                id=uuid.UUID(data["id"]),
                addresses=[str(a) for a in data["addresses"]],
                transport_types=[TransportType(t) for t in data["transport_types"]],
                last_seen=int(data["last_seen"]),
                capabilities=PeerCapabilities(
                    supports_tor=bool(caps["supports_tor"]),
                    supports_quic=bool(caps["supports_quic"]),
                    is_validator=bool(caps["is_validator"]),
                    storage_capacity=int(caps["storage_capacity"]),
                    bandwidth_score=float(caps["bandwidth_score"]),
                ),
            )


@dataclass(frozen=True)
class AddPeer:
    peer: NetworkPeer


@dataclass(frozen=True)
class RemovePeer:
    peer_id: uuid.UUID


@dataclass(frozen=True)
class UpdatePeer:
    peer: NetworkPeer


_STATE_CHANGES = (AddPeer, RemovePeer, UpdatePeer)


def _change_to_dict(change) -> dict:
    match change:
        case AddPeer(peer=peer):
            return {"AddPeer": peer.to_dict()}
        case RemovePeer(peer_id=peer_id):
            return {"RemovePeer": str(peer_id)}
        case UpdatePeer(peer=peer):
            return {"UpdatePeer": peer.to_dict()}
    raise TypeError(f"not a state change: {change!r}")


def _change_from_dict(data):
    if not isinstance(data, dict) or len(data) != 1:
        raise ValueError(f"invalid state change {data!r}")
    ((kind, body),) = data.items()
    if kind == "AddPeer":
        return AddPeer(NetworkPeer.from_dict(body))
    if kind == "RemovePeer":
        return RemovePeer(uuid.UUID(body))
    if kind == "UpdatePeer":
        return UpdatePeer(NetworkPeer.from_dict(body))
    raise ValueError(f"unknown state change {kind!r}")


@dataclass
class StateUpdate:
    base_version: int
    changes: list = field(default_factory=list)
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    timestamp: int = field(default_factory=_now)
    signature: bytes = b""

    def verify_signature(self) -> None:
        """Check the update is well formed; unsigned updates are accepted."""
        if not isinstance(self.base_version, int) or self.base_version < 0:
            raise NetworkError("Invalid state update: bad base version")
        if not isinstance(self.signature, (bytes, bytearray)):
            raise NetworkError("Invalid state update: signature must be bytes")
        if not all(isinstance(change, _STATE_CHANGES) for change in self.changes):
            raise NetworkError("Invalid state update: unknown change")

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "base_version": self.base_version,
            "changes": [_change_to_dict(c) for c in self.changes],
            "timestamp": self.timestamp,
            "signature": list(self.signature),
        }

    @classmethod
    def from_dict(cls, data) -> "StateUpdate":
        with _decoding(InvalidFormatError):
            return cls(
                id=uuid.UUID(data["id"]),
                base_version=int(data["base_version"]),
                changes=[_change_from_dict(c) for c in data["changes"]],
                timestamp=int(data["timestamp"]),
                signature=bytes(data["signature"]),
            )


@dataclass
class SyncStatus:
    last_update: int = 0
    state_hash: str = ""


@dataclass
class NetworkState:
    version: int = 0
    peers: list[NetworkPeer] = field(default_factory=list)
    last_updated: int = field(default_factory=_now)
    state_hash: str = ""

    def hash(self) -> str:
        """Hex SHA-256 of the state's compact JSON form."""
        return hashlib.sha256(_compact_json(self.to_dict())).hexdigest()

    def apply_update(self, update: StateUpdate) -> None:
        if update.base_version != self.version:
            raise InvalidStateVersionError(
                f"expected base version {self.version}, got {update.base_version}"
            )
        for change in update.changes:
            match change:
                case AddPeer(peer=peer):
                    self.peers.append(copy.deepcopy(peer))
                case RemovePeer(peer_id=peer_id):
                    self.peers = [p for p in self.peers if p.id != peer_id]
                case UpdatePeer(peer=peer):
                    for position, existing in enumerate(self.peers):
                        if existing.id == peer.id:
                            self.peers[position] = copy.deepcopy(peer)
                            break
        self.version += 1
        self.last_updated = _now()
        self.state_hash = self.hash()

    def updates_since(self, version: int) -> list[StateUpdate]:
        """Return one update that brings a peer at ``version`` to the current peers."""
        if version > self.version:
            raise InvalidStateVersionError(
                f"version {version} is ahead of current version {self.version}"
            )
        return [
            StateUpdate(
                base_version=version,
                changes=[AddPeer(copy.deepcopy(p)) for p in self.peers],
                timestamp=self.last_updated,
                signature=b"",
            )
        ]

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "peers": [p.to_dict() for p in self.peers],
            "last_updated": self.last_updated,
            "state_hash": self.state_hash,
        }

    @classmethod
    def from_dict(cls, data) -> "NetworkState":
        with _decoding(InvalidFormatError):
            return cls(
                version=int(data["version"]),
                peers=[NetworkPeer.from_dict(p) for p in data["peers"]],
                last_updated=int(data["last_updated"]),
                state_hash=str(data["state_hash"]),
            )