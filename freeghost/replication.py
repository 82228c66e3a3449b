"""Replicated data held locally, recovery of data from peers, and consensus state."""

import copy
import hashlib
import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class _ChecksummedStore:
    """Byte values kept alongside the SHA-256 digest they had when stored."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[bytes, str]] = {}

    def put(self, key: str, data) -> bytes:
        value = bytes(data)
        with self._lock:
            self._entries[key] = (value, hashlib.sha256(value).hexdigest())
        return value

    def get(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._entries.get(key)
        return None if entry is None else entry[0]

    def mismatched_keys(self) -> list[str]:
        with self._lock:
            items = list(self._entries.items())
        return sorted(
            key for key, (value, digest) in items if hashlib.sha256(value).hexdigest() != digest
        )


class ReplicationManager:
    """Stores data locally and broadcasts it to peers through ``network``.

    ``network`` provides ``async broadcast(data)``.
    """

    def __init__(self, network) -> None:
        self.network = network
        self._store = _ChecksummedStore()

    async def replicate_data(self, key: str, data) -> None:
        logger.info("Replicating data for key: %s", key)
        value = self._store.put(key, data)
        await self.network.broadcast(value)

    async def get_data(self, key: str) -> bytes | None:
        return self._store.get(key)

    async def check_consistency(self) -> list[str]:
        """Keys whose data no longer matches its stored checksum."""
        logger.info("Checking data consistency")
        return self._store.mismatched_keys()


class DataRecoveryManager:
    """Fetches missing data from peers through ``network`` and keeps it.

    ``network`` provides ``async fetch_data_from_peers(key)`` returning bytes or None.
    """

    def __init__(self, network) -> None:
        self.network = network
        self._store = _ChecksummedStore()

    async def recover_data(self, key: str) -> bytes | None:
        logger.info("Recovering data for key: %s", key)
        data = await self.network.fetch_data_from_peers(key)
        if data is None:
            return None
        return self._store.put(key, data)

    async def verify_integrity(self) -> list[str]:
        """Keys of recovered data whose checksum no longer matches."""
        logger.info("Verifying data integrity")
        return self._store.mismatched_keys()


@dataclass
class LogEntry:
    term: int
    command: bytes


@dataclass
class ConsensusState:
    term: int = 0
    voted_for: str | None = None
    log: list[LogEntry] = field(default_factory=list)


@dataclass
class PeerInfo:
    id: str
    addresses: list[str] = field(default_factory=list)


class Consensus:
    """Term, vote and log of the local node, and the peers taking part."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = ConsensusState()
        self._peers: dict[str, PeerInfo] = {}

    def add_peer(self, peer_info: PeerInfo) -> None:
        """Add a peer, replacing any earlier entry with the same id."""
        with self._lock:
            self._peers[peer_info.id] = copy.deepcopy(peer_info)

    def state(self) -> ConsensusState:
        with self._lock:
            return copy.deepcopy(self._state)

    def peers(self) -> dict[str, PeerInfo]:
        with self._lock:
            return copy.deepcopy(self._peers)