"""Keeps the local network state, persists its updates and reconciles with peers."""

import copy
import logging
import queue
import threading
import time
from collections import Counter

from freeghost.errors import NetworkError, NoMajorityStateError
from freeghost.network_types import NetworkState, StateUpdate, SyncStatus

logger = logging.getLogger(__name__)

UPDATE_PREFIX = "state_update_"
BACKUP_PREFIX = "state_backup_"
UPDATE_CHANNEL_CAPACITY = 1000


def determine_majority_state(states) -> NetworkState:
    """Return the state whose hash occurs most often; the first seen wins ties."""
    states = list(states)
    if not states:
        raise NoMajorityStateError()
    by_hash: dict[str, NetworkState] = {}
    counts: Counter[str] = Counter()
    for state in states:
        digest = state.hash()
        by_hash.setdefault(digest, state)
        counts[digest] += 1
    winner = max(by_hash, key=lambda digest: counts[digest])
    return by_hash[winner]


class StateManager:
    """Owns the current NetworkState and records every applied update in a store."""

    def __init__(self, store) -> None:
        self._store = store
        self._lock = threading.RLock()
        self._state = NetworkState()
        self._sync_status: dict = {}
        self._subscribers: list[queue.Queue] = []

    def subscribe(self) -> queue.Queue:
        """Return a queue that receives every update applied from now on.

        A subscriber that falls more than the channel capacity behind loses the
        oldest updates.
        """
        subscriber: queue.Queue = queue.Queue(maxsize=UPDATE_CHANNEL_CAPACITY)
        with self._lock:
            self._subscribers.append(subscriber)
        return subscriber

    def _broadcast(self, update: StateUpdate) -> None:
        for subscriber in self._subscribers:
            while True:
                try:
                    subscriber.put_nowait(update)
                    break
                except queue.Full:
                    try:
                        subscriber.get_nowait()
                    except queue.Empty:
                        pass

    def apply_update(self, update: StateUpdate) -> None:
        update.verify_signature()
        with self._lock:
            self._state.apply_update(update)
            self._store.store(f"{UPDATE_PREFIX}{update.id}", update.to_dict())
            self._broadcast(update)

    def current_state(self) -> NetworkState:
        with self._lock:
            return copy.deepcopy(self._state)

    def state_diff(self, peer_id) -> list[StateUpdate]:
        """Updates a peer needs, based on its recorded sync status."""
        with self._lock:
            status = self._sync_status.get(peer_id, SyncStatus())
            return self._state.updates_since(status.last_update)

    def record_sync(self, peer_id, peer_state: NetworkState) -> SyncStatus:
        status = SyncStatus(last_update=int(time.time()), state_hash=peer_state.hash())
        with self._lock:
            self._sync_status[peer_id] = status
        return copy.copy(status)

    def load_stored_updates(self) -> list[StateUpdate]:
        """All persisted updates, oldest first."""
        updates = []
        for key in self._store.keys_with_prefix(UPDATE_PREFIX):
            data = self._store.retrieve(key)
            if data is not None:
                updates.append(StateUpdate.from_dict(data))
        updates.sort(key=lambda u: (u.timestamp, u.base_version))
        return updates

    def verify_state_consistency(self) -> bool:
        """Rebuild the state from stored updates and compare it with the current one."""
        with self._lock:
            current_hash = self._state.hash()
            stored = self.load_stored_updates()
        reconstructed = NetworkState()
        for update in stored:
            try:
                reconstructed.apply_update(update)
            except NetworkError as exc:
                logger.error("State consistency error: %s", exc)
                return False
        return reconstructed.hash() == current_hash

    def backup_current_state(self) -> str:
        """Persist a copy of the current state and return the key it was stored under."""
        key = f"{BACKUP_PREFIX}{int(time.time())}"
        with self._lock:
            self._store.store(key, self._state.to_dict())
        return key

    def recover_from_peers(self, peer_states) -> NetworkState:
        """Back up the local state and replace it with the peers' majority state."""
        majority = determine_majority_state(peer_states)
        with self._lock:
            self.backup_current_state()
            self._state = copy.deepcopy(majority)
            return copy.deepcopy(majority)