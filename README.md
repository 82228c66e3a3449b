# freeghost

A library of components for a secure identity node: an encrypted local
key-value store, versioned network state with majority-based recovery, a
length-framed TCP message transport, a signature-checked plugin registry with
version rules, plugin isolation contexts, and behavioural pattern analysis.

## Installation

```
pip install .
```

With the test dependencies:

```
pip install ".[test]"
pytest
```

## Modules

- `freeghost.errors`: the error hierarchy. `NodeError` is the base; its
  subclasses include `ConfigError`, `NetworkError` (with
  `InvalidStateVersionError` and `NoMajorityStateError`), `PluginError`,
  `StorageError` (with `EncryptionError`, `DecryptionError`, `DatabaseError`,
  `InvalidFormatError` and others) and `TransportError` (with
  `TransportConnectionError`, `TransportTimeoutError`,
  `TransportUnavailableError`, `InvalidMessageError` and others). Messages read
  `"<prefix>: <detail>"`.
- `freeghost.config`: the typed configuration sections (`NodeConfig`,
  `NetworkConfig`, `StorageConfig`, `PluginsConfig`, `SecurityConfig`) and
  `Config`. `config_from_mapping(data)` builds a `Config` from nested mappings,
  filling in defaults and coercing strings to numbers, booleans and
  comma-separated lists. `load_config(config_dir, environ)` reads
  `default.toml` or `default.json` (required) and `local.toml` or `local.json`
  (optional) from `config_dir` (default `config`), applies `APP_SECTION_KEY`
  environment overrides (for example `APP_NODE_HOST` sets `node.host`) and
  calls `Config.validate()`.
- `freeghost.metrics`: `Metrics` counts requests, failures and processing time
  in a thread-safe way; `Monitor` logs a `Metrics.snapshot()` at a fixed
  interval from a background thread (`start()`, `stop()`).
- `freeghost.cipher`: `StorageCipher`, AES-256-GCM keyed with the SHA3-256
  digest of the given key; each ciphertext is prefixed with a random 12-byte
  nonce.
- `freeghost.store`: `EncryptedStore`, an SQLite file inside a directory whose
  values are JSON-encoded and encrypted. It supports `store`, `retrieve`,
  `delete`, `keys_with_prefix`, atomic `batch()` writes, `rotate_encryption_key`,
  numbered `backup` files and `restore` from the latest one, and can be used as
  a context manager. `EncryptedStore.from_config` opens a store from a
  `StorageConfig`.
- `freeghost.network_types`: `NetworkMessage` (with JSON byte encoding),
  `NetworkPeer`, `PeerCapabilities`, the state changes `AddPeer`, `RemovePeer`
  and `UpdatePeer`, `StateUpdate`, `SyncStatus` and `NetworkState`, whose
  `apply_update` checks the base version and whose `hash()` is the SHA-256 of
  its compact JSON form.
- `freeghost.state`: `StateManager` applies and persists state updates,
  publishes them to `subscribe()` queues, checks that the stored updates
  rebuild the current state, and `recover_from_peers` replaces the state with
  the one returned by `determine_majority_state`.
- `freeghost.sync_response`: `build_state_request`, `build_state_response`,
  `StateResponseHandler` for matching responses to waiting requests with a
  timeout, and `retry_with_backoff` for async operations.
- `freeghost.transport`: the `Transport` interface, `TcpTransport`
  (asyncio streams carrying 4-byte big-endian length-prefixed JSON messages,
  at most 16 MiB each), `encode_frame`/`decode_frame`, configuration dataclasses
  and `create_transport`.
- `freeghost.analyzer`: `BehaviorAnalyzer` z-score normalises behaviour
  metrics, keeps a five-minute window of at most 1000 patterns, averages them
  into a baseline once five exist, and accepts recent patterns whose mean
  cosine similarity to the baseline is at least 0.85.
- `freeghost.plugins`: the `Plugin` interface, `PluginMetadata`,
  `PluginConfig`, `PluginRegistry` (accepts plugins with a trusted signature
  and tracks their `PluginState`) and `VersionManager` (minimum version plus
  per-name requirements such as `^1.2`, `~1.2.3` or `>=1.0, <2.0`).
- `freeghost.isolation`: `SecurityValidator` checks a plugin file's signature
  and SHA3-256 hash, `SecurePluginManager` admits it under a `SecurityContext`
  with default `ResourceLimits`, and `ResourceMonitor` records the limits.
- `freeghost.replication`: `ReplicationManager` and `DataRecoveryManager` keep
  checksummed byte data and report keys whose checksum no longer matches;
  `Consensus` holds the term, vote, log and peers of the local node.

## Example

```python
from freeghost.store import EncryptedStore

with EncryptedStore("data/node", b"secret") as store:
    store.store(b"identity:1", {"name": "alice", "version": 1})
    assert store.retrieve(b"identity:1") == {"name": "alice", "version": 1}
    store.rotate_encryption_key(b"placeholder")
    assert store.retrieve(b"identity:1")["version"] == 1
```

```python
from freeghost.cipher import StorageCipher

cipher = StorageCipher(b"secret")
sealed = cipher.encrypt(b"payload")
assert cipher.decrypt(sealed) == b"payload"
```

## What this package does not do

- It has no command-line program and no node process of its own; it is a
  library to build one from.
- Only TCP is implemented as a transport. `create_transport` raises
  `TransportUnavailableError` for Tor and QUIC.
- It does not discover or talk to peers by itself. `ReplicationManager` and
  `DataRecoveryManager` are given a `network` object that provides
  `broadcast` or `fetch_data_from_peers`, and `StateManager.recover_from_peers`
  takes states the caller has already collected.
- Plugins are Python objects registered by the caller; nothing loads compiled
  plugin libraries, and `SecurePluginManager` does not run plugins in a
  separate process or enforce their resource limits.
- Update signatures are not cryptographically checked:
  `StateUpdate.verify_signature` only checks that an update is well formed.