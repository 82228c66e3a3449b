import uuid

import pytest

from freeghost.errors import (
    InvalidFormatError,
    InvalidMessageError,
    InvalidStateVersionError,
    NetworkError,
)
from freeghost.network_types import (
    AddPeer,
    MessageType,
    NetworkMessage,
    NetworkPeer,
    NetworkState,
    PeerCapabilities,
    RemovePeer,
    StateUpdate,
    SyncStatus,
    TransportType,
    UpdatePeer,
)


def make_peer(address="10.0.0.1:9000", last_seen=100):
    return NetworkPeer(
        addresses=[address],
        transport_types=[TransportType.TOR, TransportType.TCP],
        last_seen=last_seen,
        capabilities=PeerCapabilities(supports_tor=True, storage_capacity=10, bandwidth_score=0.5),
    )


def test_message_type_serialises_by_variant_name():
    message = NetworkMessage(message_type=MessageType.HEALTH_CHECK)
    assert message.to_dict()["message_type"] == "HealthCheck"


def test_custom_message_type_is_tagged():
    message = NetworkMessage(message_type="ping", sender="a")
    assert message.to_dict()["message_type"] == {"Custom": "ping"}
    assert NetworkMessage.from_bytes(message.to_bytes()).message_type == "ping"


def test_message_round_trip():
    message = NetworkMessage(
        message_type=MessageType.STATE_REQUEST,
        payload=b"\x01\x02\x03",
        sender="test",
        recipient="peer",
        timestamp=1000,
    )
    restored = NetworkMessage.from_bytes(message.to_bytes())
    assert restored == message
    assert message.to_dict()["payload"] == [1, 2, 3]


def test_message_from_bad_bytes_raises():
    with pytest.raises(InvalidMessageError):
        NetworkMessage.from_bytes(b"not json")
    with pytest.raises(InvalidMessageError):
        NetworkMessage.from_dict({"id": "x"})


def test_peer_round_trip():
    peer = make_peer()
    data = peer.to_dict()
    assert data["transport_types"] == ["Tor", "Tcp"]
    assert NetworkPeer.from_dict(data) == peer


def test_peer_from_invalid_dict_raises():
    data = make_peer().to_dict()
    data["transport_types"] = ["Carrier"]
    with pytest.raises(InvalidFormatError):
        NetworkPeer.from_dict(data)


def test_state_update_round_trip_with_every_change():
    peer = make_peer()
    update = StateUpdate(
        base_version=2,
        changes=[AddPeer(peer), RemovePeer(peer.id), UpdatePeer(peer)],
        timestamp=50,
        signature=b"\x09",
    )
    data = update.to_dict()
    assert data["changes"][1] == {"RemovePeer": str(peer.id)}
    assert StateUpdate.from_dict(data) == update


def test_verify_signature_rejects_malformed_update():
    StateUpdate(base_version=0, changes=[AddPeer(make_peer())]).verify_signature()
    with pytest.raises(NetworkError):
        StateUpdate(base_version=0, changes=["bogus"]).verify_signature()
    with pytest.raises(NetworkError):
        StateUpdate(base_version=-1).verify_signature()


def test_hash_is_deterministic_and_content_sensitive():
    peer = make_peer()
    a = NetworkState(version=1, peers=[peer], last_updated=10)
    b = NetworkState.from_dict(a.to_dict())
    assert a.hash() == b.hash()
    assert len(a.hash()) == 64
    assert int(a.hash(), 16) >= 0
    c = NetworkState(version=1, peers=[], last_updated=10)
    assert c.hash() != a.hash()


def test_apply_update_adds_updates_and_removes_peers():
    state = NetworkState(last_updated=0)
    peer = make_peer()
    state.apply_update(StateUpdate(base_version=0, changes=[AddPeer(peer)]))
    assert state.version == 1
    assert state.peers == [peer]
    assert len(state.state_hash) == 64

    changed = NetworkPeer(id=peer.id, addresses=["10.0.0.2:9000"], last_seen=5)
    state.apply_update(StateUpdate(base_version=1, changes=[UpdatePeer(changed)]))
    assert state.peers == [changed]

    state.apply_update(StateUpdate(base_version=2, changes=[RemovePeer(peer.id)]))
    assert state.peers == []
    assert state.version == 3


def test_update_of_unknown_peer_leaves_peers_unchanged():
    peer = make_peer()
    state = NetworkState(peers=[peer], last_updated=0)
    state.apply_update(StateUpdate(base_version=0, changes=[UpdatePeer(make_peer("other"))]))
    assert state.peers == [peer]
    assert state.version == 1


def test_apply_update_with_wrong_base_version_raises():
    state = NetworkState(last_updated=0)
    with pytest.raises(InvalidStateVersionError):
        state.apply_update(StateUpdate(base_version=1))
    assert state.version == 0


def test_updates_since():
    peers = [make_peer(), make_peer("10.0.0.3:9000")]
    state = NetworkState(version=3, peers=peers, last_updated=77)
    (update,) = state.updates_since(1)
    assert update.base_version == 1
    assert update.changes == [AddPeer(p) for p in peers]
    assert update.timestamp == 77
    assert update.signature == b""
    with pytest.raises(InvalidStateVersionError):
        state.updates_since(4)


def test_updates_since_bring_empty_state_to_same_peers():
    peers = [make_peer()]
    source = NetworkState(version=0, peers=peers, last_updated=1)
    target = NetworkState(last_updated=1)
    for update in source.updates_since(0):
        target.apply_update(update)
    assert target.peers == peers


def test_network_state_round_trip_and_sync_status_defaults():
    state = NetworkState(version=4, peers=[make_peer()], last_updated=9, state_hash="abc")
    assert NetworkState.from_dict(state.to_dict()) == state
    status = SyncStatus()
    assert (status.last_update, status.state_hash) == (0, "")


def test_peer_id_is_unique_by_default():
    ids = {make_peer().id for _ in range(5)}
    assert len(ids) == 5
    assert all(isinstance(peer_id, uuid.UUID) and peer_id.version == 4 for peer_id in ids)