import pytest

from freeghost.errors import PluginError
from freeghost.isolation import (
    InvalidHashError,
    InvalidSignatureError,
    IsolatedPluginMetadata,
    IsolationError,
    IsolationLevel,
    Permission,
    PluginLoadError,
    ResourceLimits,
    ResourceMonitor,
    SecurePluginManager,
    SecurityValidator,
    file_hash,
    generate_namespace_id,
)

SIGNATURE = b"trusted-signature"


@pytest.fixture
def plugin_file(tmp_path):
    path = tmp_path / "plugin.bin"
    path.write_bytes(b"plugin binary contents")
    return path


def _metadata(path, signature=SIGNATURE, plugin_id="plugin-1", version="1.0.0"):
    return IsolatedPluginMetadata(
        id=plugin_id, name="demo", version=version, signature=signature, hash=file_hash(path)
    )


def test_file_hash_of_empty_file(tmp_path):
    path = tmp_path / "empty"
    path.write_bytes(b"")
    assert file_hash(path).hex() == (
        "a7ffc6f8bf1ed76651c14756a061d662f580ff4de43b49fa82d80a4b80f8434a"
    )


def test_file_hash_depends_on_content(tmp_path):
    first = tmp_path / "a"
    second = tmp_path / "b"
    first.write_bytes(b"one")
    second.write_bytes(b"two")
    assert len(file_hash(first)) == 32
    assert file_hash(first) != file_hash(second)


def test_file_hash_missing_file(tmp_path):
    with pytest.raises(PluginLoadError):
        file_hash(tmp_path / "missing")


def test_namespace_id_form_and_determinism():
    meta = IsolatedPluginMetadata(id="p", name="n", version="1.0.0")
    namespace = generate_namespace_id(meta)
    assert namespace.startswith("ns_")
    assert len(namespace) == 3 + 64
    assert namespace == generate_namespace_id(meta)


def test_namespace_id_hashes_id_then_version():
    joined_a = IsolatedPluginMetadata(id="ab", name="x", version="c")
    joined_b = IsolatedPluginMetadata(id="a", name="y", version="bc")
    other = IsolatedPluginMetadata(id="ab", name="x", version="d")
    assert generate_namespace_id(joined_a) == generate_namespace_id(joined_b)
    assert generate_namespace_id(joined_a) != generate_namespace_id(other)


def test_load_plugin_builds_default_context(plugin_file):
    manager = SecurePluginManager(SecurityValidator([SIGNATURE]))
    meta = _metadata(plugin_file)
    plugin = manager.load_plugin(plugin_file, meta)
    assert plugin.id == "plugin-1"
    assert plugin.context.namespace_id == generate_namespace_id(meta)
    assert plugin.context.resource_limits == ResourceLimits(100, 25, 50, 1000, ())
    assert plugin.context.isolation_level is IsolationLevel.PROCESS
    assert plugin.context.permissions == ()
    assert manager.plugin("plugin-1") is plugin
    assert manager.resource_monitor.limits_for("plugin-1") == ResourceLimits()
    assert manager.resource_monitor.check_resource_usage("plugin-1") is True


def test_untrusted_signature_rejected(plugin_file):
    manager = SecurePluginManager(SecurityValidator([SIGNATURE]))
    with pytest.raises(InvalidSignatureError):
        manager.load_plugin(plugin_file, _metadata(plugin_file, signature=b"other"))
    assert manager.plugin("plugin-1") is None


def test_default_validator_trusts_nothing(plugin_file):
    manager = SecurePluginManager()
    with pytest.raises(InvalidSignatureError):
        manager.load_plugin(plugin_file, _metadata(plugin_file))


def test_tampered_binary_rejected(plugin_file):
    meta = _metadata(plugin_file)
    plugin_file.write_bytes(b"tampered")
    validator = SecurityValidator([SIGNATURE])
    with pytest.raises(InvalidHashError):
        validator.validate_plugin(plugin_file, meta)


def test_validate_returns_metadata(plugin_file):
    meta = _metadata(plugin_file)
    assert SecurityValidator([SIGNATURE]).validate_plugin(plugin_file, meta) == meta


def test_errors_are_plugin_errors():
    assert str(InvalidSignatureError()) == "Invalid plugin signature"
    with pytest.raises(PluginError):
        raise InvalidHashError()


def test_resource_monitor_unknown_plugin():
    monitor = ResourceMonitor()
    assert monitor.limits_for("nope") is None
    with pytest.raises(IsolationError):
        monitor.check_resource_usage("nope")


def test_create_security_context(plugin_file):
    manager = SecurePluginManager()
    meta = IsolatedPluginMetadata(id="x", name="n", version="2.0.0")
    context = manager.create_security_context(meta)
    assert context.plugin_id == "x"
    assert context.resource_limits.max_memory_mb == 100
    assert context.resource_limits.max_cpu_percent == 25


def test_system_call_permission():
    permission = Permission.system_call(42)
    assert permission == Permission("SystemCall", 42)
    assert Permission.NETWORK_ACCESS.name == "NetworkAccess"
    assert Permission.NETWORK_ACCESS.syscall is None