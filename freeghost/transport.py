"""Transports that carry length-prefixed network messages between peers."""

import asyncio
import dataclasses
import ipaddress
import socket
import struct
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta

from freeghost.errors import (
    InvalidMessageError,
    TransportConnectionError,
    TransportReceiveError,
    TransportSendError,
    TransportTimeoutError,
    TransportUnavailableError,
)
from freeghost.network_types import NetworkMessage, TransportType

MAX_FRAME_SIZE = 16 * 1024 * 1024
_HEADER = struct.Struct(">I")


def _seconds(value) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


@dataclass
class TransportConfig:
    """Timeouts (in seconds) and framing limits shared by transports."""

    connect_timeout: float = 30.0
    read_timeout: float = 30.0
    write_timeout: float = 30.0
    max_frame_size: int = MAX_FRAME_SIZE
    keep_alive_interval: float = 15.0


@dataclass
class TransportMetrics:
    latency: float = 0.0
    bytes_sent: int = 0
    bytes_received: int = 0
    active_connections: int = 0
    error_count: int = 0


@dataclass
class TcpConfig:
    """Socket options; ``None`` leaves the system default in place."""

    nodelay: bool = True
    keepalive: float | None = None
    send_buffer_size: int | None = None
    recv_buffer_size: int | None = None


@dataclass
class QuicConfig:
    max_concurrent_streams: int
    max_stream_data: int
    idle_timeout: float = 30.0
    keep_alive_interval: float = 15.0


@dataclass
class TorConfig:
    circuit_build_timeout: float
    circuit_idle_timeout: float
    enforce_distinct_subnets: bool
    circuit_hop_count: int


def encode_frame(message: NetworkMessage) -> bytes:
    """Serialise ``message`` behind a 4-byte big-endian length prefix."""
    body = message.to_bytes()
    if len(body) > MAX_FRAME_SIZE:
        raise InvalidMessageError("Message too large")
    return _HEADER.pack(len(body)) + body


def decode_frame(data) -> NetworkMessage:
    """Decode exactly one frame produced by encode_frame."""
    data = bytes(data)
    if len(data) < _HEADER.size:
        raise InvalidMessageError("Frame header truncated")
    (length,) = _HEADER.unpack_from(data)
    if length > MAX_FRAME_SIZE:
        raise InvalidMessageError("Message too large")
    body = data[_HEADER.size:]
    if len(body) < length:
        raise InvalidMessageError("Frame body truncated")
    if len(body) > length:
        raise InvalidMessageError("Trailing data after frame")
    return NetworkMessage.from_bytes(body)


def _parse_address(address: str) -> tuple[str, int]:
    host, sep, port_text = str(address).rpartition(":")
    if not sep or not host or not port_text.isdigit():
        raise TransportConnectionError(f"invalid socket address: {address}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    port = int(port_text)
    if port > 0xFFFF:
        raise TransportConnectionError(f"invalid port in address: {address}")
    return host, port


class Transport(ABC):
    """A connection to a single peer that exchanges NetworkMessages."""

    transport_type: TransportType

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def disconnect(self) -> None: ...

    @abstractmethod
    async def send(self, message: NetworkMessage) -> None: ...

    @abstractmethod
    async def receive(self) -> NetworkMessage: ...

    @abstractmethod
    async def is_connected(self) -> bool: ...

    @abstractmethod
    async def set_timeout(self, timeout) -> None: ...


class TcpTransport(Transport):
    """Length-prefixed JSON messages over a plain TCP stream."""

    transport_type = TransportType.TCP

    def __init__(self, address, tcp_config=None) -> None:
        self.address = str(address)
        self.tcp_config = tcp_config if tcp_config is not None else TcpConfig()
        self.config = TransportConfig()
        self.timeout = self.config.connect_timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._metrics = TransportMetrics()
        self._send_lock = asyncio.Lock()
        self._recv_lock = asyncio.Lock()

    def metrics(self) -> TransportMetrics:
        """A copy of the current counters."""
        return dataclasses.replace(self._metrics)

    def _record_error(self) -> None:
        self._metrics.error_count += 1

    def _apply_socket_options(self, writer: asyncio.StreamWriter) -> None:
        sock = writer.get_extra_info("socket")
        if sock is None:
            return
        cfg = self.tcp_config
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, int(cfg.nodelay))
        if cfg.keepalive is not None:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            if hasattr(socket, "TCP_KEEPIDLE"):
                idle = max(1, int(_seconds(cfg.keepalive)))
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, idle)
        if cfg.send_buffer_size is not None:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, cfg.send_buffer_size)
        if cfg.recv_buffer_size is not None:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, cfg.recv_buffer_size)

    async def connect(self) -> None:
        if await self.is_connected():
            return
        try:
            host, port = _parse_address(self.address)
        except TransportConnectionError:
            self._record_error()
            raise
        start = time.perf_counter()
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), self.timeout
            )
        except TimeoutError:
            self._record_error()
            raise TransportTimeoutError() from None
        except OSError as exc:
            self._record_error()
            raise TransportConnectionError(str(exc)) from exc
        try:
            self._apply_socket_options(writer)
        except OSError as exc:
            writer.close()
            self._record_error()
            raise TransportConnectionError(str(exc)) from exc
        self._reader, self._writer = reader, writer
        self._metrics.latency = time.perf_counter() - start
        self._metrics.active_connections += 1

    async def disconnect(self) -> None:
        writer = self._writer
        if writer is None:
            return
        self._reader = self._writer = None
        self._metrics.active_connections = max(0, self._metrics.active_connections - 1)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    async def send(self, message: NetworkMessage) -> None:
        writer = self._writer
        if writer is None:
            raise TransportUnavailableError("Not connected")
        frame = encode_frame(message)
        async with self._send_lock:
            try:
                writer.write(frame)
                await asyncio.wait_for(writer.drain(), self.timeout)
            except TimeoutError:
                self._record_error()
                raise TransportTimeoutError() from None
            except OSError as exc:
                self._record_error()
                raise TransportSendError(str(exc)) from exc
        self._metrics.bytes_sent += len(frame)

    async def receive(self) -> NetworkMessage:
        reader = self._reader
        if reader is None:
            raise TransportUnavailableError("Not connected")
        async with self._recv_lock:
            try:
                header = await asyncio.wait_for(reader.readexactly(_HEADER.size), self.timeout)
                (length,) = _HEADER.unpack(header)
                if length > self.config.max_frame_size:
                    self._record_error()
                    raise InvalidMessageError("Message too large")
                body = await asyncio.wait_for(reader.readexactly(length), self.timeout)
            except TimeoutError:
                self._record_error()
                raise TransportTimeoutError() from None
            except asyncio.IncompleteReadError as exc:
                self._record_error()
                raise TransportReceiveError("connection closed by peer") from exc
            except OSError as exc:
                self._record_error()
                raise TransportReceiveError(str(exc)) from exc
        self._metrics.bytes_received += _HEADER.size + length
        return NetworkMessage.from_bytes(body)

    async def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def set_timeout(self, timeout) -> None:
        seconds = _seconds(timeout)
        if seconds <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = seconds


def create_transport(transport_type, address) -> Transport:
    """Build a transport of the given kind for ``address``."""
    transport_type = TransportType(transport_type)
    if transport_type is TransportType.TCP:
        return TcpTransport(address)
    if transport_type is TransportType.QUIC:
        host, _ = _parse_address(address)
        try:
            ipaddress.ip_address(host)
        except ValueError:
            raise TransportConnectionError(f"invalid socket address: {address}") from None
        raise TransportUnavailableError("QUIC transport is not supported")
    raise TransportUnavailableError("Tor transport is not supported")