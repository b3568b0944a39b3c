"""Abstract CAN driver interface and a packet-oriented stream base."""

from __future__ import annotations

import errno
import os
import select
import socket
import time
from abc import ABC, abstractmethod

import serial

from canlink.message import Message

INVALID_FD = -1
DEFAULT_SERIAL_BAUDRATE = 115200
_UDP_DATAGRAM_SIZE = 65536


class DriverTimeout(TimeoutError):
    """Raised when a read or a write does not complete within its timeout."""


class Driver(ABC):
    """Common interface of all CAN drivers.

    Timeouts are in milliseconds and default to :attr:`DEFAULT_TIMEOUT`.
    """

    DEFAULT_TIMEOUT = 100

    def __init__(self) -> None:
        self.read_timeout = self.DEFAULT_TIMEOUT
        self.write_timeout = self.DEFAULT_TIMEOUT

    @abstractmethod
    def open(self, path: str) -> bool:
        """Open the device and reset the CAN interface."""

    @abstractmethod
    def reset_board(self) -> bool:
        """Reset the CAN board; must precede reset() of its interfaces."""

    @abstractmethod
    def reset(self) -> bool:
        """Reset the CAN interface."""

    @abstractmethod
    def read(self) -> Message:
        """Read the next message, waiting at most ``read_timeout``."""

    @abstractmethod
    def write(self, msg: Message) -> None:
        """Write a message, waiting at most ``write_timeout``."""

    @abstractmethod
    def pending_messages_count(self) -> int:
        """Number of messages waiting to be read."""

    @abstractmethod
    def check_bus_ok(self) -> bool:
        """False if the bus reports an error."""

    @abstractmethod
    def clear(self) -> None:
        """Drop all pending messages."""

    @abstractmethod
    def fileno(self) -> int:
        """The underlying file descriptor, or ``INVALID_FD``."""

    @abstractmethod
    def is_valid(self) -> bool:
        """True if the device is open."""

    @abstractmethod
    def close(self) -> None:
        """Close the device."""

    def read_can_msg(self) -> Message | None:
        """Return the next message if one is pending, else None."""
        if self.pending_messages_count() > 0:
            return self.read()
        return None

    def send_can_msg(self, msg: Message) -> None:
        self.write(msg)

    def error_count(self) -> int:
        return 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.is_valid():
            self.close()


class _SocketChannel:
    def __init__(self, sock: socket.socket, stream: bool) -> None:
        sock.setblocking(False)
        self._sock = sock
        self._stream = stream

    def fileno(self) -> int:
        return self._sock.fileno()

    def receive(self, size: int, timeout: float) -> bytes:
        ready, _, _ = select.select([self._sock], [], [], timeout)
        if not ready:
            return b""
        try:
            data = self._sock.recv(size if self._stream else _UDP_DATAGRAM_SIZE)
        except BlockingIOError:
            return b""
        if not data and self._stream:
            raise ConnectionError("connection closed by peer")
        return data

    def send(self, data, timeout: float) -> int:
        _, ready, _ = select.select([], [self._sock], [], timeout)
        if not ready:
            return 0
        try:
            return self._sock.send(data)
        except BlockingIOError:
            return 0

    def close(self) -> None:
        self._sock.close()


class _FileChannel:
    def __init__(self, path: str) -> None:
        flags = os.O_RDWR | getattr(os, "O_NONBLOCK", 0) | getattr(os, "O_NOCTTY", 0)
        self._fd = os.open(path, flags)

    def fileno(self) -> int:
        return self._fd

    def receive(self, size: int, timeout: float) -> bytes:
        ready, _, _ = select.select([self._fd], [], [], timeout)
        if not ready:
            return b""
        try:
            data = os.read(self._fd, size)
        except BlockingIOError:
            return b""
        if not data:
            # End of file: nothing more will come within this wait.
            time.sleep(timeout)
        return data

    def send(self, data, timeout: float) -> int:
        _, ready, _ = select.select([], [self._fd], [], timeout)
        if not ready:
            return 0
        try:
            return os.write(self._fd, data)
        except BlockingIOError:
            return 0

    def close(self) -> None:
        os.close(self._fd)


class _SerialChannel:
    def __init__(self, port: str, baudrate: int) -> None:
        self._port = serial.Serial(port, baudrate)

    def fileno(self) -> int:
        getter = getattr(self._port, "fileno", None)
        return getter() if getter else INVALID_FD

    def receive(self, size: int, timeout: float) -> bytes:
        self._port.timeout = timeout
        wanted = min(size, max(1, self._port.in_waiting))
        return self._port.read(wanted)

    def send(self, data, timeout: float) -> int:
        self._port.write_timeout = timeout
        try:
            written = self._port.write(bytes(data))
        except serial.SerialTimeoutException:
            return 0
        return written or 0

    def close(self) -> None:
        self._port.close()


def _split_port(spec: str, uri: str) -> tuple[str, int]:
    host, sep, port = spec.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid URI {uri!r}: expected host:port")
    return host, int(port)


def _open_channel(uri: str):
    scheme, sep, rest = uri.partition("://")
    if not sep:
        raise ValueError(f"invalid URI {uri!r}: missing scheme")
    if scheme == "serial":
        path, colon, baud = rest.rpartition(":")
        if colon and baud.isdigit():
            return _SerialChannel(path, int(baud))
        return _SerialChannel(rest, DEFAULT_SERIAL_BAUDRATE)
    if scheme == "tcp":
        host, port = _split_port(rest, uri)
        return _SocketChannel(socket.create_connection((host, port)), stream=True)
    if scheme == "udp":
        parts = rest.split(":")
        if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts[1:]):
            raise ValueError(f"invalid URI {uri!r}: expected host:port[:local_port]")
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            if len(parts) == 3:
                sock.bind(("", int(parts[2])))
            sock.connect((parts[0], int(parts[1])))
        except OSError:
            sock.close()
            raise
        return _SocketChannel(sock, stream=False)
    if scheme == "file":
        return _FileChannel(rest)
    raise ValueError(f"unsupported URI scheme {scheme!r}")


class StreamDriver(Driver):
    """A driver talking to a byte stream that it splits into packets.

    Subclasses override :meth:`extract_packet` to recognise their framing.
    Supported URIs: ``serial://PATH[:BAUD]``, ``tcp://HOST:PORT``,
    ``udp://HOST:PORT[:LOCAL_PORT]`` and ``file://PATH``.
    """

    def __init__(self, max_packet_size: int) -> None:
        super().__init__()
        if max_packet_size <= 0:
            raise ValueError("max_packet_size must be positive")
        self.max_packet_size = max_packet_size
        self._buffer = bytearray()
        self._channel = None

    def open_uri(self, uri: str) -> None:
        """Open the byte stream designated by ``uri``."""
        if self.is_valid():
            self.close()
        self._channel = _open_channel(uri)
        self._buffer.clear()

    def extract_packet(self, buffer: bytes) -> int:
        """Locate a packet at the start of ``buffer``.

        Return its length if complete, 0 if more bytes are needed, or
        ``-n`` to discard ``n`` leading bytes. By default the whole buffer
        is one packet.
        """
        return len(buffer)

    def _require_channel(self):
        if self._channel is None:
            raise OSError(errno.EBADF, "device is not open")
        return self._channel

    def _scan(self) -> int:
        """Drop junk from the buffer and return the length of a ready packet, or 0."""
        while self._buffer:
            result = self.extract_packet(bytes(self._buffer))
            if 0 < result <= len(self._buffer):
                return result
            if result < 0:
                del self._buffer[:-result]
                continue
            if len(self._buffer) >= self.max_packet_size:
                del self._buffer[:1]
                continue
            return 0
        return 0

    def _fill(self) -> int:
        """Move everything immediately readable into the buffer; return its size."""
        channel = self._require_channel()
        while chunk := channel.receive(self.max_packet_size, 0):
            self._buffer += chunk
        return len(self._buffer)

    def read_packet(self, timeout: int | None = None) -> bytes:
        """Return the next packet, waiting at most ``timeout`` ms (default ``read_timeout``)."""
        channel = self._require_channel()
        timeout_ms = self.read_timeout if timeout is None else timeout
        deadline = time.monotonic() + max(timeout_ms, 0) / 1000
        while True:
            size = self._scan()
            if size:
                packet = bytes(self._buffer[:size])
                del self._buffer[:size]
                return packet
            remaining = max(deadline - time.monotonic(), 0)
            chunk = channel.receive(self.max_packet_size, remaining)
            if chunk:
                self._buffer += chunk
            elif time.monotonic() >= deadline:
                raise DriverTimeout("read_packet(): timeout")

    def write_packet(self, data: bytes, timeout: int | None = None) -> None:
        """Write all of ``data``, waiting at most ``timeout`` ms (default ``write_timeout``)."""
        channel = self._require_channel()
        timeout_ms = self.write_timeout if timeout is None else timeout
        deadline = time.monotonic() + max(timeout_ms, 0) / 1000
        view = memoryview(bytes(data))
        while view:
            remaining = max(deadline - time.monotonic(), 0)
            view = view[channel.send(view, remaining):]
            if view and time.monotonic() >= deadline:
                raise DriverTimeout("write_packet(): timeout")

    def has_packet(self) -> bool:
        """True if a complete packet can be read without waiting."""
        if not self.is_valid():
            return False
        self._fill()
        return self._scan() > 0

    def clear(self) -> None:
        if self.is_valid():
            self._fill()
        self._buffer.clear()

    def fileno(self) -> int:
        return self._channel.fileno() if self._channel is not None else INVALID_FD

    def is_valid(self) -> bool:
        return self._channel is not None

    def close(self) -> None:
        if self._channel is not None:
            channel, self._channel = self._channel, None
            channel.close()
        self._buffer.clear()