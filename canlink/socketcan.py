"""Driver for Linux SocketCAN raw sockets."""

from __future__ import annotations

import errno
import logging
import socket
import struct
import time
from collections import deque

from canlink.driver import INVALID_FD, Driver, DriverTimeout
from canlink.message import Message
from canlink.timebase import Time

logger = logging.getLogger(__name__)

CAN_EFF_FLAG = 0x80000000
CAN_RTR_FLAG = 0x40000000
CAN_ERR_FLAG = 0x20000000
CAN_ERR_MASK = 0x1FFFFFFF

CAN_ERR_TX_TIMEOUT = 0x00000001
CAN_ERR_LOSTARB = 0x00000002
CAN_ERR_CRTL = 0x00000004
CAN_ERR_PROT = 0x00000008
CAN_ERR_TRX = 0x00000010
CAN_ERR_ACK = 0x00000020
CAN_ERR_BUSOFF = 0x00000040
CAN_ERR_BUSERROR = 0x00000080
CAN_ERR_RESTARTED = 0x00000100

# Error classes requested from the kernel. Controller problems are left out:
# they are mostly long-term bus quality flags.
ERROR_FILTER_MASK = (
    CAN_ERR_TX_TIMEOUT
    | CAN_ERR_LOSTARB
    | CAN_ERR_PROT
    | CAN_ERR_TRX
    | CAN_ERR_ACK
    | CAN_ERR_BUSOFF
    | CAN_ERR_BUSERROR
    | CAN_ERR_RESTARTED
)

SO_TIMESTAMP = getattr(socket, "SO_TIMESTAMP", 29)
SOL_CAN_RAW = getattr(socket, "SOL_CAN_RAW", 101)
CAN_RAW_ERR_FILTER = getattr(socket, "CAN_RAW_ERR_FILTER", 2)

_FRAME = struct.Struct("=IB3x8s")
CAN_FRAME_SIZE = _FRAME.size
_TIMEVAL = struct.Struct("@ll")
_ERR_MASK_OPT = struct.Struct("=I")
_CONTROL_BUFFER_SIZE = 1024

_CONTROLLER_PROBLEMS = (
    (0x01, "RX overflow"),
    (0x02, "TX overflow"),
    (0x04, "RX warning"),
    (0x08, "TX warning"),
    (0x10, "RX passive"),
    (0x20, "TX passive"),
)

_PROTOCOL_VIOLATIONS = (
    (0x01, "single bit error"),
    (0x02, "frame format error"),
    (0x04, "bit stuffing error"),
    (0x08, "unable to send dominant bit"),
    (0x10, "unable to send recessive bit"),
    (0x20, "bus overload"),
    (0x40, "active error announcement"),
    (0x80, "error on transmission"),
)

_PROTOCOL_LOCATIONS = {
    0x00: "unspecified",
    0x03: "start of frame",
    0x02: "id bits 28-21(eff)/10-3(sff)",
    0x06: "id bits 20-18(eff)/2-0(sff)",
    0x04: "substitute rtr",
    0x05: "identifier extension",
    0x07: "id bits 17-13(eff)",
    0x0F: "id bits 12-5(eff)",
    0x0E: "id bits 4-0(eff)",
    0x0C: "RTR",
    0x0D: "reserved bit 1",
    0x09: "reserved bit 0",
    0x0B: "data length code",
    0x0A: "data section",
    0x08: "crc sequence",
    0x18: "crc delimiter",
    0x19: "ack slot",
    0x1B: "ack delimiter",
    0x1A: "end of frame",
    0x12: "intermission",
}

_CANH_STATES = {
    0x00: "unspecified",
    0x04: "no wire",
    0x05: "short to bat",
    0x06: "short to vcc",
    0x07: "short to gnd",
}

_CANL_STATES = {
    0x00: "unspecified",
    0x40: "no wire",
    0x50: "short to bat",
    0x60: "short to vcc",
    0x70: "short to gnd",
    0x80: "short to canh",
}


def pack_can_frame(can_id: int, dlc: int, data: bytes) -> bytes:
    """Encode a ``struct can_frame`` (16 bytes, native byte order)."""
    return _FRAME.pack(can_id & 0xFFFFFFFF, dlc, bytes(data)[:8])


def unpack_can_frame(raw: bytes) -> tuple[int, int, bytes]:
    """Decode a ``struct can_frame`` into ``(can_id, dlc, data)``."""
    raw = bytes(raw)
    if len(raw) < CAN_FRAME_SIZE:
        raise ValueError(f"CAN frame needs {CAN_FRAME_SIZE} bytes, got {len(raw)}")
    can_id, dlc, data = _FRAME.unpack(raw[:CAN_FRAME_SIZE])
    return can_id, dlc, data


def describe_error_frame(can_id: int, data: bytes) -> list[str]:
    """Describe the error classes and details of an error frame, one line each."""
    data = bytes(data).ljust(8, b"\x00")
    lines: list[str] = []
    if can_id & CAN_ERR_TX_TIMEOUT:
        lines.append("\tTX timeout")
    if can_id & CAN_ERR_LOSTARB:
        lines.append(f"\tlost arbitration at bit {data[0]}")
    if can_id & CAN_ERR_CRTL:
        lines.append("\tcontroller problem:")
        lines.extend(f"\t\t{text}" for bit, text in _CONTROLLER_PROBLEMS if data[1] & bit)
    if can_id & CAN_ERR_PROT:
        lines.append("\tprotocol violation:")
        lines.extend(f"\t\t{text}" for bit, text in _PROTOCOL_VIOLATIONS if data[2] & bit)
        lines.append(f"\t\tlocation: {_PROTOCOL_LOCATIONS.get(data[3], 'unknown')}")
    if can_id & CAN_ERR_TRX:
        lines.append("\ttranscevier status:")
        lines.append(f"\t\tcanh: {_CANH_STATES.get(data[4] & 0x0F, 'unknown')}")
        lines.append(f"\t\tcanl: {_CANL_STATES.get(data[4] & 0xF0, 'unknown')}")
    if can_id & CAN_ERR_ACK:
        lines.append("\treceived no ACK")
    if can_id & CAN_ERR_BUSOFF:
        lines.append("\tbus off")
    if can_id & CAN_ERR_BUSERROR:
        lines.append("\tbus error")
    if can_id & CAN_ERR_RESTARTED:
        lines.append("\tcontroller restarted")
    return lines


def _configure(sock) -> bool:
    """Enable receive timestamps and the error frame filter."""
    try:
        sock.setsockopt(socket.SOL_SOCKET, SO_TIMESTAMP, 1)
        sock.setsockopt(SOL_CAN_RAW, CAN_RAW_ERR_FILTER, _ERR_MASK_OPT.pack(ERROR_FILTER_MASK))
    except OSError as exc:
        logger.error("setsockopt: %s", exc)
        return False
    return True


def _extract_timestamp(ancdata) -> Time | None:
    for level, kind, payload in ancdata:
        if level == socket.SOL_SOCKET and kind == SO_TIMESTAMP and len(payload) >= _TIMEVAL.size:
            seconds, usecs = _TIMEVAL.unpack(payload[: _TIMEVAL.size])
            return Time.from_seconds(seconds, usecs)
    return None


class SocketCan(Driver):
    """CAN access through a SocketCAN raw socket bound to an interface such as ``can0``.

    ``sock`` may be an already bound raw CAN socket to use instead of opening one.
    """

    def __init__(self, sock=None) -> None:
        super().__init__()
        self._sock = sock
        self._rx_queue: deque[Message] = deque()
        self._error = False
        self._error_count = 0
        self._path = ""

    def open(self, path: str) -> bool:
        """Bind a raw CAN socket to interface ``path``; False on failure."""
        self._path = path
        if self.is_valid():
            self.close()
        af_can = getattr(socket, "AF_CAN", None)
        can_raw = getattr(socket, "CAN_RAW", None)
        if af_can is None or can_raw is None:
            return False
        try:
            sock = socket.socket(af_can, socket.SOCK_RAW, can_raw)
        except OSError:
            return False
        try:
            sock.setblocking(False)
            sock.bind((path,))
        except OSError:
            sock.close()
            return False
        if not _configure(sock):
            sock.close()
            return False
        self._sock = sock
        return True

    def reset_board(self) -> bool:
        return True

    def reset(self) -> bool:
        self._error_count = 0
        if self._sock is None:
            return False
        return _configure(self._sock)

    def _require_socket(self):
        if self._sock is None:
            raise OSError(errno.EBADF, "device is not open")
        return self._sock

    def _check_input(self, deadline: float) -> bool:
        """Receive one frame before ``deadline``; False when none arrived."""
        sock = self._require_socket()
        while True:
            sock.settimeout(max(deadline - time.monotonic(), 0.0))
            try:
                raw, ancdata, _flags, _addr = sock.recvmsg(CAN_FRAME_SIZE, _CONTROL_BUFFER_SIZE)
            except (BlockingIOError, TimeoutError):
                return False
            if raw:
                break
            if time.monotonic() >= deadline:
                return False

        can_id, dlc, data = unpack_can_frame(raw)
        if can_id & CAN_ERR_FLAG:
            # Lost arbitration is a bus collision the kernel resends; not critical.
            if can_id & ~(CAN_ERR_LOSTARB | CAN_ERR_FLAG):
                self._error = True
            self._error_count += 1
            logger.warning(
                "read(%s): CAN error frame\n%s", self._path, "\n".join(describe_error_frame(can_id, data))
            )
            return True
        if can_id & CAN_RTR_FLAG:
            logger.info("read: CAN RTR frame")
            return True

        stamp = _extract_timestamp(ancdata)
        if stamp is None:
            raise RuntimeError("timestamp missing")
        self._rx_queue.append(
            Message(time=stamp, can_time=stamp, can_id=can_id & CAN_ERR_MASK, data=data, size=dlc)
        )
        return True

    def _deadline(self, timeout_ms: int) -> float:
        return time.monotonic() + max(timeout_ms, 0) / 1000

    def _drain(self) -> None:
        deadline = self._deadline(0)
        while self._check_input(deadline):
            pass

    def read(self) -> Message:
        deadline = self._deadline(self.read_timeout)
        while not self._rx_queue:
            if not self._check_input(deadline):
                raise DriverTimeout("read(): timeout")
        return self._rx_queue.popleft()

    def read_can_msg(self) -> Message | None:
        """Return the next message, or None if none arrives within ``read_timeout``."""
        deadline = self._deadline(self.read_timeout)
        while not self._rx_queue:
            if not self._check_input(deadline):
                return None
        return self._rx_queue.popleft()

    def write(self, msg: Message) -> None:
        sock = self._require_socket()
        frame = pack_can_frame(msg.can_id, msg.size, msg.data)
        deadline = self._deadline(self.write_timeout)
        while True:
            remaining = max(deadline - time.monotonic(), 0.0)
            sock.settimeout(remaining)
            try:
                if sock.send(frame) > 0:
                    return
            except (BlockingIOError, TimeoutError):
                pass
            except OSError as exc:
                if exc.errno != errno.ENOBUFS:
                    raise
                time.sleep(min(remaining, 0.001))
            if time.monotonic() >= deadline:
                raise DriverTimeout("write(): timeout")

    def pending_messages_count(self) -> int:
        self._drain()
        return len(self._rx_queue)

    def check_bus_ok(self) -> bool:
        self._drain()
        return not self._error

    def clear(self) -> None:
        self._drain()
        self._rx_queue.clear()
        self._error = False

    def fileno(self) -> int:
        return self._sock.fileno() if self._sock is not None else INVALID_FD

    def is_valid(self) -> bool:
        return self._sock is not None

    def close(self) -> None:
        if self._sock is not None:
            sock, self._sock = self._sock, None
            sock.close()

    def error_count(self) -> int:
        return self._error_count