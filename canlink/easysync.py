"""Driver for EasySYNC USB-CAN adapters speaking the ASCII (SLCAN-style) protocol."""

from __future__ import annotations

import enum
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from canlink.driver import DriverTimeout, StreamDriver
from canlink.message import MAX_DATA_LENGTH, Message
from canlink.timebase import Time

MAX_PACKET_SIZE = 1024
DEFAULT_QUEUE_SIZE = 20
COMMAND_RETRIES = 10

_BELL = 0x07
_CR = ord("\r")
_HEX_DIGITS = frozenset(b"0123456789ABCDEF")
_STANDARD_ID_MASK = 0x7FF

BAUD_RATE_COMMANDS = {
    "10k": b"S0\r",
    "20k": b"S1\r",
    "50k": b"S2\r",
    "100k": b"S3\r",
    "125k": b"S4\r",
    "250k": b"S5\r",
    "500k": b"S6\r",
    "800k": b"S7\r",
    "1M": b"S8\r",
}

_SIMPLE_REPLY_COMMANDS = frozenset(b"SsmMZOLCR")


class FailedCommand(RuntimeError):
    """The adapter answered a command with an error (BEL)."""


class BusState(enum.IntEnum):
    OK = 0
    WARNING = 1
    PASSIVE = 2
    OFF = 3


@dataclass
class EasySyncStatus:
    """Decoded controller status flags."""

    rx_state: BusState = BusState.OK
    tx_state: BusState = BusState.OK
    rx_buffer0_overflow: bool = False
    rx_buffer1_overflow: bool = False
    time: Time = field(default_factory=Time.now)


def parse_hex(text: bytes | str) -> bytes:
    """Decode upper-case hexadecimal text into bytes."""
    raw = text.encode("ascii") if isinstance(text, str) else bytes(text)
    if len(raw) % 2:
        raise ValueError(f"odd number of hex digits in {raw!r}")
    if not set(raw) <= _HEX_DIGITS:
        raise ValueError(f"invalid hex digits in {raw!r}")
    return bytes.fromhex(raw.decode("ascii"))


def dump_hex(data: bytes) -> bytes:
    """Encode bytes as upper-case hexadecimal text."""
    return bytes(data).hex().upper().encode("ascii")


def encode_frame(msg: Message) -> bytes:
    """Build the transmit command for ``msg`` (``t``/``T`` frame ending in CR)."""
    can_id = msg.can_id & 0xFFFFFFFF
    if can_id & ~_STANDARD_ID_MASK:
        header = b"T" + dump_hex(can_id.to_bytes(4, "big"))
    else:
        header = b"t" + dump_hex(can_id.to_bytes(2, "big"))[1:]
    return header + bytes([ord("0") + msg.size]) + dump_hex(msg.data[: msg.size]) + b"\r"


def decode_frame(packet: bytes) -> Message:
    """Decode a received ``t``/``T`` frame, with an optional 4-digit board timestamp."""
    packet = bytes(packet)
    if packet.endswith(b"\r"):
        packet = packet[:-1]
    if not packet:
        raise ValueError("empty frame")
    if packet[0] == ord("T"):
        id_hex, rest = packet[1:9], packet[9:]
        if len(id_hex) != 8:
            raise ValueError("truncated extended frame identifier")
    elif packet[0] == ord("t"):
        id_hex, rest = b"0" + packet[1:4], packet[4:]
        if len(id_hex) != 4:
            raise ValueError("truncated standard frame identifier")
    else:
        raise ValueError(f"not a CAN frame: {packet!r}")
    can_id = int.from_bytes(parse_hex(id_hex), "big")

    if not rest:
        raise ValueError("missing data length in frame")
    length = rest[0] - ord("0")
    if not 0 <= length <= MAX_DATA_LENGTH:
        raise ValueError(f"invalid data length {chr(rest[0])!r}")
    data_end = 1 + 2 * length
    if len(rest) < data_end:
        raise ValueError("size mismatch while parsing a received frame")
    data = parse_hex(rest[1:data_end])
    tail = rest[data_end:]

    can_time = Time()
    if len(tail) == 4:
        can_time = Time.from_milliseconds(int.from_bytes(parse_hex(tail), "big"))
    elif tail:
        raise ValueError("size mismatch while parsing a received frame")
    return Message(time=Time.now(), can_time=can_time, can_id=can_id, data=data, size=length)


def parse_status(raw_status: int) -> EasySyncStatus:
    """Decode the status byte returned by the ``F`` command."""
    if raw_status & 0x20:
        tx_state = BusState.OFF
    elif raw_status & 0x10:
        tx_state = BusState.PASSIVE
    elif raw_status & 0x04:
        tx_state = BusState.WARNING
    else:
        tx_state = BusState.OK

    if raw_status & 0x08:
        rx_state = BusState.PASSIVE
    elif raw_status & 0x02:
        rx_state = BusState.WARNING
    else:
        rx_state = BusState.OK

    return EasySyncStatus(
        rx_state=rx_state,
        tx_state=tx_state,
        rx_buffer0_overflow=bool(raw_status & 0x40),
        rx_buffer1_overflow=bool(raw_status & 0x80),
    )


def _check_nibbles(buffer: bytes, offset: int, expected: int) -> int:
    """Return ``-i`` for the first non-hex byte in the window, else 0."""
    end = min(offset + expected, len(buffer))
    for i in range(offset, end):
        if buffer[i] not in _HEX_DIGITS:
            return -i
    return 0


def _ms_left(deadline: float) -> int:
    return int((deadline - time.monotonic()) * 1000)


def _with_retries(attempt: Callable[[int], None], retries: int, timeout_ms: int) -> None:
    deadline = time.monotonic() + timeout_ms / 1000
    while True:
        try:
            attempt(_ms_left(deadline))
            return
        except FailedCommand:
            retries -= 1
            if retries <= 0:
                raise


class EasySync(StreamDriver):
    """CAN access through an EasySYNC adapter.

    Received frames are buffered in a queue of at most ``queue_size`` messages.
    Board timestamps are off by default (``use_board_timestamps``).
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        super().__init__(MAX_PACKET_SIZE)
        self.queue_size = queue_size
        self.use_board_timestamps = False
        self._queue: deque[Message] = deque()
        self._current_command = 0

    def open(self, path: str) -> bool:
        """Open the adapter; a trailing ``:RATE`` (10k … 1M) sets the CAN bit rate."""
        rate_cmd = None
        uri = path
        base, colon, potential_rate = path.rpartition(":")
        if colon and potential_rate in BAUD_RATE_COMMANDS:
            rate_cmd = BAUD_RATE_COMMANDS[potential_rate]
            uri = base

        self.read_timeout = 100
        self.write_timeout = 100
        self.open_uri(uri)
        self._queue.clear()
        if path.startswith("serial"):
            self._set_low_latency()

        try:
            self._process_simple_command(b"C\r")
        except FailedCommand:
            pass
        self._process_simple_command(b"E\r")
        self._process_simple_command(b"Z1\r" if self.use_board_timestamps else b"Z0\r")
        if rate_cmd:
            self._process_simple_command(rate_cmd)
        self._process_simple_command(b"O\r")
        self._process_simple_command(b"E\r")
        return True

    def _set_low_latency(self) -> None:
        port = getattr(self._channel, "_port", None)
        setter = getattr(port, "set_low_latency_mode", None)
        if setter is None:
            return
        try:
            setter(True)
        except (OSError, ValueError):
            pass

    def reset_board(self) -> bool:
        self._process_simple_command(b"R\r")
        self._queue.clear()
        return True

    def reset(self) -> bool:
        self._queue.clear()
        return True

    def read(self, timeout: int | None = None) -> Message:
        """Return the oldest queued message, or wait at most ``timeout`` ms for one."""
        if self._queue:
            return self._queue.popleft()
        return self._read_from_io(self.read_timeout if timeout is None else timeout)

    def _read_from_io(self, timeout: int) -> Message:
        return decode_frame(self.read_packet(timeout))

    def write(self, msg: Message) -> None:
        frame = encode_frame(msg)

        def attempt(timeout: int) -> None:
            self.write_packet(frame)
            self._read_reply(frame[0], timeout)

        _with_retries(attempt, COMMAND_RETRIES, self.read_timeout)

    def status(self) -> EasySyncStatus:
        """Query the controller status flags."""
        replies: list[bytes] = []

        def attempt(timeout: int) -> None:
            self.write_packet(b"F\r")
            replies.append(self._read_reply(ord("F"), timeout))

        _with_retries(attempt, COMMAND_RETRIES, self.read_timeout)
        return parse_status(parse_hex(replies[-1][:2])[0])

    def check_bus_ok(self) -> bool:
        # Querying the status disrupts the communication channel; assume OK.
        return True

    def clear(self) -> None:
        self._process_simple_command(b"E\r")
        super().clear()

    def close(self) -> None:
        self._process_simple_command(b"C\r")
        super().close()

    def pending_messages_count(self) -> int:
        try:
            while len(self._queue) < self.queue_size:
                self._queue.append(self._read_from_io(0))
        except DriverTimeout:
            pass
        return len(self._queue)

    def _process_simple_command(self, cmd: bytes) -> None:
        def attempt(timeout: int) -> None:
            self.write_packet(cmd)
            self._read_reply(cmd[0])

        _with_retries(attempt, COMMAND_RETRIES, self.read_timeout)

    def _read_reply(self, command: int, timeout: int | None = None) -> bytes:
        """Wait for the reply to ``command``, skipping received frames."""
        self._current_command = command
        timeout_ms = self.read_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            packet = self.read_packet(_ms_left(deadline))
            if packet[0] == _BELL:
                raise FailedCommand(f"{chr(command)} command failed")
            if packet[0] not in b"tT":
                return packet

    def extract_packet(self, buffer: bytes) -> int:
        buffer = bytes(buffer)
        size = len(buffer)
        if size == 0:
            return 0
        first = buffer[0]
        if first == _BELL:
            return 1
        if first == ord("t"):
            r = _check_nibbles(buffer, 1, 4)
            if r:
                return r
            if size < 5:
                return 0
            remaining = (buffer[4] - ord("0")) * 2
            if self.use_board_timestamps:
                remaining += 4
            r = _check_nibbles(buffer, 5, remaining)
            if r:
                return r
            expected = remaining + 5
            return 0 if size < expected else expected

        command = self._current_command
        if command in _SIMPLE_REPLY_COMMANDS and first == _CR:
            return 1
        if command in _SIMPLE_REPLY_COMMANDS or command == ord("F"):
            r = _check_nibbles(buffer, 0, 2)
            if r:
                return r
            if size < 3:
                return 0
            return 3 if buffer[2] == _CR else -3
        if command in b"VN":
            if first != command:
                return -1
            r = _check_nibbles(buffer, 1, 4)
            if r:
                return r
            if size < 6:
                return 0
            return 3 if buffer[5] == _CR else -3
        if command == ord("E"):
            if first != ord("E"):
                return -1
            if size < 2:
                return 0
            return 2 if buffer[1] == _CR else -2
        if command in b"tT":
            ack = ord("z") if command == ord("t") else ord("Z")
            if size < 2:
                return 0
            if first != ack:
                return -1
            if buffer[1] != _CR:
                return -2
            return 2
        return -1