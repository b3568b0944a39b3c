"""Driver for CAN network gateways that exchange raw CAN frames over a byte stream."""

from __future__ import annotations

import struct
from collections import deque

from canlink.driver import StreamDriver
from canlink.message import Message
from canlink.timebase import Time

CAN_EFF_FLAG = 0x80000000
CAN_RTR_FLAG = 0x40000000
CAN_ERR_FLAG = 0x20000000
CAN_SFF_MASK = 0x000007FF
CAN_EFF_MASK = 0x1FFFFFFF
CAN_ERR_MASK = 0x1FFFFFFF
CAN_ERR_RESTARTED = 0x00000100

# can_id (u32), dlc (u8), padding up to the 8-aligned data field, data[8]
_FRAME = struct.Struct("=IB3x8s")
FRAME_SIZE = _FRAME.size


def pack_frame(can_id: int, dlc: int, data: bytes) -> bytes:
    """Encode a gateway CAN frame (16 bytes, native byte order)."""
    return _FRAME.pack(can_id & 0xFFFFFFFF, dlc, bytes(data)[:8])


def unpack_frame(raw: bytes) -> tuple[int, int, bytes]:
    """Decode a gateway CAN frame into ``(can_id, dlc, data)``."""
    raw = bytes(raw)
    if len(raw) < FRAME_SIZE:
        raise ValueError(f"CAN frame needs {FRAME_SIZE} bytes, got {len(raw)}")
    can_id, dlc, data = _FRAME.unpack(raw[:FRAME_SIZE])
    return can_id, dlc, data


class NetGateway(StreamDriver):
    """CAN access through a network gateway.

    Error frames are counted and mark the bus as faulty until a frame
    without error bits or a :meth:`clear` arrives.
    """

    def __init__(self) -> None:
        super().__init__(FRAME_SIZE)
        self._rx_queue: deque[Message] = deque()
        self._error_counter = 0
        self._error = False

    def open(self, path: str) -> bool:
        self.open_uri(path)
        return True

    def reset_board(self) -> bool:
        return True

    def reset(self) -> bool:
        """Ask the gateway to restart the controller."""
        self.write_packet(pack_frame(CAN_ERR_FLAG | CAN_ERR_RESTARTED, 8, bytes(8)))
        return True

    def extract_packet(self, buffer: bytes) -> int:
        size = len(buffer)
        return FRAME_SIZE if size >= FRAME_SIZE else -size

    def _read_one_message(self) -> None:
        packet = self.read_packet()
        if len(packet) != FRAME_SIZE:
            return
        can_id, dlc, data = unpack_frame(packet)
        if can_id & CAN_ERR_FLAG:
            if can_id & CAN_ERR_MASK:
                self._error_counter += 1
                self._error = True
            else:
                self._error = False
            return
        now = Time.now()
        self._rx_queue.append(Message(time=now, can_time=now, can_id=can_id, data=data, size=dlc))

    def _buffer_messages(self) -> int:
        while self.has_packet():
            self._read_one_message()
        return len(self._rx_queue)

    def read(self) -> Message:
        while not self._rx_queue:
            self._read_one_message()
        return self._rx_queue.popleft()

    def poll(self) -> Message | None:
        """Return the next message if one is already available, else None."""
        if self._buffer_messages() == 0:
            return None
        return self.read()

    def write(self, msg: Message) -> None:
        self.write_packet(pack_frame(msg.can_id, msg.size, msg.data))

    def pending_messages_count(self) -> int:
        return self._buffer_messages()

    def check_bus_ok(self) -> bool:
        self._buffer_messages()
        return not self._error

    def clear(self) -> None:
        self._buffer_messages()
        self._rx_queue.clear()
        self._error = False

    def error_count(self) -> int:
        return self._error_counter