"""CAN message, status and flag definitions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from canlink.timebase import Time

MAX_DATA_LENGTH = 8


class DriverType(enum.IntEnum):
    """Kinds of CAN interface drivers."""

    SOCKET = 0
    HICO = 1
    HICO_PCI = 2
    VS_CAN = 3
    CAN2WEB = 4
    NET_GATEWAY = 5
    EASY_SYNC = 6


class MessageFlags(enum.IntFlag):
    """Flags encoded in the high bits of ``Message.can_id``."""

    ERROR = 1 << 29
    REMOTE_TRANSMISSION_REQUEST = 1 << 30
    EXTENDED_FRAME = 1 << 31


class StatusError(enum.IntFlag):
    """Controller error bits reported in a :class:`Status`."""

    OK = 0x00
    XMTFULL = 0x01
    OVERRUN = 0x02
    BUSERR = 0x04
    BUSOFF = 0x08
    RX_OVERFLOW = 0x10
    TX_OVERFLOW = 0x20


@dataclass
class Message:
    """A decoded CAN frame.

    ``data`` always holds eight bytes; ``size`` says how many are valid.
    """

    time: Time = field(default_factory=Time)
    can_time: Time = field(default_factory=Time)
    can_id: int = 0
    data: bytes = bytes(MAX_DATA_LENGTH)
    size: int = 0

    def __post_init__(self) -> None:
        data = bytes(self.data)
        if len(data) > MAX_DATA_LENGTH:
            raise ValueError(f"CAN data is at most {MAX_DATA_LENGTH} bytes, got {len(data)}")
        if not 0 <= self.size <= MAX_DATA_LENGTH:
            raise ValueError(f"CAN data size must be between 0 and {MAX_DATA_LENGTH}, got {self.size}")
        self.data = data.ljust(MAX_DATA_LENGTH, b"\x00")

    @classmethod
    def zeroed(cls) -> Message:
        """Return a message with a zero ID, zero data and zero size."""
        return cls()

    @property
    def payload(self) -> bytes:
        """The valid data bytes."""
        return self.data[: self.size]


@dataclass
class Status:
    """Controller status at a given time."""

    time: Time = field(default_factory=Time)
    error: StatusError = StatusError.OK