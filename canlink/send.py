"""Command that sends a CAN message one or more times."""

from __future__ import annotations

import sys
import time
from typing import NamedTuple

from canlink.devices import open_can_device
from canlink.message import MAX_DATA_LENGTH, Message

USAGE = (
    "usage: canbus-send device device_type id length [value1] ... [value8] "
    "[COUNT] [PERIOD_IN_MS]\n"
)
MAX_ID = 1 << 11


class SendRequest(NamedTuple):
    message: Message
    count: int
    period: int


def _parse_int(text: str, base: int) -> int:
    s = text.strip()
    if base == 0:
        body = s.lstrip("+-")
        if body[:2].lower() == "0x":
            base = 16
        elif len(body) > 1 and body.startswith("0"):
            base = 8
        else:
            base = 10
    try:
        return int(s, base)
    except ValueError:
        raise ValueError(f"invalid number {text!r}") from None


def parse_send_args(args) -> SendRequest:
    """Parse ``id length [bytes...] [COUNT] [PERIOD_MS]``; id and bytes in hex.

    Raises ValueError on any inconsistency.
    """
    args = list(args)
    if len(args) < 2:
        raise ValueError("missing id or length")
    can_id = _parse_int(args[0], 16)
    if not 0 <= can_id <= MAX_ID:
        raise ValueError("ID must between 0 and 2^11")
    length = _parse_int(args[1], 0)
    if not 0 <= length <= MAX_DATA_LENGTH:
        raise ValueError(f"length must between 0 and {MAX_DATA_LENGTH}")

    count, period = 1, 0
    n = len(args)
    if n >= length + 3:
        count = _parse_int(args[2 + length], 10)
        if n == length + 4:
            period = _parse_int(args[3 + length], 10)
        elif n != length + 3:
            raise ValueError("Error, number of parameters does not match length")
    elif n != length + 2:
        raise ValueError("Error, number of parameters does not match length")

    data = bytearray()
    for i, text in enumerate(args[2 : 2 + length]):
        value = _parse_int(text, 16)
        if not 0 <= value <= 255:
            raise ValueError(f"Error, given value nr {i} is wrong : {value}")
        data.append(value)
    return SendRequest(Message(can_id=can_id, data=bytes(data), size=length), count, period)


def _announce(request: SendRequest) -> None:
    msg = request.message
    data = "".join(f" 0x{byte:x}" for byte in msg.payload)
    print(f"id: 0x{msg.can_id:x} length: {msg.size:x} data :{data}")
    print(f"sending {request.count} packets at a period of {request.period}ms")


def main(argv=None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not 4 <= len(args) <= 12:
        print(USAGE, file=sys.stderr)
        return 1

    try:
        driver = open_can_device(args[0], args[1])
    except (ValueError, OSError) as exc:
        print(f"failed to open the CAN device: {exc}", file=sys.stderr)
        return 1
    if driver is None:
        print("failed to open the CAN device", file=sys.stderr)
        return 1

    with driver:
        if not driver.reset():
            print("failed to reset the CAN device", file=sys.stderr)
            return 1
        try:
            request = parse_send_args(args[2:])
        except ValueError as exc:
            print(exc, file=sys.stderr)
            return 1
        _announce(request)
        for _ in range(request.count):
            driver.write(request.message)
            if request.period:
                time.sleep(request.period / 1000)
    return 0


if __name__ == "__main__":
    sys.exit(main())