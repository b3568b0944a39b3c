"""Command that prints the CAN messages seen on a bus."""

from __future__ import annotations

import sys
from collections import Counter

from canlink.devices import open_can_device
from canlink.message import Message
from canlink.timebase import Time

USAGE = (
    "usage: canbus-monitor <device> <type> [count] [id] [mask]\n"
    "  count is the count of messages to listen to, or the nolimit keyword\n"
    "  the id/mask combination filters the CAN IDs to the ones that match can_id & mask == id\n"
)


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


def header_line() -> str:
    """The column header of the message listing."""
    columns = f"{'t':>10} {'can_t':>10} {'index':>10} {'can_id':>6} {'size':>4}"
    return columns + "".join(f" {i:>3}" for i in range(8))


def format_message(msg: Message, index: int, first_time: Time, first_can_time: Time) -> str:
    """One listing line: time deltas in ms, index, hex ID, size and hex data."""
    delta = (msg.time - first_time).to_milliseconds()
    can_delta = (msg.can_time - first_can_time).to_milliseconds()
    line = f"{delta:>10} {can_delta:>10} {index:>10} {msg.can_id:>6x} {msg.size:>4}"
    return line + "".join(f" {byte:>3x}" for byte in msg.payload)


def main(argv=None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not 2 <= len(args) <= 5:
        print(USAGE, file=sys.stderr)
        return 1

    try:
        driver = open_can_device(args[0], args[1])
    except (ValueError, OSError) as exc:
        print(f"failed to open the CAN device: {exc}", file=sys.stderr)
        return 1
    if driver is None:
        return 1

    with driver:
        if not driver.reset():
            return 1
        try:
            count = None
            if len(args) >= 3 and args[2] != "nolimit":
                count = int(args[2])
                if count < 0:
                    raise ValueError(f"invalid count {args[2]!r}")
            can_id, mask = 0, 0
            if len(args) >= 4:
                can_id = _parse_int(args[3], 0)
                mask = 0x7FF
            if len(args) >= 5:
                mask = _parse_int(args[4], 0)
        except ValueError as exc:
            print(exc, file=sys.stderr)
            return 1

        print(f"id: {can_id:x} mask: {mask:x}", file=sys.stderr)
        print(header_line())

        statistics: Counter[int] = Counter()
        index = 0
        first_time = first_can_time = None
        try:
            while count is None or index < count:
                try:
                    msg = driver.read()
                except Exception:
                    continue
                if (msg.can_id & mask) != can_id:
                    continue
                if first_time is None:
                    first_time, first_can_time = msg.time, msg.can_time
                index += 1
                print(format_message(msg, index, first_time, first_can_time))
                statistics[msg.can_id] += 1
        except KeyboardInterrupt:
            pass

    print("message statistics:\nID count", file=sys.stderr)
    for msg_id, seen in sorted(statistics.items()):
        print(f"{msg_id:x} {seen}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())