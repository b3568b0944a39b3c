"""Command for querying, resetting and sending through an EasySYNC adapter."""

from __future__ import annotations

import sys

from canlink.easysync import EasySync, EasySyncStatus, FailedCommand
from canlink.send import parse_send_args

USAGE = (
    "usage: canbus-easysync <uri> COMMAND\n"
    "   canbus-easysync <uri> status\n"
    "   canbus-easysync <uri> send id length byte0 [byte1]... [COUNT] [PERIOD_MS]\n"
)


def format_status(status: EasySyncStatus) -> str:
    """Human-readable controller status, one field per line."""
    return "\n".join(
        [
            f"RX state: {status.rx_state.name}",
            f"TX state: {status.tx_state.name}",
            f"RX buffer 0 overflow: {int(status.rx_buffer0_overflow)}",
            f"RX buffer 1 overflow: {int(status.rx_buffer1_overflow)}",
        ]
    )


def main(argv=None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) < 2:
        print(USAGE, file=sys.stderr)
        return 1
    uri, command = args[0], args[1]
    driver = EasySync()

    try:
        if command == "status":
            driver.open(uri)
            print(format_status(driver.status()))
        elif command == "send":
            driver.open(uri)
            try:
                request = parse_send_args(args[2:])
            except ValueError as exc:
                print(exc, file=sys.stderr)
                return 1
            msg = request.message
            data = "".join(f" 0x{byte:x}" for byte in msg.payload)
            print(f"id: 0x{msg.can_id:x} length: {msg.size:x} data :{data}")
            print(f"sending {request.count} packets at a period of {request.period}ms")
            for _ in range(request.count):
                driver.write(msg)
        elif command == "reset":
            driver.open_uri(uri)
            driver.write_packet(b"C\r")
            driver.reset_board()
    except (OSError, FailedCommand) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())