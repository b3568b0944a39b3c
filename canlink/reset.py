"""Command that resets a CAN board."""

from __future__ import annotations

import sys

from canlink.devices import open_can_device


def main(argv=None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) != 2:
        print("canbus_reset can_device device_type", file=sys.stderr)
        return 1
    path, driver_type = args
    try:
        driver = open_can_device(path, driver_type)
    except (ValueError, OSError):
        driver = None
    if driver is None:
        print(f"Failed to open can device of type {driver_type} with path {path}", file=sys.stderr)
        return 1
    with driver:
        driver.reset_board()
    return 0


if __name__ == "__main__":
    sys.exit(main())