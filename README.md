# canlink

A small CAN bus library with command-line tools. It offers one driver
interface over three kinds of adapters:

- **socket**: Linux SocketCAN interfaces such as `can0` or `vcan0`
  (`canlink.socketcan.SocketCan`)
- **easy_sync**: EasySYNC / SLCAN-style serial adapters that use the ASCII
  `t`/`T` frame protocol (`canlink.easysync.EasySync`)
- **net_gateway**: network gateways that forward raw 16-byte CAN frames
  over a byte stream (`canlink.netgateway.NetGateway`)

## Installation

```
pip install .
```

Run the tests with:

```
pip install ".[test]"
pytest
```

## Using the library

Open a device with `open_can_device` from `canlink.devices`. It takes the
device path and either a `DriverType` or a type name. Type names are
matched case-insensitively by `driver_type_from_name`; an unknown name
raises `ValueError`. `open_can_device` returns the opened driver, or
`None` if the driver could not open the device.

```python
from canlink.devices import open_can_device
from canlink.message import DriverType, Message

driver = open_can_device("can0", DriverType.SOCKET)
if driver is not None:
    with driver:
        driver.reset()
        driver.send_can_msg(Message(can_id=0x123, data=b"\x42", size=1))
        received = driver.read()
        print(hex(received.can_id), received.payload.hex())
```

Every driver derives from `canlink.driver.Driver` and offers `open`,
`reset`, `reset_board`, `read`, `write`, `read_can_msg`, `send_can_msg`,
`pending_messages_count`, `check_bus_ok`, `clear`, `error_count`,
`fileno`, `is_valid` and `close`. Drivers are context managers that close
the device on exit. `read_timeout` and `write_timeout` are in
milliseconds (100 by default); a read or write that does not finish in
time raises `DriverTimeout`, a subclass of `TimeoutError`.
`read_can_msg` returns `None` instead of a message when nothing is
available.

### Messages and times

`canlink.message.Message` holds `can_id`, eight bytes of `data`, the
number of valid bytes in `size` (0 to 8; `payload` returns just those),
and two times: `time`, when the host received it, and `can_time`, the
adapter's time stamp where one is available. `Message.zeroed()` returns
an all-zero message. `MessageFlags` names the error, RTR and
extended-frame bits of `can_id`.

Times are `canlink.timebase.Time` values: immutable, ordered, integer
microseconds, with `from_microseconds`, `from_milliseconds`,
`from_seconds`, `from_time_values`, `from_string`, `now`, and
`to_string`, `to_seconds`, `to_milliseconds`, `to_microseconds`,
`to_timeval`, `is_null`. `to_string` and `from_string` use the local-time
format `YYYYmmdd-HH:MM:SS[:fraction]`, with the fraction chosen by
`Resolution`.

### Stream-based drivers

`EasySync` and `NetGateway` build on `canlink.driver.StreamDriver`, which
reads a byte stream and splits it into packets. It opens these URIs:

- `serial://PATH[:BAUD]` (115200 baud if none is given)
- `tcp://HOST:PORT`
- `udp://HOST:PORT[:LOCAL_PORT]`
- `file://PATH`

### EasySYNC adapters

`EasySync.open` takes one of the URIs above, optionally followed by a CAN
bit rate after a final colon: `10k`, `20k`, `50k`, `100k`, `125k`,
`250k`, `500k`, `800k` or `1M`.

```
serial:///dev/ttyUSB0:115200:500k
```

Received frames are queued (20 by default, set by `queue_size`).
Board time stamps are off unless `use_board_timestamps` is set before
`open`. `EasySync.status()` returns an `EasySyncStatus` with the receive
and transmit `BusState` and the two receive-buffer overflow flags;
`check_bus_ok` does not query the adapter and always returns `True`. A
command the adapter refuses raises `FailedCommand` after ten attempts.
The module functions `encode_frame`, `decode_frame`, `parse_status`,
`parse_hex` and `dump_hex` work on the protocol text directly.

### SocketCAN

`SocketCan.open` binds a raw CAN socket to a named interface and returns
`False` if that fails (including on systems without SocketCAN). Error
frames from the kernel are counted (`error_count`) and logged; any error
other than lost arbitration makes `check_bus_ok` return `False` until
`clear` is called. RTR frames are logged and dropped.
`pack_can_frame`, `unpack_can_frame` and `describe_error_frame` handle
the kernel frame layout.

### Network gateways

`NetGateway.open` opens its path as a stream URI, for example
`tcp://192.0.2.10:5000`. Error frames set an error state and count
towards `error_count`; an error frame with no error bits clears it, as
does `clear`. `reset` sends a controller-restart frame. `poll` returns a
message only if one is already available, otherwise `None`.

## Command-line tools

### canlink-monitor

Print every frame seen on a bus, with times in milliseconds relative to
the first frame shown:

```
canlink-monitor <device> <type> [count] [id] [mask]
```

`count` is the number of frames to show, or `nolimit` (the default).
With `id` given, only frames where `can_id & mask == id` are shown;
`mask` defaults to `0x7FF`. Numbers accept `0x` and leading-zero octal
prefixes. Stop it with Ctrl-C; a per-ID count is then printed to
standard error.

### canlink-send

Send a frame, optionally several times:

```
canlink-send <device> <type> <id> <length> [byte0] ... [byte7] [count] [period_ms]
```

`id` and the data bytes are hexadecimal; `id` must lie between 0 and
2^11 and `length` between 0 and 8.

```
canlink-send can0 socket 123 2 de ad 10 50
```

### canlink-reset

Reset the board behind a device:

```
canlink-reset <device> <type>
```

### canlink-easysync

Talk to an EasySYNC adapter directly:

```
canlink-easysync <uri> status
canlink-easysync <uri> send <id> <length> <byte0> [byte1]... [count] [period_ms]
canlink-easysync <uri> reset
```

`send` takes the same arguments as `canlink-send`, but sends the frames
back to back: the period is reported and not waited for.

## What is not supported

`DriverType` also names `HICO`, `HICO_PCI`, `VS_CAN` and `CAN2WEB`
boards, and `driver_type_from_name` accepts `hico` and `hico_pci`, but
the package has no drivers for them: `open_can_device` raises
`ValueError` for these types, and the command-line tools report that the
device could not be opened.