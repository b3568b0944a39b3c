import collections
import socket
import time

import pytest

from canlink.driver import INVALID_FD, Driver, DriverTimeout, StreamDriver
from canlink.message import Message


class QueueDriver(Driver):
    def __init__(self):
        super().__init__()
        self.incoming = collections.deque()
        self.written = []
        self.opened = False

    def open(self, path):
        self.opened = True
        return True

    def reset_board(self):
        return True

    def reset(self):
        return True

    def read(self):
        return self.incoming.popleft()

    def write(self, msg):
        self.written.append(msg)

    def pending_messages_count(self):
        return len(self.incoming)

    def check_bus_ok(self):
        return True

    def clear(self):
        self.incoming.clear()

    def fileno(self):
        return INVALID_FD

    def is_valid(self):
        return self.opened

    def close(self):
        self.opened = False


class LineDriver(StreamDriver):
    def extract_packet(self, buffer):
        if buffer[:1] == b"#":
            return -1
        index = buffer.find(b"\n")
        return index + 1 if index >= 0 else 0


@pytest.fixture
def line_link():
    server = socket.create_server(("127.0.0.1", 0))
    port = server.getsockname()[1]
    driver = LineDriver(64)
    driver.open_uri(f"tcp://127.0.0.1:{port}")
    conn, _ = server.accept()
    yield driver, conn
    driver.close()
    conn.close()
    server.close()


def _wait_for_packet(driver):
    deadline = time.monotonic() + 1.0
    while not StreamDriver.has_packet(driver) and time.monotonic() < deadline:
        time.sleep(0.01)


def test_default_timeouts():
    driver = StreamDriver(16)
    assert driver.read_timeout == Driver.DEFAULT_TIMEOUT
    assert driver.write_timeout == Driver.DEFAULT_TIMEOUT


def test_read_can_msg_returns_none_when_empty():
    assert Driver.read_can_msg(QueueDriver()) is None


def test_read_can_msg_returns_pending_message():
    driver = QueueDriver()
    msg = Message(can_id=0x42, data=b"\x01", size=1)
    driver.incoming.append(msg)
    assert driver.read_can_msg() == msg
    assert driver.pending_messages_count() == 0


def test_send_can_msg_writes():
    driver = QueueDriver()
    msg = Message(can_id=7)
    driver.send_can_msg(msg)
    assert driver.written == [msg]


def test_error_count_defaults_to_zero():
    assert Driver.error_count(QueueDriver()) == 0


def test_context_manager_closes():
    driver = QueueDriver()
    driver.open("x")
    msg = Message(can_id=3)
    with driver as entered:
        assert entered.is_valid()
        entered.send_can_msg(msg)
    assert not driver.is_valid()
    assert driver.written == [msg]


def test_stream_driver_rejects_bad_packet_size():
    with pytest.raises(ValueError):
        StreamDriver(0)


def test_unopened_stream_driver():
    driver = StreamDriver(16)
    assert not driver.is_valid()
    assert driver.fileno() == INVALID_FD
    assert not driver.has_packet()
    with pytest.raises(OSError):
        driver.read_packet(0)


@pytest.mark.parametrize("uri", ["no-scheme", "bogus://thing", "tcp://localhost", "udp://host"])
def test_open_uri_rejects_invalid(uri):
    with pytest.raises(ValueError):
        StreamDriver(16).open_uri(uri)


def test_reads_packets_in_order(line_link):
    driver, conn = line_link
    conn.sendall(b"one\ntwo\n")
    packets = [StreamDriver.read_packet(driver, 500) for _ in range(2)]
    assert packets == [b"one\n", b"two\n"]


def test_junk_is_skipped(line_link):
    driver, conn = line_link
    conn.sendall(b"##abc\n")
    assert StreamDriver.read_packet(driver, 500) == b"abc\n"


def test_partial_packet_completes_later(line_link):
    driver, conn = line_link
    conn.sendall(b"hel")
    with pytest.raises(DriverTimeout):
        StreamDriver.read_packet(driver, 50)
    conn.sendall(b"lo\n")
    assert StreamDriver.read_packet(driver, 500) == b"hello\n"


def test_read_timeout(line_link):
    driver, _ = line_link
    start = time.monotonic()
    with pytest.raises(DriverTimeout):
        StreamDriver.read_packet(driver, 30)
    assert time.monotonic() - start >= 0.025


def test_write_packet_reaches_peer(line_link):
    driver, conn = line_link
    StreamDriver.write_packet(driver, b"ping\n")
    conn.settimeout(1.0)
    received = b""
    while len(received) < 5:
        received += conn.recv(16)
    assert received == b"ping\n"
    conn.sendall(received)
    assert StreamDriver.read_packet(driver, 500) == b"ping\n"


def test_has_packet(line_link):
    driver, conn = line_link
    assert not StreamDriver.has_packet(driver)
    conn.sendall(b"x\n")
    _wait_for_packet(driver)
    assert StreamDriver.has_packet(driver)
    assert StreamDriver.read_packet(driver, 0) == b"x\n"


def test_clear_discards_buffered_data(line_link):
    driver, conn = line_link
    conn.sendall(b"old\n")
    _wait_for_packet(driver)
    StreamDriver.clear(driver)
    with pytest.raises(DriverTimeout):
        StreamDriver.read_packet(driver, 20)
    conn.sendall(b"new\n")
    assert StreamDriver.read_packet(driver, 500) == b"new\n"


def test_overlong_garbage_is_dropped():
    server = socket.create_server(("127.0.0.1", 0))
    driver = LineDriver(4)
    StreamDriver.open_uri(driver, f"tcp://127.0.0.1:{server.getsockname()[1]}")
    conn, _ = server.accept()
    try:
        conn.sendall(b"abcdefgh")
        with pytest.raises(DriverTimeout):
            StreamDriver.read_packet(driver, 50)
        conn.sendall(b"\n")
        assert StreamDriver.read_packet(driver, 500) == b"fgh\n"
    finally:
        StreamDriver.close(driver)
        conn.close()
        server.close()


def test_peer_close_is_reported(line_link):
    driver, conn = line_link
    conn.close()
    with pytest.raises(ConnectionError):
        StreamDriver.read_packet(driver, 500)


def test_file_uri_with_default_framing(tmp_path):
    path = tmp_path / "stream.bin"
    path.write_bytes(b"abc")
    driver = StreamDriver(16)
    driver.open_uri(f"file://{path}")
    try:
        assert driver.fileno() >= 0
        assert driver.read_packet(100) == b"abc"
        with pytest.raises(DriverTimeout):
            driver.read_packet(10)
    finally:
        driver.close()
    assert not driver.is_valid()