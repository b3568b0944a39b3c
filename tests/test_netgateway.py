import socket
import time

import pytest

from canlink.message import Message
from canlink.netgateway import (
    CAN_ERR_FLAG,
    CAN_ERR_RESTARTED,
    FRAME_SIZE,
    NetGateway,
    pack_frame,
    unpack_frame,
)


def _recv_exact(conn, size):
    conn.settimeout(2)
    data = b""
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


@pytest.fixture
def link():
    server = socket.create_server(("127.0.0.1", 0))
    port = server.getsockname()[1]
    gateway = NetGateway()
    gateway.open(f"tcp://127.0.0.1:{port}")
    conn, _ = server.accept()
    yield gateway, conn
    gateway.close()
    conn.close()
    server.close()


def test_frame_round_trip():
    raw = pack_frame(0x123, 3, b"\x01\x02\x03")
    assert len(raw) == FRAME_SIZE
    can_id, dlc, data = unpack_frame(raw)
    assert (can_id, dlc) == (0x123, 3)
    assert data == b"\x01\x02\x03" + bytes(5)


def test_frame_layout():
    raw = pack_frame(0x10, 2, b"\xaa\xbb")
    assert raw[4] == 2
    assert raw[8:10] == b"\xaa\xbb"


def test_unpack_short_frame_raises():
    with pytest.raises(ValueError):
        unpack_frame(b"\x00" * 5)


def test_extract_packet():
    gateway = NetGateway()
    assert gateway.extract_packet(bytes(20)) == FRAME_SIZE
    assert gateway.extract_packet(bytes(5)) == -5
    assert gateway.extract_packet(b"") == 0


def test_read_message(link):
    gateway, conn = link
    conn.sendall(pack_frame(0x42, 2, b"\x10\x20"))
    msg = gateway.read()
    assert msg.can_id == 0x42
    assert msg.payload == b"\x10\x20"
    assert msg.can_time == msg.time


def test_error_frame_marks_bus(link):
    gateway, conn = link
    conn.sendall(pack_frame(CAN_ERR_FLAG | 0x40, 8, bytes(8)) + pack_frame(0x7, 1, b"\x01"))
    msg = gateway.read()
    assert msg.can_id == 0x7
    assert gateway.check_bus_ok() is False
    assert gateway.error_count() == 1
    gateway.clear()
    assert gateway.check_bus_ok() is True


def test_error_frame_without_bits_clears_error(link):
    gateway, conn = link
    conn.sendall(pack_frame(CAN_ERR_FLAG | 0x40, 8, bytes(8)) + pack_frame(0x7, 0, b""))
    gateway.read()
    conn.sendall(pack_frame(CAN_ERR_FLAG, 8, bytes(8)) + pack_frame(0x8, 0, b""))
    assert gateway.read().can_id == 0x8
    assert gateway.check_bus_ok() is True
    assert gateway.error_count() == 1


def test_pending_and_poll(link):
    gateway, conn = link
    assert gateway.poll() is None
    conn.sendall(pack_frame(1, 0, b"") + pack_frame(2, 0, b""))
    time.sleep(0.1)
    assert gateway.pending_messages_count() == 2
    assert gateway.poll().can_id == 1
    assert gateway.read().can_id == 2


def test_write_sends_frame(link):
    gateway, conn = link
    gateway.write(Message(can_id=0x321, data=b"\xaa\xbb", size=2))
    can_id, dlc, data = unpack_frame(_recv_exact(conn, FRAME_SIZE))
    assert (can_id, dlc, data[:2]) == (0x321, 2, b"\xaa\xbb")


def test_reset_sends_restart_request(link):
    gateway, conn = link
    assert gateway.reset() is True
    can_id, dlc, data = unpack_frame(_recv_exact(conn, FRAME_SIZE))
    assert can_id == CAN_ERR_FLAG | CAN_ERR_RESTARTED
    assert dlc == 8
    assert data == bytes(8)