import socket

import pytest

from canlink.devices import driver_type_from_name, open_can_device
from canlink.message import DriverType
from canlink.netgateway import NetGateway


def test_names_are_case_insensitive():
    assert driver_type_from_name("SOCKET") == DriverType.SOCKET
    assert driver_type_from_name("Net_Gateway") == DriverType.NET_GATEWAY
    assert driver_type_from_name("easy_sync") == DriverType.EASY_SYNC
    assert driver_type_from_name("hico_pci") == DriverType.HICO_PCI


@pytest.mark.parametrize("name", ["can2web", "vs_can", "bogus", ""])
def test_unknown_names_raise(name):
    with pytest.raises(ValueError):
        driver_type_from_name(name)


def test_unsupported_type_raises():
    with pytest.raises(ValueError):
        open_can_device("/dev/null", DriverType.HICO)


def test_unknown_type_name_raises():
    with pytest.raises(ValueError):
        open_can_device("can0", "bogus")


def test_socket_open_failure_returns_none():
    assert open_can_device("nocan0", "socket") is None


def test_net_gateway_opens():
    server = socket.create_server(("127.0.0.1", 0))
    port = server.getsockname()[1]
    try:
        driver = open_can_device(f"tcp://127.0.0.1:{port}", DriverType.NET_GATEWAY)
        assert isinstance(driver, NetGateway)
        assert driver.is_valid() is True
        driver.close()
        assert driver.is_valid() is False
    finally:
        server.close()