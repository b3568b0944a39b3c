"""Creating and opening CAN drivers by type."""

from __future__ import annotations

import logging

from canlink.driver import Driver
from canlink.easysync import EasySync
from canlink.message import DriverType
from canlink.netgateway import NetGateway
from canlink.socketcan import SocketCan

logger = logging.getLogger(__name__)

_NAMES = {
    "hico": DriverType.HICO,
    "hico_pci": DriverType.HICO_PCI,
    "socket": DriverType.SOCKET,
    "net_gateway": DriverType.NET_GATEWAY,
    "easy_sync": DriverType.EASY_SYNC,
}

_FACTORIES = {
    DriverType.SOCKET: SocketCan,
    DriverType.NET_GATEWAY: NetGateway,
    DriverType.EASY_SYNC: EasySync,
}


def driver_type_from_name(name: str) -> DriverType:
    """Map a case-insensitive driver name to its type; ValueError if unknown."""
    try:
        return _NAMES[name.lower()]
    except KeyError:
        raise ValueError(f"unknown CAN driver type {name!r}") from None


def open_can_device(path: str, driver_type: DriverType | str = DriverType.SOCKET) -> Driver | None:
    """Create a driver of the given type and open ``path`` with it.

    Returns None if the device could not be opened. Raises ValueError for
    an unknown or unsupported driver type.
    """
    if isinstance(driver_type, str):
        driver_type = driver_type_from_name(driver_type)
    driver_type = DriverType(driver_type)
    factory = _FACTORIES.get(driver_type)
    if factory is None:
        raise ValueError(f"unsupported CAN driver type {driver_type.name}")
    driver = factory()
    if driver.open(path):
        logger.info("opened CAN device: %s", path)
        return driver
    logger.warning("failed to open CAN device: %s", path)
    return None