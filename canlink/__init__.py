"""CAN bus drivers for SocketCAN, EasySYNC serial adapters and network gateways, with command-line tools."""

__version__ = "1.0.1"