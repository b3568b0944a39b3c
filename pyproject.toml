[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "canlink"
version = "1.0.1"
description = "Read and write CAN bus frames through SocketCAN, EasySYNC serial adapters and network gateways"
requires-python = ">=3.10"
dependencies = [
    "pyserial",
]
keywords = ["can", "canbus", "socketcan", "easysync", "slcan", "embedded", "fieldbus"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems :: Controller Area Network (CAN)",
    "Topic :: System :: Hardware",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
canlink-monitor = "canlink.monitor:main"
canlink-send = "canlink.send:main"
canlink-reset = "canlink.reset:main"
canlink-easysync = "canlink.easysync_tool:main"

[tool.hatch.build.targets.wheel]
packages = ["canlink"]

[tool.pytest.ini_options]
addopts = "-ra"
