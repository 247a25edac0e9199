"""
USB Gate - attach-time USB device authorization.

Authorizes or rejects USB peripherals as they attach, based on an
administrator-configured allow-list of vendor/product identity pairs
and a set of blocked serial numbers.
"""

__version__ = "0.1.0"
__author__ = "USB Gate Contributors"

from usbgate.config import GateConfig, load_config

__all__ = ["GateConfig", "load_config", "__version__"]
