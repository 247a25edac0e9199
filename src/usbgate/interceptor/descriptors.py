"""
USB device descriptor extraction.

Reads the identity and string descriptors needed for authorization.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


logger = logging.getLogger(__name__)

MASS_STORAGE_CLASS = 0x08


@dataclass
class DeviceDescriptor:
    """USB device identity as seen at attach time."""

    vendor_id: int
    product_id: int
    device_class: int = 0
    manufacturer: str | None = None
    product: str | None = None
    serial: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def vid_pid(self) -> str:
        return f"{self.vendor_id:04x}:{self.product_id:04x}"

    @property
    def is_mass_storage(self) -> bool:
        return self.device_class == MASS_STORAGE_CLASS

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "vendor_id": f"{self.vendor_id:04x}",
            "product_id": f"{self.product_id:04x}",
            "device_class": self.device_class,
            "manufacturer": self.manufacturer,
            "product": self.product,
            "serial": self.serial,
            "timestamp": self.timestamp.isoformat(),
        }


def _read_string(dev: Any, index: int) -> str | None:
    """Read a string descriptor, returning None if absent or unreadable."""
    import usb.core
    import usb.util

    if not index:
        return None
    try:
        value = usb.util.get_string(dev, index)
    except (usb.core.USBError, ValueError, NotImplementedError) as e:
        logger.debug("Could not read string descriptor %d: %s", index, e)
        return None
    return value or None


def extract_device_info(dev: Any) -> DeviceDescriptor:
    """
    Extract device information from a PyUSB device object.

    Unreadable string descriptors (common while a device is still
    deauthorized) become None rather than failing the whole read.

    Args:
        dev: usb.core.Device object

    Returns:
        DeviceDescriptor with parsed information
    """
    return DeviceDescriptor(
        vendor_id=dev.idVendor,
        product_id=dev.idProduct,
        device_class=dev.bDeviceClass,
        manufacturer=_read_string(dev, dev.iManufacturer),
        product=_read_string(dev, dev.iProduct),
        serial=_read_string(dev, dev.iSerialNumber),
    )


def create_test_descriptor(
    vendor_id: int = 0x046D,
    product_id: int = 0xC077,
    serial: str | None = None,
    device_class: int = 0,
    manufacturer: str | None = "Test Manufacturer",
    product: str | None = "Test Device",
) -> DeviceDescriptor:
    """Build a descriptor without hardware, for tests and dry runs."""
    return DeviceDescriptor(
        vendor_id=vendor_id,
        product_id=product_id,
        device_class=device_class,
        manufacturer=manufacturer,
        product=product,
        serial=serial,
    )
