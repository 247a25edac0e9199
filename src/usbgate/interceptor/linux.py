"""
Attach-event source for Linux.

Watches udev for USB attach/detach, reads the attaching device's identity
through PyUSB (falling back to udev properties), and applies verdicts by
writing the sysfs ``authorized`` attribute.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator

import usb.core

from usbgate.interceptor.descriptors import DeviceDescriptor, extract_device_info


logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5


class EventType(Enum):
    """Kinds of udev events the gate reacts to."""

    ADD = "add"
    REMOVE = "remove"


@dataclass
class USBEvent:
    """One attach or detach, with the identity read at attach time."""

    event_type: EventType
    bus: int
    address: int
    sys_path: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    descriptor: DeviceDescriptor | None = None

    @property
    def device_id(self) -> str:
        """Bus and address, as ``bus:address``."""
        return f"{self.bus}:{self.address}"


def _parse_hex(value: str | None) -> int | None:
    """Parse a udev hex property such as ID_VENDOR_ID."""
    if not value:
        return None
    try:
        parsed = int(value, 16)
    except ValueError:
        return None
    return parsed if 0 <= parsed <= 0xFFFF else None


def _read_int(path: Path) -> int | None:
    """Read a sysfs attribute holding a decimal integer."""
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return None


class USBEnumerator:
    """Looks up descriptors through PyUSB by bus and address."""

    def find_device(self, bus: int, address: int) -> DeviceDescriptor | None:
        """
        Read the descriptor of the device at ``bus:address``.

        Returns:
            DeviceDescriptor, or None when the device is gone, unreadable
            or no libusb backend is installed.
        """
        try:
            dev = usb.core.find(bus=bus, address=address)
        except usb.core.NoBackendError:
            logger.debug("No libusb backend, relying on udev properties")
            return None
        if dev is None:
            return None

        try:
            return extract_device_info(dev)
        except usb.core.USBError as e:
            logger.warning("Descriptor read failed for %d:%d: %s", bus, address, e)
            return None


class USBMonitor:
    """udev netlink monitor for ``usb_device`` attach/detach events."""

    def __init__(self, enumerator: USBEnumerator | None = None) -> None:
        self._context = None
        self._monitor = None
        self._running = False
        self._enumerator = enumerator or USBEnumerator()

    def _ensure_monitor(self) -> None:
        if self._monitor is not None:
            return
        import pyudev

        self._context = pyudev.Context()
        self._monitor = pyudev.Monitor.from_netlink(self._context)
        self._monitor.filter_by(subsystem="usb", device_type="usb_device")

    def parse_udev_event(self, device: Any) -> USBEvent | None:
        """
        Turn a pyudev device into a USBEvent.

        On attach the identity comes from PyUSB when readable, otherwise
        from the udev ``ID_VENDOR_ID``/``ID_MODEL_ID`` properties. A serial
        missing from PyUSB is taken from ``ID_SERIAL_SHORT``.

        Args:
            device: pyudev.Device

        Returns:
            USBEvent, or None for other actions or devices without a
            bus/device number.
        """
        if device.action not in ("add", "remove"):
            return None

        busnum = device.get("BUSNUM")
        devnum = device.get("DEVNUM")
        if busnum is None or devnum is None:
            return None

        event = USBEvent(
            event_type=EventType(device.action),
            bus=int(busnum),
            address=int(devnum),
            sys_path=device.sys_path,
        )

        udev_vendor = _parse_hex(device.get("ID_VENDOR_ID"))
        udev_product = _parse_hex(device.get("ID_MODEL_ID"))
        udev_serial = device.get("ID_SERIAL_SHORT") or None

        if event.event_type == EventType.ADD:
            event.descriptor = self._enumerator.find_device(event.bus, event.address)

        if event.descriptor is not None:
            if event.descriptor.serial is None:
                event.descriptor.serial = udev_serial
        elif udev_vendor is not None and udev_product is not None:
            event.descriptor = DeviceDescriptor(
                vendor_id=udev_vendor,
                product_id=udev_product,
                serial=udev_serial,
            )

        return event

    async def monitor_events(self) -> AsyncIterator[USBEvent]:
        """
        Yield attach/detach events until stopped.

        The blocking udev poll runs in a worker thread with a short timeout
        so ``stop()`` takes effect promptly.
        """
        self._ensure_monitor()
        self._running = True
        self._monitor.start()
        logger.info("Watching udev for USB devices")

        try:
            while self._running:
                device = await asyncio.to_thread(self._monitor.poll, POLL_INTERVAL)
                if device is None:
                    continue
                try:
                    event = self.parse_udev_event(device)
                except (ValueError, KeyError) as e:
                    logger.error("Unparseable udev event: %s", e)
                    continue
                if event is None:
                    continue
                logger.debug("udev %s %s", event.event_type.value, event.device_id)
                yield event
        finally:
            self._running = False
            logger.info("Stopped watching udev")

    def stop(self) -> None:
        self._running = False


class DeviceAuthorizer:
    """Grants or revokes devices through the sysfs ``authorized`` attribute."""

    SYSFS_USB_PATH = Path("/sys/bus/usb/devices")

    def __init__(self, sysfs_root: Path | None = None) -> None:
        self.sysfs_root = sysfs_root or self.SYSFS_USB_PATH
        if hasattr(os, "geteuid") and os.geteuid() != 0:
            logger.warning("Not running as root; sysfs authorization writes will fail")

    def find_device_path(self, bus: int, address: int) -> Path | None:
        """
        Locate a device directory under the sysfs root by bus and address.

        Root hubs (``usbN``) are never matched.
        """
        if not self.sysfs_root.exists():
            return None
        for entry in self.sysfs_root.iterdir():
            if entry.name.startswith("usb"):
                continue
            if (
                _read_int(entry / "busnum") == bus
                and _read_int(entry / "devnum") == address
            ):
                return entry
        return None

    def _resolve(self, event: USBEvent) -> Path | None:
        """Prefer the udev sys_path, fall back to a bus/address search."""
        if event.sys_path:
            path = Path(event.sys_path)
            if path.exists():
                return path
        return self.find_device_path(event.bus, event.address)

    def set_authorized(self, event: USBEvent, authorized: bool) -> bool:
        """
        Write ``1`` or ``0`` to the device's ``authorized`` attribute.

        Returns:
            Whether the write succeeded
        """
        device_path = self._resolve(event)
        if device_path is None:
            logger.error("No sysfs entry for device %s", event.device_id)
            return False

        value = "1" if authorized else "0"
        try:
            (device_path / "authorized").write_text(value)
        except OSError as e:
            logger.error("Writing authorized=%s for %s failed: %s", value, event.device_id, e)
            return False

        logger.debug("Device %s authorized=%s", event.device_id, value)
        return True


class USBInterceptor:
    """
    Attach-event source plus verdict application.

    With ``deauthorize_on_attach`` set, every attached device is revoked
    before its event is handed out, so nothing binds to a driver until the
    engine has allowed it.
    """

    def __init__(
        self,
        deauthorize_on_attach: bool = True,
        monitor: USBMonitor | None = None,
        authorizer: DeviceAuthorizer | None = None,
    ) -> None:
        """
        Args:
            deauthorize_on_attach: Hold devices deauthorized until decided
            monitor: Event monitor (default: udev monitor)
            authorizer: sysfs authorizer
        """
        self.monitor = monitor or USBMonitor()
        self.authorizer = authorizer or DeviceAuthorizer()
        self.deauthorize_on_attach = deauthorize_on_attach

    async def events(self) -> AsyncIterator[USBEvent]:
        """Yield events, holding each attached device first if configured."""
        async for event in self.monitor.monitor_events():
            if self.deauthorize_on_attach and event.event_type == EventType.ADD:
                self.authorizer.set_authorized(event, False)
                logger.debug("Holding device %s pending decision", event.device_id)
            yield event

    def allow_device(self, event: USBEvent) -> bool:
        """Apply an allow verdict."""
        return self.authorizer.set_authorized(event, True)

    def block_device(self, event: USBEvent) -> bool:
        """Apply a deny verdict."""
        return self.authorizer.set_authorized(event, False)

    def stop(self) -> None:
        self.monitor.stop()


def get_platform_interceptor(deauthorize_on_attach: bool = True) -> USBInterceptor:
    """
    Build the interceptor for this host.

    Raises:
        RuntimeError: On anything but Linux, which is the only platform
            with a sysfs ``authorized`` attribute
    """
    import platform

    system = platform.system().lower()
    if system != "linux":
        raise RuntimeError(f"USB authorization is not supported on {system}")
    return USBInterceptor(deauthorize_on_attach=deauthorize_on_attach)
