"""
USB Event Interceptor.

Supplies attach/detach events and device descriptors, and applies
authorization decisions through sysfs.
"""

from usbgate.interceptor.descriptors import (
    DeviceDescriptor,
    create_test_descriptor,
    extract_device_info,
)
from usbgate.interceptor.linux import (
    DeviceAuthorizer,
    EventType,
    USBEnumerator,
    USBEvent,
    USBInterceptor,
    USBMonitor,
    get_platform_interceptor,
)

__all__ = [
    # Descriptors
    "DeviceDescriptor",
    "create_test_descriptor",
    "extract_device_info",
    # Linux interceptor
    "DeviceAuthorizer",
    "EventType",
    "USBEnumerator",
    "USBEvent",
    "USBInterceptor",
    "USBMonitor",
    "get_platform_interceptor",
]
