"""
Authorization Engine.

Turns one attach event into one allow/deny decision by querying the
policy store. Identity is the primary gate; a blocked serial is a
secondary veto on devices that pass it.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable

from usbgate.policy.models import (
    AuditRecord,
    AuthorizationDecision,
    AuthorizationRequest,
    DenyReason,
    Verdict,
)
from usbgate.policy.store import PolicyStore

if TYPE_CHECKING:
    from usbgate.interceptor.descriptors import DeviceDescriptor


logger = logging.getLogger(__name__)

AuditSink = Callable[[AuditRecord], None]


def request_from_descriptor(descriptor: DeviceDescriptor) -> AuthorizationRequest:
    """
    Build an authorization request from a device descriptor.

    A blank serial string is treated as no serial at all.
    """
    serial = descriptor.serial
    if serial is not None and not serial.strip():
        serial = None
    return AuthorizationRequest(
        vendor_id=descriptor.vendor_id,
        product_id=descriptor.product_id,
        serial=serial,
    )


class AuthorizationEngine:
    """
    Stateless decision maker over a shared PolicyStore.

    Safe to call from many threads at once; the only shared state it
    touches besides the store is its own statistics counter.
    """

    def __init__(self, store: PolicyStore) -> None:
        """
        Initialize the engine.

        Args:
            store: Policy store to query
        """
        self.store = store
        self._sinks: list[AuditSink] = []

        # Statistics
        self._stats_lock = threading.Lock()
        self._evaluations = 0
        self._allowed = 0
        self._denied_identity = 0
        self._denied_serial = 0
        self._unidentified = 0

    def decide(self, request: AuthorizationRequest) -> AuthorizationDecision:
        """
        Compute the decision without auditing it.

        Args:
            request: Observed device identity and serial

        Returns:
            AuthorizationDecision
        """
        # The store only grows, so these two reads agree with the state
        # at the second one.
        if not self.store.matches_identity(request.vendor_id, request.product_id):
            return AuthorizationDecision.deny(DenyReason.IDENTITY_NOT_ALLOWED)

        if request.serial is not None and self.store.is_serial_blocked(request.serial):
            return AuthorizationDecision.deny(DenyReason.SERIAL_BLOCKED)

        return AuthorizationDecision.allow()

    def authorize(self, request: AuthorizationRequest) -> AuthorizationDecision:
        """
        Authorize one attach event and emit its audit record.

        Args:
            request: Observed device identity and serial

        Returns:
            AuthorizationDecision
        """
        decision = self.decide(request)
        self._update_stats(decision)

        if decision.allowed:
            logger.info(
                "Device %s authorized (serial=%s)",
                request.vid_pid, request.serial,
            )
        else:
            logger.warning(
                "Device %s denied: %s (serial=%s)",
                request.vid_pid, decision.reason, request.serial,
            )

        self._emit(AuditRecord.from_decision(request, decision))
        return decision

    def deny_unidentified(self, device: str = "?") -> AuthorizationDecision:
        """
        Deny an attach whose vendor/product ids could not be read.

        Nothing on the allow-list can match such a device. The denial is
        counted and audited like any other identity denial, with the
        record marked as unidentified.

        Args:
            device: Bus location used in the log message

        Returns:
            Deny decision with reason IDENTITY_NOT_ALLOWED
        """
        decision = AuthorizationDecision.deny(DenyReason.IDENTITY_NOT_ALLOWED)
        with self._stats_lock:
            self._evaluations += 1
            self._denied_identity += 1
            self._unidentified += 1

        logger.warning("Device at %s has no readable identity, denying", device)
        self._emit(AuditRecord.unidentified())
        return decision

    def add_audit_sink(self, sink: AuditSink) -> None:
        """Add a callable that receives every audit record."""
        self._sinks.append(sink)

    def remove_audit_sink(self, sink: AuditSink) -> None:
        """Remove an audit sink."""
        self._sinks.remove(sink)

    def _emit(self, record: AuditRecord) -> None:
        """Deliver a record to every sink; sink failures never alter the decision."""
        for sink in list(self._sinks):
            try:
                sink(record)
            except Exception as e:
                logger.error("Audit sink error: %s", e)

    def _update_stats(self, decision: AuthorizationDecision) -> None:
        """Update evaluation statistics."""
        with self._stats_lock:
            self._evaluations += 1
            if decision.verdict == Verdict.ALLOW:
                self._allowed += 1
            elif decision.reason == DenyReason.SERIAL_BLOCKED:
                self._denied_serial += 1
            else:
                self._denied_identity += 1

    def get_statistics(self) -> dict[str, int]:
        """Get evaluation statistics."""
        with self._stats_lock:
            stats = {
                "total_evaluations": self._evaluations,
                "allowed": self._allowed,
                "denied": self._denied_identity + self._denied_serial,
                "denied_identity": self._denied_identity,
                "denied_serial": self._denied_serial,
                "denied_unidentified": self._unidentified,
            }
        stats.update(self.store.get_statistics())
        return stats

    def reset_statistics(self) -> None:
        """Reset evaluation statistics."""
        with self._stats_lock:
            self._evaluations = 0
            self._allowed = 0
            self._denied_identity = 0
            self._denied_serial = 0
            self._unidentified = 0
