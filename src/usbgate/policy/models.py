"""
Policy data models.

Defines identity rules, authorization requests and decisions, bulk-load
reports and the per-decision audit record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# Default collection bounds
MAX_RULES = 10
MAX_SERIALS = 10

MAX_ID = 0xFFFF


def _check_id(name: str, value: Any) -> None:
    """Reject anything that is not a 16-bit unsigned integer."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an int, got {type(value).__name__}")
    if not 0 <= value <= MAX_ID:
        raise ValueError(f"{name} out of 16-bit range: {value:#x}")


def format_id(value: int) -> str:
    """Render a vendor/product id as 4-digit lowercase hex."""
    return f"{value:04x}"


@dataclass(frozen=True)
class IdentityRule:
    """
    Allow-list entry for one device model.

    Matches a device when both vendor and product ids are equal.
    """

    vendor_id: int
    product_id: int

    def __post_init__(self) -> None:
        _check_id("vendor_id", self.vendor_id)
        _check_id("product_id", self.product_id)

    @property
    def vid_pid(self) -> str:
        """VID:PID in the usual lsusb notation."""
        return f"{format_id(self.vendor_id)}:{format_id(self.product_id)}"

    def matches(self, vendor_id: int, product_id: int) -> bool:
        """Check exact equality on both ids."""
        return self.vendor_id == vendor_id and self.product_id == product_id

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary."""
        return {
            "vendor_id": format_id(self.vendor_id),
            "product_id": format_id(self.product_id),
        }


class Verdict(Enum):
    """Outcome of an authorization."""

    ALLOW = "allow"
    DENY = "deny"

    def __str__(self) -> str:
        return self.value


class DenyReason(Enum):
    """Why a device was denied."""

    IDENTITY_NOT_ALLOWED = "identity_not_allowed"
    SERIAL_BLOCKED = "serial_blocked"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class AuthorizationRequest:
    """Identity and serial observed for one attach event."""

    vendor_id: int
    product_id: int
    serial: str | None = None

    def __post_init__(self) -> None:
        _check_id("vendor_id", self.vendor_id)
        _check_id("product_id", self.product_id)

    @property
    def vid_pid(self) -> str:
        return f"{format_id(self.vendor_id)}:{format_id(self.product_id)}"


@dataclass(frozen=True)
class AuthorizationDecision:
    """
    Result of authorizing one device.

    A denied decision always carries its reason; an allowed one never does.
    """

    verdict: Verdict
    reason: DenyReason | None = None

    @classmethod
    def allow(cls) -> AuthorizationDecision:
        return cls(Verdict.ALLOW)

    @classmethod
    def deny(cls, reason: DenyReason) -> AuthorizationDecision:
        return cls(Verdict.DENY, reason)

    @property
    def allowed(self) -> bool:
        """Check if the device may be used."""
        return self.verdict == Verdict.ALLOW

    @property
    def denied(self) -> bool:
        """Check if the device must be refused."""
        return self.verdict == Verdict.DENY

    def __str__(self) -> str:
        if self.reason is None:
            return str(self.verdict)
        return f"{self.verdict} ({self.reason})"


class SkipReason(Enum):
    """Why a policy-source line did not produce a rule."""

    BLANK = "blank"
    COMMENT = "comment"
    MALFORMED = "malformed"
    CAPACITY_EXCEEDED = "capacity_exceeded"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SkippedLine:
    """A policy-source line that was not loaded."""

    line_number: int
    text: str
    reason: SkipReason
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "line_number": self.line_number,
            "text": self.text,
            "reason": self.reason.value,
            "detail": self.detail,
        }


@dataclass
class LoadReport:
    """
    Outcome of a bulk load.

    Every input line ends up either in ``loaded`` (as the rule it produced)
    or in ``skipped`` with its reason.
    """

    loaded: list[IdentityRule] = field(default_factory=list)
    skipped: list[SkippedLine] = field(default_factory=list)

    @property
    def loaded_count(self) -> int:
        return len(self.loaded)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    def count(self, reason: SkipReason) -> int:
        """Count skipped lines with the given reason."""
        return sum(1 for line in self.skipped if line.reason == reason)

    @property
    def problems(self) -> list[SkippedLine]:
        """Skipped lines worth an operator's attention (not blank/comment)."""
        return [
            line for line in self.skipped
            if line.reason in (SkipReason.MALFORMED, SkipReason.CAPACITY_EXCEEDED)
        ]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "loaded": self.loaded_count,
            "skipped": self.skipped_count,
            "by_reason": {reason.value: self.count(reason) for reason in SkipReason},
            "rules": [rule.to_dict() for rule in self.loaded],
            "problems": [line.to_dict() for line in self.problems],
        }


@dataclass(frozen=True)
class AuditRecord:
    """Structured record emitted once per authorization decision."""

    vendor_id: int
    product_id: int
    serial: str | None
    decision: Verdict
    reason: DenyReason | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    identified: bool = True

    @classmethod
    def from_decision(
        cls,
        request: AuthorizationRequest,
        decision: AuthorizationDecision,
    ) -> AuditRecord:
        return cls(
            vendor_id=request.vendor_id,
            product_id=request.product_id,
            serial=request.serial,
            decision=decision.verdict,
            reason=decision.reason,
        )

    @classmethod
    def unidentified(cls) -> AuditRecord:
        """Record for a device whose vendor/product ids could not be read."""
        return cls(
            vendor_id=0,
            product_id=0,
            serial=None,
            decision=Verdict.DENY,
            reason=DenyReason.IDENTITY_NOT_ALLOWED,
            identified=False,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/API."""
        return {
            "vendor_id": format_id(self.vendor_id),
            "product_id": format_id(self.product_id),
            "serial": self.serial,
            "decision": self.decision.value,
            "reason": self.reason.value if self.reason else None,
            "timestamp": self.timestamp.isoformat(),
            "identified": self.identified,
        }
