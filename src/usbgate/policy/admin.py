"""
Administrative rule submission.

Applies batches of raw rule lines or serials to a PolicyStore. Each entry
is handled on its own: one bad entry never rejects the others, and every
entry gets its own outcome so an operator sees exactly what happened.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from usbgate.policy.errors import MalformedLine, PolicyError
from usbgate.policy.parser import parse_rule_line
from usbgate.policy.store import PolicyStore


logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    """Outcome of one submitted line."""

    text: str
    accepted: bool
    value: str | None = None
    error: str | None = None
    ignored: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "accepted": self.accepted,
            "value": self.value,
            "error": self.error,
            "ignored": self.ignored,
        }


@dataclass
class SubmissionReport:
    """Outcome of a batch submission."""

    results: list[SubmissionResult] = field(default_factory=list)

    @property
    def accepted(self) -> int:
        return sum(1 for r in self.results if r.accepted)

    @property
    def rejected(self) -> int:
        return sum(1 for r in self.results if not r.accepted and not r.ignored)

    def to_dict(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "rejected": self.rejected,
            "results": [r.to_dict() for r in self.results],
        }


def submit_rule_lines(store: PolicyStore, lines: Iterable[str]) -> SubmissionReport:
    """
    Parse and add rule lines one by one.

    Blank and comment lines are ignored. Malformed lines and lines that
    hit the capacity bound are rejected individually.

    Args:
        store: Target policy store
        lines: Raw ``"VID PID"`` lines

    Returns:
        SubmissionReport with one result per line
    """
    report = SubmissionReport()

    for line in lines:
        text = line.strip()
        try:
            rule = parse_rule_line(text)
        except MalformedLine as e:
            logger.warning("Rejected rule %r: %s", text, e.reason)
            report.results.append(SubmissionResult(text, False, error=e.reason))
            continue

        if rule is None:
            report.results.append(SubmissionResult(text, False, ignored=True))
            continue

        try:
            store.add_rule(rule.vendor_id, rule.product_id)
        except PolicyError as e:
            logger.warning("Rejected rule %s: %s", rule.vid_pid, e)
            report.results.append(SubmissionResult(text, False, error=str(e)))
        else:
            report.results.append(SubmissionResult(text, True, value=rule.vid_pid))

    return report


def submit_serials(store: PolicyStore, serials: Iterable[str]) -> SubmissionReport:
    """
    Add blocked serials one by one.

    Args:
        store: Target policy store
        serials: Raw serial strings

    Returns:
        SubmissionReport with one result per serial
    """
    report = SubmissionReport()

    for serial in serials:
        try:
            value = store.add_blocked_serial(serial)
        except PolicyError as e:
            logger.warning("Rejected serial %r: %s", serial, e)
            report.results.append(SubmissionResult(serial, False, error=str(e)))
        else:
            report.results.append(SubmissionResult(serial, True, value=value))

    return report
