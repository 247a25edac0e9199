"""
Policy Store.

Holds the identity allow-list and the blocked-serial set behind a single
coarse lock. Every reader and writer takes the same lock for the whole
operation, so a reader sees the store as it was at one instant and never a
half-applied write. Nothing is logged or called back while the lock is held.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable

from usbgate.policy.errors import CapacityExceeded, EmptyInput, InvalidSerial
from usbgate.policy.models import (
    MAX_RULES,
    MAX_SERIALS,
    IdentityRule,
    LoadReport,
    SkippedLine,
    SkipReason,
)
from usbgate.policy.parser import classify_lines


logger = logging.getLogger(__name__)


class PolicyStore:
    """
    Bounded, thread-safe rule store.

    Rules are kept in insertion order and may repeat. Serials form an
    insertion-ordered set. Neither collection ever grows past its bound.
    """

    def __init__(
        self,
        max_rules: int = MAX_RULES,
        max_serials: int = MAX_SERIALS,
    ) -> None:
        """
        Initialize an empty store.

        Args:
            max_rules: Maximum number of identity rules
            max_serials: Maximum number of blocked serials
        """
        if max_rules < 1 or max_serials < 1:
            raise ValueError("Store bounds must be at least 1")

        self._max_rules = max_rules
        self._max_serials = max_serials
        self._rules: list[IdentityRule] = []
        self._serials: dict[str, None] = {}
        self._lock = threading.Lock()

    @property
    def max_rules(self) -> int:
        return self._max_rules

    @property
    def max_serials(self) -> int:
        return self._max_serials

    # =========================================================================
    # Mutation
    # =========================================================================

    def bulk_load(self, lines: Iterable[str]) -> LoadReport:
        """
        Load rules from policy-source lines.

        Bad lines are skipped and reported, never raised. Rules that do not
        fit are skipped with a capacity reason. All accepted rules are
        appended in one locked step.

        Args:
            lines: Policy source lines, in order

        Returns:
            LoadReport describing every line
        """
        parsed, skipped = classify_lines(lines)
        report = LoadReport(skipped=skipped)

        with self._lock:
            room = self._max_rules - len(self._rules)
            accepted = parsed[:max(room, 0)]
            rejected = parsed[len(accepted):]
            self._rules.extend(rule for _, _, rule in accepted)

        report.loaded = [rule for _, _, rule in accepted]
        report.skipped.extend(
            SkippedLine(
                number,
                text,
                SkipReason.CAPACITY_EXCEEDED,
                f"rule limit {self._max_rules} reached",
            )
            for number, text, _ in rejected
        )
        report.skipped.sort(key=lambda line: line.line_number)

        for rule in report.loaded:
            logger.info("Loaded rule %s", rule.vid_pid)
        for line in report.problems:
            logger.warning(
                "Skipped rule line %d (%s): %r %s",
                line.line_number, line.reason.value, line.text, line.detail,
            )
        return report

    def add_rule(self, vendor_id: int, product_id: int) -> IdentityRule:
        """
        Append one identity rule.

        Duplicates are accepted.

        Args:
            vendor_id: 16-bit vendor id
            product_id: 16-bit product id

        Returns:
            The stored rule

        Raises:
            CapacityExceeded: If the rule list is full
            ValueError: If an id is outside 0..0xFFFF
        """
        rule = IdentityRule(vendor_id, product_id)
        with self._lock:
            full = len(self._rules) >= self._max_rules
            if not full:
                self._rules.append(rule)

        if full:
            raise CapacityExceeded("rules", self._max_rules)
        logger.info("Added rule %s", rule.vid_pid)
        return rule

    def add_blocked_serial(self, serial: str) -> str:
        """
        Block a serial number.

        Surrounding whitespace is trimmed before storing. Re-adding a
        serial that is already blocked succeeds without using capacity.

        Args:
            serial: Serial text

        Returns:
            The stored (trimmed) serial

        Raises:
            EmptyInput: If the serial is blank
            InvalidSerial: If the serial is not a string
            CapacityExceeded: If the serial set is full
        """
        if serial is not None and not isinstance(serial, str):
            raise InvalidSerial(serial)
        value = (serial or "").strip()
        if not value:
            raise EmptyInput("serial")

        with self._lock:
            present = value in self._serials
            full = not present and len(self._serials) >= self._max_serials
            if not present and not full:
                self._serials[value] = None

        if full:
            raise CapacityExceeded("blocked serials", self._max_serials)
        if not present:
            logger.info("Blocked serial %r", value)
        return value

    # =========================================================================
    # Queries
    # =========================================================================

    def list_rules(self) -> tuple[IdentityRule, ...]:
        """Snapshot of the identity rules, in insertion order."""
        with self._lock:
            return tuple(self._rules)

    def list_blocked_serials(self) -> tuple[str, ...]:
        """Snapshot of the blocked serials, in insertion order."""
        with self._lock:
            return tuple(self._serials)

    def snapshot(self) -> tuple[tuple[IdentityRule, ...], tuple[str, ...]]:
        """Both collections as seen at the same instant."""
        with self._lock:
            return tuple(self._rules), tuple(self._serials)

    def matches_identity(self, vendor_id: int, product_id: int) -> bool:
        """Check if any rule allows this vendor/product pair."""
        with self._lock:
            return any(rule.matches(vendor_id, product_id) for rule in self._rules)

    def is_serial_blocked(self, serial: str | None) -> bool:
        """
        Check if a serial is blocked.

        A missing or empty serial is never blocked.
        """
        if not serial:
            return False
        with self._lock:
            return serial in self._serials

    @property
    def rule_count(self) -> int:
        with self._lock:
            return len(self._rules)

    @property
    def serial_count(self) -> int:
        with self._lock:
            return len(self._serials)

    def get_statistics(self) -> dict[str, int]:
        """Get store occupancy."""
        rules, serials = self.snapshot()
        return {
            "rule_count": len(rules),
            "max_rules": self._max_rules,
            "serial_count": len(serials),
            "max_serials": self._max_serials,
        }
