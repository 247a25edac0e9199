"""
Policy error taxonomy.

None of these are fatal: a malformed line is skipped, a full collection
rejects the insert, and a blank serial is refused. The store stays usable
after any of them.
"""

from __future__ import annotations


class PolicyError(Exception):
    """Base class for recoverable policy errors."""

    pass


class MalformedLine(PolicyError):
    """A policy line does not match the rule grammar."""

    def __init__(self, line: str, reason: str) -> None:
        self.line = line
        self.reason = reason
        super().__init__(f"Malformed rule line {line!r}: {reason}")


class CapacityExceeded(PolicyError):
    """A store collection is already at its configured bound."""

    def __init__(self, collection: str, limit: int) -> None:
        self.collection = collection
        self.limit = limit
        super().__init__(f"Capacity exceeded for {collection} (limit {limit})")


class EmptyInput(PolicyError):
    """A blocked serial was submitted with no content."""

    def __init__(self, what: str = "serial") -> None:
        self.what = what
        super().__init__(f"Empty {what} rejected")


class InvalidSerial(PolicyError):
    """A blocked serial was submitted as something other than text."""

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"Serial must be text, got {type(value).__name__} {value!r}")
