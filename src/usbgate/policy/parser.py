"""
Policy source parser.

Parses the line-oriented rules file format:

    # comment
    04d9 1702
    046d c077

Each rule line holds a vendor id and a product id as 1 to 4 hex digits,
separated by whitespace. Blank lines and lines starting with ``#`` (after
trimming) are ignored.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable

from usbgate.policy.errors import MalformedLine
from usbgate.policy.models import IdentityRule, SkippedLine, SkipReason


RULE_LINE = re.compile(r"^\s*([0-9A-Fa-f]{1,4})\s+([0-9A-Fa-f]{1,4})\s*$")
HEX_ID = re.compile(r"^[0-9A-Fa-f]{1,4}$")
HEX_DIGITS = re.compile(r"^[0-9A-Fa-f]+$")

COMMENT_PREFIX = "#"


def parse_hex_id(token: str, name: str = "id") -> int:
    """
    Parse one 16-bit hex id token.

    Args:
        token: 1 to 4 hex digits, no ``0x`` prefix
        name: Field name used in error messages

    Returns:
        Parsed integer value

    Raises:
        MalformedLine: If the token is not a valid 16-bit hex value
    """
    if HEX_ID.match(token):
        return int(token, 16)
    if HEX_DIGITS.match(token):
        if int(token, 16) > 0xFFFF:
            raise MalformedLine(token, f"{name} exceeds 16 bits")
        raise MalformedLine(token, f"{name} has more than 4 hex digits")
    raise MalformedLine(token, f"{name} is not a hexadecimal value")


def parse_identity(vendor: str, product: str) -> IdentityRule:
    """Parse separate vendor and product tokens into a rule."""
    return IdentityRule(
        vendor_id=parse_hex_id(vendor.strip(), "vendor id"),
        product_id=parse_hex_id(product.strip(), "product id"),
    )


def is_ignorable(line: str) -> bool:
    """Check if a line is blank or a comment."""
    stripped = line.strip()
    return not stripped or stripped.startswith(COMMENT_PREFIX)


def parse_rule_line(line: str) -> IdentityRule | None:
    """
    Parse a single policy line.

    Args:
        line: Raw text line (may include surrounding whitespace/newline)

    Returns:
        IdentityRule for a rule line, None for a blank or comment line

    Raises:
        MalformedLine: If the line is neither ignorable nor a valid rule
    """
    stripped = line.strip()
    if not stripped or stripped.startswith(COMMENT_PREFIX):
        return None

    match = RULE_LINE.match(stripped)
    if match:
        return IdentityRule(int(match.group(1), 16), int(match.group(2), 16))

    # Work out a useful reason for the audit trail
    tokens = stripped.split()
    if len(tokens) == 1:
        raise MalformedLine(stripped, "missing product id")
    if len(tokens) > 2:
        raise MalformedLine(stripped, f"expected 2 fields, got {len(tokens)}")
    try:
        parse_identity(tokens[0], tokens[1])
    except MalformedLine as e:
        raise MalformedLine(stripped, e.reason) from e
    raise MalformedLine(stripped, "does not match rule grammar")


def classify_lines(
    lines: Iterable[str],
) -> tuple[list[tuple[int, str, IdentityRule]], list[SkippedLine]]:
    """
    Split policy lines into parsed rules and skipped lines.

    Args:
        lines: Policy source lines, in order

    Returns:
        Tuple of (list of (line number, text, rule), list of skipped lines).
        Line numbers start at 1.
    """
    rules: list[tuple[int, str, IdentityRule]] = []
    skipped: list[SkippedLine] = []

    for number, raw in enumerate(lines, start=1):
        text = raw.strip()
        if not text:
            skipped.append(SkippedLine(number, text, SkipReason.BLANK))
            continue
        if text.startswith(COMMENT_PREFIX):
            skipped.append(SkippedLine(number, text, SkipReason.COMMENT))
            continue
        try:
            rule = parse_rule_line(text)
        except MalformedLine as e:
            skipped.append(SkippedLine(number, text, SkipReason.MALFORMED, e.reason))
            continue
        if rule is not None:
            rules.append((number, text, rule))

    return rules, skipped


def read_policy_source(path: str | Path) -> list[str]:
    """
    Read a rules file into lines.

    Undecodable bytes are replaced rather than raised, so a corrupt line
    is reported as malformed instead of aborting the load. Only line feeds
    (after universal-newline translation) end a line, so form feeds and
    Unicode separators inside a line keep line numbers physical.

    Args:
        path: Path to the rules file

    Returns:
        List of text lines

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Rules file not found: {path}")

    with open(path, encoding="utf-8", errors="replace") as f:
        text = f.read()

    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines
