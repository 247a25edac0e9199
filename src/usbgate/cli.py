"""
USB Gate Command Line Interface.

Provides commands for managing USB Gate:
- start: Start the daemon
- check: Dry-run a rules file and report every skipped line
- rules: Show the rules and blocked serials the daemon would load
- test: Authorize a hypothetical device against the configured policy
- decisions: Query the audit log
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from usbgate import __version__
from usbgate.audit.database import AuditDatabase
from usbgate.config import GateConfig, load_config, validate_config
from usbgate.daemon import build_store
from usbgate.policy.engine import AuthorizationEngine
from usbgate.policy.errors import MalformedLine
from usbgate.policy.models import AuthorizationRequest, SkipReason
from usbgate.policy.parser import parse_identity, read_policy_source
from usbgate.policy.store import PolicyStore


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="usb-gate",
        description="Attach-time USB device authorization",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    start_parser = subparsers.add_parser("start", help="Start the daemon")
    start_parser.add_argument("-v", "--verbose", action="store_true")
    start_parser.set_defaults(func=cmd_start)

    check_parser = subparsers.add_parser("check", help="Validate a rules file")
    check_parser.add_argument(
        "rules_file",
        nargs="?",
        help="Rules file (default: from configuration)",
    )
    check_parser.set_defaults(func=cmd_check)

    rules_parser = subparsers.add_parser("rules", help="Show effective policy")
    rules_parser.add_argument(
        "-f", "--file",
        metavar="RULES_FILE",
        help="Rules file (default: from configuration)",
    )
    rules_parser.set_defaults(func=cmd_rules)

    test_parser = subparsers.add_parser("test", help="Test policy against a device")
    test_parser.add_argument("vid", help="Vendor ID (1-4 hex digits)")
    test_parser.add_argument("pid", help="Product ID (1-4 hex digits)")
    test_parser.add_argument("--serial", help="Device serial number")
    test_parser.set_defaults(func=cmd_test)

    decisions_parser = subparsers.add_parser("decisions", help="Query the audit log")
    decisions_parser.add_argument(
        "-n", "--limit",
        type=int,
        default=20,
        help="Number of decisions to show",
    )
    decisions_parser.add_argument(
        "--denied",
        action="store_true",
        help="Only show denied devices",
    )
    decisions_parser.set_defaults(func=cmd_decisions)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except InvalidConfig as e:
        for error in e.errors:
            print(f"Error: config: {error}", file=sys.stderr)
        return 1


def output(data: Any, args: argparse.Namespace) -> None:
    """Output data in requested format."""
    if getattr(args, "json", False):
        print(json.dumps(data, indent=2, default=str))
    elif isinstance(data, dict):
        for key, value in data.items():
            print(f"{key}: {value}")
    else:
        print(data)


class InvalidConfig(Exception):
    """The configuration file loaded but failed validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("; ".join(errors))


def _config(args: argparse.Namespace) -> GateConfig:
    config = load_config(args.config)
    errors = validate_config(config)
    if errors:
        raise InvalidConfig(errors)
    return config


def cmd_start(args: argparse.Namespace) -> int:
    """Start the daemon."""
    from usbgate.daemon import main as daemon_main

    daemon_args = []
    if args.config:
        daemon_args.extend(["-c", args.config])
    if args.verbose:
        daemon_args.append("-v")

    return daemon_main(daemon_args)


def cmd_check(args: argparse.Namespace) -> int:
    """Dry-run a rules file through a fresh store."""
    config = _config(args)
    path = Path(args.rules_file or config.policy.rules_file)

    lines = read_policy_source(path)
    store = PolicyStore(max_rules=config.policy.max_rules)
    report = store.bulk_load(lines)

    if getattr(args, "json", False):
        output(report.to_dict(), args)
    else:
        print(f"Rules file: {path}")
        print("=" * 50)
        print(f"Loaded:     {report.loaded_count} (limit {store.max_rules})")
        print(f"Skipped:    {report.skipped_count}")
        for reason in SkipReason:
            print(f"  {reason.value:<18} {report.count(reason)}")
        if report.problems:
            print()
            print("Problems:")
            for line in report.problems:
                detail = f" ({line.detail})" if line.detail else ""
                print(f"  line {line.line_number}: {line.text!r} {line.reason.value}{detail}")

    return 1 if report.problems else 0


def cmd_rules(args: argparse.Namespace) -> int:
    """Show the rules and serials the daemon would start with."""
    config = _config(args)
    if args.file:
        config.policy.rules_file = args.file
    store = build_store(config)
    rules, serials = store.snapshot()

    if getattr(args, "json", False):
        output({
            "rules": [rule.to_dict() for rule in rules],
            "blocked_serials": list(serials),
        }, args)
    else:
        print(f"Allowed devices ({len(rules)}/{store.max_rules})")
        print("=" * 40)
        for i, rule in enumerate(rules, 1):
            print(f"{i:>3}. {rule.vid_pid}")
        print()
        print(f"Blocked serials ({len(serials)}/{store.max_serials})")
        print("=" * 40)
        for serial in serials:
            print(f"     {serial}")

    return 0


def cmd_test(args: argparse.Namespace) -> int:
    """Authorize a hypothetical device without touching the audit log."""
    config = _config(args)

    try:
        identity = parse_identity(args.vid, args.pid)
    except MalformedLine as e:
        print(f"Invalid device id {e.line!r}: {e.reason}", file=sys.stderr)
        return 2

    engine = AuthorizationEngine(build_store(config))
    request = AuthorizationRequest(identity.vendor_id, identity.product_id, args.serial)
    decision = engine.decide(request)

    result = {
        "device": request.vid_pid,
        "serial": request.serial,
        "decision": decision.verdict.value,
        "reason": decision.reason.value if decision.reason else None,
    }

    if getattr(args, "json", False):
        output(result, args)
    else:
        print(f"Testing policy for {request.vid_pid}")
        print("=" * 40)
        print(f"Decision: {decision.verdict.value.upper()}")
        if decision.reason:
            print(f"Reason:   {decision.reason.value}")

    return 0 if decision.allowed else 3


def cmd_decisions(args: argparse.Namespace) -> int:
    """Query the audit log."""
    config = _config(args)
    db_path = Path(config.audit.path)
    if not db_path.exists():
        print(f"Audit database not found: {db_path}")
        return 1

    db = AuditDatabase(db_path, wal_mode=config.audit.wal_mode)
    try:
        filters = {"decision": "deny"} if args.denied else {}
        rows, total = db.list_decisions(filters=filters, limit=args.limit)

        if getattr(args, "json", False):
            output([row.to_dict() for row in rows], args)
        else:
            print(f"Decisions ({len(rows)} of {total})")
            print("=" * 78)
            if not rows:
                print("No decisions recorded.")
            else:
                print(f"{'Time':<20} {'VID:PID':<10} {'Serial':<20} {'Decision':<9} {'Reason':<20}")
                print("-" * 78)
                for row in rows:
                    print(
                        f"{row.timestamp.strftime('%Y-%m-%d %H:%M:%S'):<20} "
                        f"{row.vendor_id}:{row.product_id:<5} "
                        f"{(row.serial or '-')[:20]:<20} "
                        f"{row.decision:<9} "
                        f"{row.reason or '-':<20}"
                    )
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
