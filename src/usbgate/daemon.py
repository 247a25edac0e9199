"""
USB Gate Daemon.

Main entry point that wires the policy store and authorization engine to
the USB interceptor, the audit database and (optionally) the admin API.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from usbgate import __version__
from usbgate.audit.database import AuditDatabase
from usbgate.config import GateConfig, load_config, validate_config
from usbgate.interceptor.linux import (
    EventType,
    USBEvent,
    USBInterceptor,
    get_platform_interceptor,
)
from usbgate.policy.admin import submit_serials
from usbgate.policy.engine import AuthorizationEngine, request_from_descriptor
from usbgate.policy.models import (
    AuthorizationDecision,
    LoadReport,
    SkipReason,
)
from usbgate.policy.parser import read_policy_source
from usbgate.policy.store import PolicyStore

logger = logging.getLogger("usbgate")


def setup_logging(level_name: str, log_file: str | None = None) -> None:
    """Configure root logging once for the process."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        filename=log_file,
    )


def load_rules_file(store: PolicyStore, path: str | Path) -> LoadReport | None:
    """
    Bulk-load a rules file into the store.

    A missing file is logged and leaves the store empty, so every device
    is denied until rules are added.

    Returns:
        LoadReport, or None if the file could not be read
    """
    try:
        lines = read_policy_source(path)
    except FileNotFoundError:
        logger.error("Rules file not found: %s, starting with no rules", path)
        return None
    except OSError as e:
        logger.error("Failed to read rules file %s: %s", path, e)
        return None

    report = store.bulk_load(lines)
    logger.info(
        "Loaded %d rules from %s (%d lines skipped, %d malformed, %d over capacity)",
        report.loaded_count, path, report.skipped_count,
        report.count(SkipReason.MALFORMED), report.count(SkipReason.CAPACITY_EXCEEDED),
    )
    return report


def build_store(config: GateConfig) -> PolicyStore:
    """Create a store from configuration and seed it with rules and serials."""
    store = PolicyStore(
        max_rules=config.policy.max_rules,
        max_serials=config.policy.max_serials,
    )
    load_rules_file(store, config.policy.rules_file)
    if config.policy.blocked_serials:
        report = submit_serials(store, config.policy.blocked_serials)
        for result in report.results:
            if not result.accepted:
                logger.warning(
                    "Configured serial %r not blocked: %s", result.text, result.error
                )
    return store


class GateDaemon:
    """
    Attach-time gate.

    Every attach event from the interceptor is authorized by the engine,
    the verdict is written to sysfs, and the engine's audit sink records it.
    """

    def __init__(
        self,
        config: GateConfig,
        interceptor: USBInterceptor | None = None,
    ) -> None:
        """
        Args:
            config: Validated configuration
            interceptor: Event source (default: the platform interceptor)
        """
        self.config = config

        self._store: PolicyStore | None = None
        self._engine: AuthorizationEngine | None = None
        self._db: AuditDatabase | None = None
        self._interceptor = interceptor
        self._api_server: Any = None

        self.running = False
        self._halted = asyncio.Event()
        self._stats: dict[str, Any] = {
            "attach_events": 0,
            "detach_events": 0,
            "devices_allowed": 0,
            "devices_denied": 0,
            "unidentified_devices": 0,
            "start_time": None,
        }

    @property
    def store(self) -> PolicyStore:
        if self._store is None:
            self._store = build_store(self.config)
        return self._store

    @property
    def db(self) -> AuditDatabase | None:
        """Decision log, or None when auditing is disabled."""
        if self._db is None and self.config.audit.enabled:
            self._db = AuditDatabase(
                self.config.audit.path,
                wal_mode=self.config.audit.wal_mode,
            )
        return self._db

    @property
    def engine(self) -> AuthorizationEngine:
        """Engine over the store, with the decision log attached as a sink."""
        if self._engine is None:
            self._engine = AuthorizationEngine(self.store)
            if self.db is not None:
                self._engine.add_audit_sink(self.db.sink("attach"))
        return self._engine

    @property
    def interceptor(self) -> USBInterceptor:
        if self._interceptor is None:
            self._interceptor = get_platform_interceptor(
                deauthorize_on_attach=self.config.interceptor.deauthorize_on_attach,
            )
        return self._interceptor

    async def start(self) -> None:
        """Load the policy and bring up the event source and admin API."""
        logger.info("USB Gate %s starting", __version__)
        self.running = True
        self._halted.clear()
        self._stats["start_time"] = datetime.now(timezone.utc)

        rules, serials = self.engine.store.snapshot()
        logger.info(
            "Policy ready: %d/%d rules, %d/%d blocked serials",
            len(rules), self.store.max_rules, len(serials), self.store.max_serials,
        )

        _ = self.interceptor
        if self.config.api.enabled:
            await self._start_api_server()

        logger.info("Gate armed, waiting for attach events")

    def _halt(self) -> None:
        self.running = False
        self._halted.set()
        if self._interceptor is not None:
            self._interceptor.stop()

    async def stop(self) -> None:
        """Stop the event source and API, then close the decision log."""
        self._halt()
        if self._api_server is not None:
            self._api_server.should_exit = True
        if self._db is not None:
            self._db.close()
        logger.info("USB Gate stopped")

    async def run(self) -> None:
        """Handle events until the source ends or a signal arrives."""
        await self.start()
        try:
            async for event in self.interceptor.events():
                if self._halted.is_set():
                    break
                self.handle_device_event(event)
        except asyncio.CancelledError:
            logger.info("Event loop cancelled")
        finally:
            await self.stop()

    def handle_device_event(self, event: USBEvent) -> AuthorizationDecision | None:
        """
        Decide and apply one event.

        Args:
            event: Attach or detach from the interceptor

        Returns:
            The decision for an attach, None for a detach
        """
        if event.event_type == EventType.REMOVE:
            self._stats["detach_events"] += 1
            logger.info("Device %s detached", event.device_id)
            return None

        self._stats["attach_events"] += 1
        descriptor = event.descriptor

        if descriptor is None:
            self._stats["unidentified_devices"] += 1
            self._stats["devices_denied"] += 1
            decision = self.engine.deny_unidentified(event.device_id)
            self.interceptor.block_device(event)
            return decision

        logger.info(
            "Device %s attached at %s (%s)",
            descriptor.vid_pid, event.device_id, descriptor.product or "unknown product",
        )

        decision = self.engine.authorize(request_from_descriptor(descriptor))

        if decision.denied:
            self._stats["devices_denied"] += 1
            self.interceptor.block_device(event)
            return decision

        self._stats["devices_allowed"] += 1
        self.interceptor.allow_device(event)
        if descriptor.is_mass_storage:
            logger.info("Allowed device %s is a mass-storage device", descriptor.vid_pid)
        return decision

    async def _start_api_server(self) -> None:
        """Serve the admin API with uvicorn on the daemon's event loop."""
        import uvicorn

        from usbgate.api import configure_services, create_app

        app = create_app(debug=self.config.daemon.log_level == "debug")
        configure_services(
            store=self.store,
            engine=self.engine,
            db=self.db,
            api_key=self.config.api.api_key,
        )

        self._api_server = uvicorn.Server(uvicorn.Config(
            app=app,
            host=self.config.api.host,
            port=self.config.api.port,
            log_level=self.config.daemon.log_level,
            access_log=False,
        ))
        asyncio.create_task(self._api_server.serve())
        logger.info("Admin API on http://%s:%d/api", self.config.api.host, self.config.api.port)

    def handle_signal(self, signum: int) -> None:
        logger.info("Caught %s, shutting down", signal.Signals(signum).name)
        self._halt()

    def get_statistics(self) -> dict[str, Any]:
        """Event counters, uptime and engine statistics."""
        started = self._stats["start_time"]
        uptime = (datetime.now(timezone.utc) - started).total_seconds() if started else None
        return {
            **self._stats,
            "uptime_seconds": uptime,
            "running": self.running,
            "engine": self._engine.get_statistics() if self._engine else None,
        }


async def run_daemon(config: GateConfig) -> int:
    """Run a daemon until it is signalled; returns the exit status."""
    daemon = GateDaemon(config)

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, daemon.handle_signal, signum)

    try:
        await daemon.run()
    except Exception:
        logger.exception("USB Gate daemon failed")
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``usb-gate-daemon``."""
    parser = argparse.ArgumentParser(
        prog="usb-gate-daemon",
        description="Authorize USB devices as they attach",
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", metavar="FILE", help="Configuration file")
    parser.add_argument("-r", "--rules", metavar="FILE", help="Rules file (overrides config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"usb-gate-daemon: {e}", file=sys.stderr)
        return 1

    if args.rules:
        config.policy.rules_file = args.rules
    if args.verbose:
        config.daemon.log_level = "debug"

    errors = validate_config(config)
    if errors:
        for error in errors:
            print(f"usb-gate-daemon: config: {error}", file=sys.stderr)
        return 1

    setup_logging(config.daemon.log_level, config.daemon.log_file)
    return asyncio.run(run_daemon(config))


if __name__ == "__main__":
    sys.exit(main())
