"""
Configuration management for USB Gate.

Handles loading, validation, and access to daemon configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from usbgate.policy.models import MAX_RULES, MAX_SERIALS


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/usb-gate/gate.yaml")
DEFAULT_RULES_PATH = Path("/etc/usbgate.rules")
DEFAULT_DB_PATH = Path("/var/lib/usb-gate/audit.db")

DEFAULT_BLOCKED_SERIAL = "BLOCKED_SERIAL"


@dataclass
class DaemonConfig:
    """Daemon general settings."""

    log_level: str = "info"
    log_file: str | None = None
    pid_file: str = "/var/run/usb-gate.pid"


@dataclass
class PolicyConfig:
    """Policy store settings."""

    rules_file: str = str(DEFAULT_RULES_PATH)
    max_rules: int = MAX_RULES
    max_serials: int = MAX_SERIALS
    blocked_serials: list[str] = field(
        default_factory=lambda: [DEFAULT_BLOCKED_SERIAL]
    )

    def __post_init__(self) -> None:
        # YAML reads an unquoted all-digit serial as a number
        if isinstance(self.blocked_serials, list):
            self.blocked_serials = [
                str(s) if isinstance(s, (int, float)) else s
                for s in self.blocked_serials
            ]


@dataclass
class AuditConfig:
    """Audit database settings."""

    enabled: bool = True
    path: str = str(DEFAULT_DB_PATH)
    wal_mode: bool = True


@dataclass
class InterceptorConfig:
    """USB interceptor settings."""

    deauthorize_on_attach: bool = True


@dataclass
class APIConfig:
    """Admin API server settings."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
    api_key: str | None = None

    def __post_init__(self) -> None:
        # Load API key from environment if not set
        if self.api_key is None:
            self.api_key = os.environ.get("USBGATE_API_KEY")


@dataclass
class GateConfig:
    """Main configuration container."""

    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    interceptor: InterceptorConfig = field(default_factory=InterceptorConfig)
    api: APIConfig = field(default_factory=APIConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GateConfig:
        """Create configuration from dictionary."""
        return cls(
            daemon=DaemonConfig(**(data.get("daemon") or {})),
            policy=PolicyConfig(**(data.get("policy") or {})),
            audit=AuditConfig(**(data.get("audit") or {})),
            interceptor=InterceptorConfig(**(data.get("interceptor") or {})),
            api=APIConfig(**(data.get("api") or {})),
        )


def load_config(path: str | Path | None = None) -> GateConfig:
    """
    Load configuration from YAML file.

    Args:
        path: Path to configuration file. If None, uses default paths.

    Returns:
        GateConfig instance with loaded settings.

    Raises:
        FileNotFoundError: If an explicit config file is missing.
        yaml.YAMLError: If config file is invalid YAML.
    """
    if path is None:
        candidates = [
            DEFAULT_CONFIG_PATH,
            Path("config/gate.yaml"),
            Path("gate.yaml"),
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path is None:
        return GateConfig()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return GateConfig.from_dict(data)


def validate_config(config: GateConfig) -> list[str]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate.

    Returns:
        List of error messages. Empty list if valid.
    """
    errors: list[str] = []

    valid_log_levels = {"debug", "info", "warning", "error"}
    if config.daemon.log_level not in valid_log_levels:
        errors.append(f"Invalid log_level: {config.daemon.log_level}")

    if config.policy.max_rules < 1:
        errors.append(f"Invalid max_rules: {config.policy.max_rules}")
    if config.policy.max_serials < 1:
        errors.append(f"Invalid max_serials: {config.policy.max_serials}")

    serials = config.policy.blocked_serials or []
    if not isinstance(serials, list):
        errors.append(f"blocked_serials must be a list, got {type(serials).__name__}")
        serials = []
    for entry in serials:
        if entry is not None and not isinstance(entry, str):
            errors.append(
                f"Non-text entry in blocked_serials: {entry!r} ({type(entry).__name__})"
            )
    texts = [s.strip() for s in serials if isinstance(s, str)]
    if any(s is None for s in serials) or not all(texts):
        errors.append("Blank entry in blocked_serials")
    unique = set(s for s in texts if s)
    if len(unique) > config.policy.max_serials:
        errors.append(
            f"blocked_serials has {len(unique)} entries, "
            f"more than max_serials ({config.policy.max_serials})"
        )

    if not (1 <= config.api.port <= 65535):
        errors.append(f"Invalid API port: {config.api.port}")

    return errors
