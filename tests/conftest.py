"""
Pytest configuration and shared fixtures for USB Gate tests.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Generator

import pytest
import yaml

from usbgate.policy.store import PolicyStore


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_rules(temp_dir: Path) -> Path:
    """Create a sample rules file."""
    rules_path = temp_dir / "usbgate.rules"
    rules_path.write_text(
        "# Approved keyboards and mice\n"
        "04d9 1702\n"
        "\n"
        "046d c077\n"
        "not a rule\n"
    )
    return rules_path


@pytest.fixture
def sample_config(temp_dir: Path, sample_rules: Path) -> Path:
    """Create a sample configuration file."""
    config_path = temp_dir / "gate.yaml"
    config_data = {
        "daemon": {
            "log_level": "debug",
        },
        "policy": {
            "rules_file": str(sample_rules),
            "blocked_serials": ["BLOCKED_SERIAL", "LOST-LAPTOP-KEY"],
        },
        "audit": {
            "path": str(temp_dir / "audit.db"),
            "wal_mode": False,
        },
        "interceptor": {
            "deauthorize_on_attach": False,
        },
        "api": {
            "enabled": False,
            "port": 8080,
            "api_key": "ugk_test_key_0123456789",
        },
    }
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


@pytest.fixture
def store() -> PolicyStore:
    """Empty store with default bounds."""
    return PolicyStore()


@pytest.fixture
def populated_store() -> PolicyStore:
    """Store allowing 04d9:1702 and 046d:c077, blocking BLOCKED_SERIAL."""
    store = PolicyStore()
    store.add_rule(0x04D9, 0x1702)
    store.add_rule(0x046D, 0xC077)
    store.add_blocked_serial("BLOCKED_SERIAL")
    return store
