"""
Tests for the admin API.

Tests REST endpoints, API key authentication and pydantic schemas.
"""

from __future__ import annotations

from pathlib import Path
from typing import Generator

import pytest
from fastapi import status
from fastapi.testclient import TestClient
from pydantic import ValidationError

from usbgate.api import configure_services, create_app
from usbgate.api.auth import APIKeyStore, generate_api_key, hash_api_key
from usbgate.api.routes import deps
from usbgate.api.schemas import RuleSchema, RuleSubmission
from usbgate.audit.database import AuditDatabase
from usbgate.policy.engine import AuthorizationEngine
from usbgate.policy.models import AuthorizationRequest
from usbgate.policy.store import PolicyStore


API_KEY = "ugk_test_key_0123456789"


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def services(temp_dir: Path) -> Generator[tuple[PolicyStore, AuthorizationEngine, AuditDatabase], None, None]:
    """Real store, engine and audit log wired together."""
    store = PolicyStore()
    store.add_rule(0x04D9, 0x1702)
    engine = AuthorizationEngine(store)
    db = AuditDatabase(temp_dir / "audit.db", wal_mode=False)
    engine.add_audit_sink(db.sink("attach"))
    yield store, engine, db
    db.close()
    deps.store = deps.engine = deps.db = None


@pytest.fixture
def client(services) -> TestClient:
    """Configured test client."""
    store, engine, db = services
    configure_services(store=store, engine=engine, db=db, api_key=API_KEY)
    return TestClient(create_app(debug=True))


@pytest.fixture
def headers() -> dict[str, str]:
    return {"X-API-Key": API_KEY}


# ============================================================================
# API Key Tests
# ============================================================================


class TestAPIKeys:
    """Tests for key generation and verification."""

    def test_generate(self) -> None:
        """Test generated keys are prefixed and unique."""
        first, second = generate_api_key(), generate_api_key()
        assert first.startswith("ugk_")
        assert first != second

    def test_hash_is_stable(self) -> None:
        """Test the same key always hashes the same way."""
        assert hash_api_key(API_KEY) == hash_api_key(API_KEY)
        assert hash_api_key(API_KEY) != hash_api_key(API_KEY + "x")

    def test_store_verify(self) -> None:
        """Test verification against the stored hash."""
        keys = APIKeyStore()
        assert not keys.verify(API_KEY)

        keys.set_key(API_KEY)
        assert keys.verify(API_KEY)
        assert not keys.verify("ugk_wrong")

    def test_missing_key(self, client: TestClient) -> None:
        """Test protected routes need a key."""
        response = client.get("/api/rules")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_wrong_key(self, client: TestClient) -> None:
        """Test a wrong key is refused."""
        response = client.get("/api/rules", headers={"X-API-Key": "ugk_wrong"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_generated_key(self, services) -> None:
        """Test a key is generated when none is configured."""
        store, engine, db = services
        key = configure_services(store=store, engine=engine, db=db)
        client = TestClient(create_app())

        assert client.get("/api/rules", headers={"X-API-Key": key}).status_code == 200


# ============================================================================
# Endpoint Tests
# ============================================================================


class TestHealth:
    """Tests for the health endpoint."""

    def test_health_no_key(self, client: TestClient) -> None:
        """Test health needs no key."""
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["audit_enabled"] is True


class TestRules:
    """Tests for rule endpoints."""

    def test_list(self, client: TestClient, headers: dict) -> None:
        """Test the allow-list is returned with its bound."""
        response = client.get("/api/rules", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["rules"] == [{"vendor_id": "04d9", "product_id": "1702"}]
        assert data["count"] == 1
        assert data["limit"] == 10

    def test_add(self, client: TestClient, headers: dict, services) -> None:
        """Test each line gets its own outcome and good lines are applied."""
        store, _, _ = services
        response = client.post(
            "/api/rules",
            json={"lines": ["046d c077", "not a rule", "# note"]},
            headers=headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["accepted"] == 1
        assert data["rejected"] == 1
        assert data["results"][1]["error"] == "expected 2 fields, got 3"
        assert data["results"][2]["ignored"] is True
        assert store.matches_identity(0x046D, 0xC077)

    def test_add_takes_effect(self, client: TestClient, headers: dict, services) -> None:
        """Test a rule added through the API allows the next attach."""
        _, engine, _ = services
        request = AuthorizationRequest(0x1234, 0x5678)
        assert engine.authorize(request).denied

        client.post("/api/rules", json={"lines": ["1234 5678"]}, headers=headers)

        assert engine.authorize(request).allowed

    def test_add_empty_body(self, client: TestClient, headers: dict) -> None:
        """Test an empty line list fails validation."""
        response = client.post("/api/rules", json={"lines": []}, headers=headers)
        assert response.status_code == 422

    def test_capacity(self, client: TestClient, headers: dict) -> None:
        """Test lines beyond the bound are rejected, not fatal."""
        lines = [f"{i:04x} 0001" for i in range(1, 12)]
        data = client.post("/api/rules", json={"lines": lines}, headers=headers).json()

        assert data["accepted"] == 9
        assert data["rejected"] == 2

    def test_store_not_configured(self, headers: dict) -> None:
        """Test 503 when no store is wired in."""
        configure_services(api_key=API_KEY)
        client = TestClient(create_app())

        response = client.get("/api/rules", headers=headers)

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


class TestSerials:
    """Tests for blocked-serial endpoints."""

    def test_add_and_list(self, client: TestClient, headers: dict) -> None:
        """Test blocking serials and reading them back."""
        response = client.post(
            "/api/serials",
            json={"serials": ["ABC123", "   "]},
            headers=headers,
        )
        data = response.json()
        assert data["accepted"] == 1
        assert data["rejected"] == 1

        listing = client.get("/api/serials", headers=headers).json()
        assert listing["serials"] == ["ABC123"]
        assert listing["count"] == 1


class TestDecisions:
    """Tests for audit log endpoints."""

    def test_list_and_filter(self, client: TestClient, headers: dict, services) -> None:
        """Test decisions are listed and filterable by verdict and reason."""
        store, engine, _ = services
        store.add_blocked_serial("BAD")
        engine.authorize(AuthorizationRequest(0x04D9, 0x1702))
        engine.authorize(AuthorizationRequest(0x04D9, 0x1702, "BAD"))
        engine.authorize(AuthorizationRequest(0x0001, 0x0002))

        data = client.get("/api/decisions", headers=headers).json()
        assert data["total"] == 3

        data = client.get("/api/decisions?decision=deny", headers=headers).json()
        assert data["total"] == 2

        data = client.get("/api/decisions?reason=serial_blocked", headers=headers).json()
        assert [d["serial"] for d in data["decisions"]] == ["BAD"]

        data = client.get("/api/decisions?vendor_id=0001", headers=headers).json()
        assert data["decisions"][0]["reason"] == "identity_not_allowed"

    def test_bad_filter(self, client: TestClient, headers: dict) -> None:
        """Test invalid filter values are rejected."""
        response = client.get("/api/decisions?decision=maybe", headers=headers)
        assert response.status_code == 422

    def test_statistics(self, client: TestClient, headers: dict, services) -> None:
        """Test engine and audit statistics are combined."""
        _, engine, _ = services
        engine.authorize(AuthorizationRequest(0x04D9, 0x1702))

        data = client.get("/api/statistics", headers=headers).json()

        assert data["engine"]["allowed"] == 1
        assert data["engine"]["rule_count"] == 1
        assert data["audit"]["total_decisions"] == 1


# ============================================================================
# Schema Tests
# ============================================================================


class TestSchemas:
    """Tests for pydantic schemas."""

    def test_rule_schema(self) -> None:
        """Test rule ids must be 4-digit lowercase hex."""
        assert RuleSchema(vendor_id="04d9", product_id="1702").vendor_id == "04d9"
        with pytest.raises(ValidationError):
            RuleSchema(vendor_id="4d9", product_id="1702")

    def test_rule_submission(self) -> None:
        """Test at least one line is required."""
        with pytest.raises(ValidationError):
            RuleSubmission(lines=[])
