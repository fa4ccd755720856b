"""Tests for owner API key provisioning."""
from __future__ import annotations

import json
from dataclasses import replace
from datetime import UTC, datetime

import pytest
from jose import JWTError, jwt
from sqlalchemy import text
from sqlalchemy.engine import Engine

from n8nctl.bootstrap import (
    OWNER_API_KEY_ID,
    OWNER_API_KEY_SCOPES,
    ApiKeyRecord,
    SqlAdminTokenStore,
    build_owner_api_key,
    mint_api_key,
    resolve_or_create_api_key,
)
from n8nctl.config import AppConfig


class MemoryTokenStore:
    """In-memory :class:`AdminTokenStore` used to test the resolution logic."""

    def __init__(self) -> None:
        """Start empty."""
        self.records: dict[tuple[str, str], ApiKeyRecord] = {}
        self.inserts = 0

    def find_api_key(self, user_id: str, label: str) -> ApiKeyRecord | None:
        """Return the stored record, if any."""
        return self.records.get((user_id, label))

    def insert_api_key(self, record: ApiKeyRecord) -> None:
        """Store *record*."""
        self.inserts += 1
        self.records[(record.user_id, record.label)] = record


def test_minted_token_carries_exact_claims() -> None:
    """The token decodes to exactly sub/iss/aud under the shared secret."""
    token = mint_api_key("owner-1", secret="shared", issuer="n8n", audience="public-api")

    claims = jwt.decode(token, "shared", algorithms=["HS256"], audience="public-api", issuer="n8n")

    assert claims == {"sub": "owner-1", "iss": "n8n", "aud": "public-api"}
    assert jwt.get_unverified_header(token)["alg"] == "HS256"


def test_minted_token_rejects_other_secret() -> None:
    """Verification with any other secret fails."""
    token = mint_api_key("owner-1", secret="shared", issuer="n8n", audience="public-api")

    with pytest.raises(JWTError):
        jwt.decode(token, "not-the-secret", algorithms=["HS256"], audience="public-api")


def test_build_owner_api_key_record(app_config: AppConfig) -> None:
    """New records carry the fixed id, label, full scopes and timestamps."""
    now = datetime(2025, 6, 2, 15, 53, 17, 424000, tzinfo=UTC)

    record = build_owner_api_key("owner-1", app_config.api_key, now=now)

    assert record.id == OWNER_API_KEY_ID
    assert record.label == "local"
    assert record.scopes == OWNER_API_KEY_SCOPES
    assert "workflow:activate" in record.scopes
    assert record.created_at == record.updated_at == "2025-06-02 15:53:17.424"


def test_resolution_is_idempotent_in_memory(app_config: AppConfig) -> None:
    """The second resolution reuses the stored record."""
    store = MemoryTokenStore()

    first = resolve_or_create_api_key(store, "owner-1", app_config.api_key)
    second = resolve_or_create_api_key(store, "owner-1", app_config.api_key)

    assert first == second
    assert store.inserts == 1


def test_sql_store_is_idempotent(n8n_engine: Engine, app_config: AppConfig) -> None:
    """Two bootstrap runs against one database leave exactly one row."""
    store = SqlAdminTokenStore(n8n_engine)

    first = resolve_or_create_api_key(store, "owner-1", app_config.api_key)
    second = resolve_or_create_api_key(store, "owner-1", app_config.api_key)

    assert first == second
    with n8n_engine.connect() as connection:
        rows = connection.execute(text("SELECT * FROM user_api_keys")).mappings().all()
    assert len(rows) == 1
    row = rows[0]
    assert row["id"] == OWNER_API_KEY_ID
    assert row["userId"] == "owner-1"
    assert row["label"] == "local"
    assert row["apiKey"] == first
    assert json.loads(row["scopes"]) == list(OWNER_API_KEY_SCOPES)


def test_sql_store_round_trips_record(n8n_engine: Engine, app_config: AppConfig) -> None:
    """Records read back equal what was inserted."""
    store = SqlAdminTokenStore(n8n_engine)
    record = build_owner_api_key("owner-1", app_config.api_key)

    store.insert_api_key(record)

    assert store.find_api_key("owner-1", "local") == record
    assert store.find_api_key("owner-1", "other") is None
    assert store.find_api_key("owner-2", "local") is None


def test_existing_key_is_not_reminted(n8n_engine: Engine, app_config: AppConfig) -> None:
    """A key already in the database wins even if the secret changed."""
    store = SqlAdminTokenStore(n8n_engine)
    original = resolve_or_create_api_key(store, "owner-1", app_config.api_key)

    rotated = replace(app_config.api_key, secret="rotated")

    assert resolve_or_create_api_key(store, "owner-1", rotated) == original
