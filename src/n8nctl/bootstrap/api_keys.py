"""Owner API key provisioning backed by n8n's embedded database.

n8n offers no endpoint for minting a non-expiring administrative key, so the
key is signed locally with the shared user-management secret and inserted into
``user_api_keys`` directly. n8n later trusts it because it verifies the same
``{sub, iss, aud}`` claims with the same secret.

Everything that touches the database lives behind :class:`AdminTokenStore` so
an official provisioning API could replace :class:`SqlAdminTokenStore` without
changes to callers.
"""
from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from jose import jwt
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from ..config import ApiKeyConfig

OWNER_API_KEY_ID = "ahkwtWHnFYuulV23"
TOKEN_ALGORITHM = "HS256"

OWNER_API_KEY_SCOPES: tuple[str, ...] = (
    "user:read",
    "user:list",
    "user:create",
    "user:changeRole",
    "user:delete",
    "sourceControl:pull",
    "securityAudit:generate",
    "project:create",
    "project:update",
    "project:delete",
    "project:list",
    "variable:create",
    "variable:delete",
    "variable:list",
    "tag:create",
    "tag:read",
    "tag:update",
    "tag:delete",
    "tag:list",
    "workflowTags:update",
    "workflowTags:list",
    "workflow:create",
    "workflow:read",
    "workflow:update",
    "workflow:delete",
    "workflow:list",
    "workflow:move",
    "workflow:activate",
    "workflow:deactivate",
    "execution:delete",
    "execution:read",
    "execution:list",
    "credential:create",
    "credential:move",
    "credential:delete",
)

_SELECT_API_KEY = text(
    'SELECT id, "userId", label, "apiKey", "createdAt", "updatedAt", scopes '
    'FROM user_api_keys WHERE label = :label AND "userId" = :user_id'
)
_INSERT_API_KEY = text(
    'INSERT INTO user_api_keys (id, "userId", label, "apiKey", "createdAt", "updatedAt", scopes) '
    "VALUES (:id, :userId, :label, :apiKey, :createdAt, :updatedAt, :scopes)"
)


@dataclass(frozen=True, slots=True)
class ApiKeyRecord:
    """One row of ``user_api_keys``."""

    id: str
    user_id: str
    label: str
    api_key: str
    scopes: tuple[str, ...]
    created_at: str
    updated_at: str

    def to_row(self) -> dict[str, str]:
        """Return the row using n8n's column names."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "label": self.label,
            "apiKey": self.api_key,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "scopes": json.dumps(list(self.scopes)),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, object]) -> ApiKeyRecord:
        """Build a record from a database row."""
        raw_scopes = row.get("scopes")
        if isinstance(raw_scopes, str):
            scopes = tuple(json.loads(raw_scopes or "[]"))
        else:
            scopes = tuple(raw_scopes or ())  # type: ignore[arg-type]
        return cls(
            id=str(row["id"]),
            user_id=str(row["userId"]),
            label=str(row["label"]),
            api_key=str(row["apiKey"]),
            scopes=scopes,
            created_at=str(row.get("createdAt") or ""),
            updated_at=str(row.get("updatedAt") or ""),
        )


class AdminTokenStore(Protocol):
    """Persistence for the owner's API key record."""

    def find_api_key(self, user_id: str, label: str) -> ApiKeyRecord | None:
        """Return the record for ``(user_id, label)`` if one exists."""
        ...

    def insert_api_key(self, record: ApiKeyRecord) -> None:
        """Persist a new record."""
        ...


class SqlAdminTokenStore:
    """:class:`AdminTokenStore` writing straight into n8n's database."""

    def __init__(self, engine: Engine) -> None:
        """Wrap an existing SQLAlchemy engine."""
        self.engine = engine

    @classmethod
    def from_url(cls, url: str) -> SqlAdminTokenStore:
        """Create a store for the database at *url*."""
        return cls(create_engine(url))

    def find_api_key(self, user_id: str, label: str) -> ApiKeyRecord | None:
        """Return the record for ``(user_id, label)`` if one exists."""
        with self.engine.connect() as connection:
            row = (
                connection.execute(_SELECT_API_KEY, {"label": label, "user_id": user_id})
                .mappings()
                .first()
            )
        return ApiKeyRecord.from_row(row) if row is not None else None

    def insert_api_key(self, record: ApiKeyRecord) -> None:
        """Insert *record* in its own transaction."""
        with self.engine.begin() as connection:
            connection.execute(_INSERT_API_KEY, record.to_row())


def mint_api_key(owner_id: str, *, secret: str, issuer: str, audience: str) -> str:
    """Sign the API key JWT exactly as n8n's public API service expects it."""
    claims = {"sub": owner_id, "iss": issuer, "aud": audience}
    return jwt.encode(claims, secret, algorithm=TOKEN_ALGORITHM)


def build_owner_api_key(
    owner_id: str,
    settings: ApiKeyConfig,
    *,
    now: datetime | None = None,
) -> ApiKeyRecord:
    """Return a new owner API key record carrying the full scope list."""
    moment = now if now is not None else datetime.now(UTC)
    timestamp = moment.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
    return ApiKeyRecord(
        id=OWNER_API_KEY_ID,
        user_id=owner_id,
        label=settings.label,
        api_key=mint_api_key(
            owner_id,
            secret=settings.secret,
            issuer=settings.issuer,
            audience=settings.audience,
        ),
        scopes=OWNER_API_KEY_SCOPES,
        created_at=timestamp,
        updated_at=timestamp,
    )


def resolve_or_create_api_key(
    store: AdminTokenStore,
    owner_id: str,
    settings: ApiKeyConfig,
    *,
    now: datetime | None = None,
) -> str:
    """Return the owner's API key, creating and storing it on first use."""
    record = store.find_api_key(owner_id, settings.label)
    if record is None:
        record = build_owner_api_key(owner_id, settings, now=now)
        store.insert_api_key(record)
    return record.api_key


__all__ = [
    "AdminTokenStore",
    "ApiKeyRecord",
    "OWNER_API_KEY_ID",
    "OWNER_API_KEY_SCOPES",
    "SqlAdminTokenStore",
    "TOKEN_ALGORITHM",
    "build_owner_api_key",
    "mint_api_key",
    "resolve_or_create_api_key",
]
