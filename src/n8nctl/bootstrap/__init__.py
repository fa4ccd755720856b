"""Owner identity and API key bootstrap for a fresh n8n instance."""
from __future__ import annotations

from .api_keys import (
    OWNER_API_KEY_ID,
    OWNER_API_KEY_SCOPES,
    AdminTokenStore,
    ApiKeyRecord,
    SqlAdminTokenStore,
    build_owner_api_key,
    mint_api_key,
    resolve_or_create_api_key,
)
from .owner import BootstrapError, OwnerIdentity, resolve_owner

__all__ = [
    # owner helpers
    "BootstrapError",
    "OwnerIdentity",
    "resolve_owner",
    # api key helpers
    "AdminTokenStore",
    "ApiKeyRecord",
    "OWNER_API_KEY_ID",
    "OWNER_API_KEY_SCOPES",
    "SqlAdminTokenStore",
    "build_owner_api_key",
    "mint_api_key",
    "resolve_or_create_api_key",
]
