"""Provider interfaces for n8nctl."""
from __future__ import annotations

from .n8n_api import API_KEY_HEADER, N8nApi
from .n8n_cli import N8nCli, N8nCliError

__all__ = [
    "API_KEY_HEADER",
    "N8nApi",
    "N8nCli",
    "N8nCliError",
]
