"""Tests for owner resolution."""
from __future__ import annotations

from typing import Any

import pytest
from rich.console import Console

from n8nctl.bootstrap import BootstrapError, OwnerIdentity, resolve_owner
from n8nctl.config import AppConfig
from n8nctl.http import HttpClient
from n8nctl.providers.n8n_api import N8nApi


def _api(opener: Any, console: Console) -> N8nApi:
    return N8nApi(client=HttpClient(host="127.0.0.1", port=5678, opener=opener), console=console)


def test_existing_owner_is_returned_from_login(
    fake_opener: Any,
    console: Console,
    app_config: AppConfig,
) -> None:
    """A completed owner logs in without touching the setup endpoint."""
    opener = fake_opener([{"data": {"id": "owner-1", "email": "owner@example.test"}}])

    owner = resolve_owner(_api(opener, console), app_config.owner)

    assert owner == OwnerIdentity(id="owner-1", email="owner@example.test")
    assert opener.paths == ["/rest/login"]


def test_placeholder_owner_triggers_setup(
    fake_opener: Any,
    console: Console,
    app_config: AppConfig,
) -> None:
    """An owner without an email is completed through /rest/owner/setup."""
    opener = fake_opener(
        [
            {"data": {"id": "owner-1", "email": None}},
            {"data": {"id": "owner-1", "email": "owner@example.test"}},
        ]
    )

    owner = resolve_owner(_api(opener, console), app_config.owner)

    assert owner.id == "owner-1"
    assert opener.paths == ["/rest/login", "/rest/owner/setup"]
    assert opener.body(1) == {
        "email": "owner@example.test",
        "password": "s3cret!",
        "firstName": "Node",
        "lastName": "Mation",
    }


def test_setup_without_identity_is_fatal(
    fake_opener: Any,
    console: Console,
    app_config: AppConfig,
) -> None:
    """Setup that yields nothing usable raises a bootstrap error."""
    opener = fake_opener([{"message": "Unauthorized"}, {"message": "Invalid request"}])

    with pytest.raises(BootstrapError):
        resolve_owner(_api(opener, console), app_config.owner)
