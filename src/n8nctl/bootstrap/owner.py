"""Resolve the n8n owner account, completing first-run setup when needed."""
from __future__ import annotations

from dataclasses import dataclass

from ..config import OwnerConfig
from ..providers.n8n_api import N8nApi


class BootstrapError(RuntimeError):
    """Raised when n8n does not hand back a usable owner identity."""


@dataclass(frozen=True, slots=True)
class OwnerIdentity:
    """The single administrative user of the instance."""

    id: str
    email: str


def resolve_owner(api: N8nApi, owner: OwnerConfig) -> OwnerIdentity:
    """Log in as the owner, running the one-time setup if it never happened.

    A fresh n8n creates a placeholder owner with every field empty, so a login
    that yields no email means onboarding has not been completed yet.
    """
    user = api.login(owner.email, owner.password)
    if not user.get("email"):
        user = api.setup_owner(
            email=owner.email,
            password=owner.password,
            first_name=owner.first_name,
            last_name=owner.last_name,
        )

    owner_id = user.get("id")
    email = user.get("email")
    if not owner_id or not email:
        raise BootstrapError(
            f"n8n returned no owner identity for {owner.email}; check the owner credentials."
        )
    return OwnerIdentity(id=str(owner_id), email=str(email))


__all__ = ["BootstrapError", "OwnerIdentity", "resolve_owner"]
