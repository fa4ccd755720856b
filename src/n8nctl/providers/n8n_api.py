"""Provider wrapping the n8n REST endpoints n8nctl relies upon."""
from __future__ import annotations

import json
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from rich.console import Console

from ..http import HttpClient, HttpError, HttpRequest, RetryPolicy, merge_headers

API_KEY_HEADER = "X-N8N-API-KEY"
OWNER_SETUP_PATH = "/rest/owner/setup"
LOGIN_PATH = "/rest/login"


@dataclass(slots=True)
class N8nApi:
    """Issue JSON requests against the n8n instance behind *client*."""

    client: HttpClient
    console: Console
    readiness_interval_ms: int = 2000
    sleep: Callable[[float], None] = time.sleep

    def request(
        self,
        path: str,
        *,
        method: str = "POST",
        data: object | None = None,
        api_key: str | None = None,
        headers: Mapping[str, str] | None = None,
        retry: RetryPolicy | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON response."""
        auth = {API_KEY_HEADER: api_key} if api_key else None
        return self.client.send(
            HttpRequest(
                path=path,
                method=method,
                headers=merge_headers(headers, auth),
                data=data,
                transform=json.loads,
                retry=retry,
            )
        )

    def wait_until_ready(self) -> None:
        """Block until n8n answers the owner setup endpoint with JSON.

        While booting n8n serves a non-JSON placeholder for every route, so a
        decoding failure means "not ready yet". There is no attempt limit.
        """
        while True:
            try:
                self.request(OWNER_SETUP_PATH)
            except HttpError:
                self.console.print("Waiting for n8n to start...")
                self.sleep(self.readiness_interval_ms / 1000)
                continue
            return

    def login(self, email: str, password: str) -> dict[str, Any]:
        """Log in and return the user payload (empty when rejected)."""
        response = self.request(
            LOGIN_PATH,
            data={"emailOrLdapLoginId": email, "password": password},
        )
        return _data_of(response)

    def setup_owner(
        self,
        *,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
    ) -> dict[str, Any]:
        """Complete the one-time owner setup and return the created user."""
        response = self.request(
            OWNER_SETUP_PATH,
            data={
                "email": email,
                "password": password,
                "firstName": first_name,
                "lastName": last_name,
            },
        )
        return _data_of(response)

    def activate_workflow(
        self,
        workflow_id: str,
        *,
        api_key: str,
        retry: RetryPolicy | None = None,
    ) -> dict[str, Any]:
        """Activate *workflow_id* through the public API."""
        response = self.request(
            f"/api/v1/workflows/{workflow_id}/activate",
            api_key=api_key,
            retry=retry,
        )
        return response if isinstance(response, dict) else {}


def _data_of(response: object) -> dict[str, Any]:
    if isinstance(response, Mapping):
        data = response.get("data")
        if isinstance(data, Mapping):
            return dict(data)
    return {}


__all__ = ["API_KEY_HEADER", "N8nApi"]
