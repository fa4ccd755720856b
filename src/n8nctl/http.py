"""Minimal HTTP client used to talk to the local n8n instance.

Requests are plain ``urllib`` round trips against a fixed host/port pair.
Structured bodies are serialised to JSON with the matching headers, and an
optional :class:`RetryPolicy` repeats transient failures.

Attempt accounting for a policy with ``max_attempts = N``: the first ``N - 1``
attempts are guarded by the predicate, the ``N``-th attempt always runs
unguarded, so a permanently failing call is made exactly ``N`` times.
"""
from __future__ import annotations

import errno
import http.client
import json
import time
import urllib.error
import urllib.request
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

Opener = Callable[[urllib.request.Request, float], bytes]
Predicate = Callable[[BaseException], bool]


class HttpError(RuntimeError):
    """Raised when a request fails at the network or decoding level."""


def _never(error: BaseException) -> bool:
    return False


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How many times to attempt a request and which failures to retry."""

    max_attempts: int = 1
    predicate: Predicate = _never
    delay_ms: int = 300


def is_connection_reset(error: BaseException) -> bool:
    """Return ``True`` when *error* was caused by a dropped connection.

    Walks the ``reason``/``__cause__`` chain because ``urllib`` wraps socket
    errors in :class:`urllib.error.URLError`.
    """
    pending: list[BaseException] = [error]
    seen: set[int] = set()
    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, ConnectionResetError):
            return True
        if getattr(current, "errno", None) == errno.ECONNRESET:
            return True
        if "ECONNRESET" in str(current):
            return True
        reason = getattr(current, "reason", None)
        if isinstance(reason, BaseException):
            pending.append(reason)
        if current.__cause__ is not None:
            pending.append(current.__cause__)
    return False


@dataclass(slots=True)
class HttpRequest:
    """Description of a single request."""

    path: str
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    data: object | None = None
    transform: Callable[[str], Any] | None = None
    retry: RetryPolicy | None = None


@dataclass(slots=True)
class HttpClient:
    """Send :class:`HttpRequest` objects to ``http://host:port``."""

    host: str
    port: int
    timeout: float = 30.0
    opener: Opener | None = None
    sleep: Callable[[float], None] = time.sleep

    def url_for(self, path: str) -> str:
        """Return the absolute URL for *path*."""
        return f"http://{self.host}:{self.port}{path}"

    def send(self, request: HttpRequest) -> Any:
        """Perform *request*, retrying per its policy, and return the body."""
        policy = request.retry
        if policy is None or policy.max_attempts <= 1:
            return self._attempt(request)

        for _ in range(policy.max_attempts - 1):
            try:
                return self._attempt(request)
            except HttpError as exc:
                if not policy.predicate(exc):
                    raise
                self.sleep(policy.delay_ms / 1000)

        return self._attempt(request)

    def _attempt(self, request: HttpRequest) -> Any:
        headers = dict(request.headers)
        body = _encode_body(request.data, headers)
        outgoing = urllib.request.Request(
            self.url_for(request.path),
            data=body,
            headers=headers,
            method=request.method,
        )
        opener = self.opener or _default_opener
        try:
            raw = opener(outgoing, self.timeout)
        except (OSError, http.client.HTTPException) as exc:
            raise HttpError(f"{request.method} {request.path} failed: {exc}") from exc

        text = raw.decode("utf-8", errors="replace")
        if request.transform is None:
            return text
        try:
            return request.transform(text)
        except Exception as exc:
            raise HttpError(
                f"{request.method} {request.path} returned an unexpected body: {exc}"
            ) from exc


def _encode_body(data: object | None, headers: dict[str, str]) -> bytes | None:
    if data is None:
        return None
    if isinstance(data, bytes):
        return data
    if isinstance(data, str):
        return data.encode("utf-8")
    encoded = json.dumps(data, separators=(",", ":")).encode("utf-8")
    headers["Content-Type"] = "application/json"
    headers["Content-Length"] = str(len(encoded))
    return encoded


def _default_opener(request: urllib.request.Request, timeout: float) -> bytes:
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310
            return response.read()
    except urllib.error.HTTPError as exc:
        # Error statuses still carry a JSON body that callers inspect.
        return exc.read()


def merge_headers(*sources: Mapping[str, str] | None) -> dict[str, str]:
    """Return a single header mapping, later sources winning."""
    merged: dict[str, str] = {}
    for source in sources:
        if source:
            merged.update(source)
    return merged


__all__ = [
    "HttpClient",
    "HttpError",
    "HttpRequest",
    "RetryPolicy",
    "is_connection_reset",
    "merge_headers",
]
