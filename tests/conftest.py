"""Shared fixtures for the n8nctl test suite."""
from __future__ import annotations

import io
import json
import subprocess
import urllib.request
from collections.abc import Iterator, Sequence
from pathlib import Path

import pytest
from rich.console import Console
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from n8nctl.config import AppConfig, load_config


class FakeOpener:
    """Stand-in for ``urllib.request.urlopen`` returning scripted outcomes.

    Each outcome is raised when it is an exception, returned verbatim when it
    is ``bytes`` and JSON-encoded otherwise.
    """

    def __init__(self, outcomes: Sequence[object]) -> None:
        """Queue *outcomes* in call order."""
        self.outcomes = list(outcomes)
        self.requests: list[urllib.request.Request] = []

    def __call__(self, request: urllib.request.Request, timeout: float) -> bytes:
        """Record *request* and play back the next outcome."""
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, bytes):
            return outcome
        return json.dumps(outcome).encode("utf-8")

    @property
    def paths(self) -> list[str]:
        """Return the request paths seen so far."""
        return [request.selector for request in self.requests]

    def body(self, index: int) -> object:
        """Return the decoded JSON body of request *index*."""
        data = self.requests[index].data
        assert isinstance(data, bytes)
        return json.loads(data)


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class RecordingRunner:
    """Runner recording n8n invocations and returning scripted exit codes."""

    def __init__(self, returncodes: dict[str, int] | None = None) -> None:
        """Map an artifact id (or ``import``) to the exit code to return."""
        self.returncodes = returncodes or {}
        self.calls: list[list[str]] = []
        self.exports: dict[str, object] = {}
        self.imported: list[dict[str, str]] = []
        self.input_dirs: list[Path] = []

    def __call__(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Record *args*, snapshot imported files and write scripted exports."""
        command = list(args)
        self.calls.append(command)
        if command[1].startswith("export:"):
            artifact_id = command[command.index("--id") + 1]
            code = self.returncodes.get(artifact_id, 0)
            if code == 0 and artifact_id in self.exports:
                output_dir = Path(command[command.index("--output") + 1])
                (output_dir / f"{artifact_id}.json").write_text(
                    json.dumps(self.exports[artifact_id]),
                    encoding="utf-8",
                )
        else:
            input_dir = Path(command[command.index("--input") + 1])
            self.imported.append(
                {
                    path.name: path.read_text(encoding="utf-8")
                    for path in sorted(input_dir.glob("*.json"))
                }
            )
            self.input_dirs.append(input_dir)
            code = self.returncodes.get("import", 0)
        return DummyResult(returncode=code)  # type: ignore[return-value]


@pytest.fixture
def fake_opener() -> type[FakeOpener]:
    """Return the scripted opener class."""
    return FakeOpener


@pytest.fixture
def runner_factory() -> type[RecordingRunner]:
    """Return the recording subprocess runner class."""
    return RecordingRunner


@pytest.fixture
def console() -> Console:
    """Console writing into memory; read it back with ``export_text``."""
    return Console(file=io.StringIO(), record=True, width=200)


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Data directory with empty workflows/ and credentials/ folders."""
    root = tmp_path / "host-data"
    (root / "workflows").mkdir(parents=True)
    (root / "credentials").mkdir(parents=True)
    return root


@pytest.fixture
def base_env(tmp_path: Path, data_dir: Path) -> dict[str, str]:
    """Environment variables as exported by the n8n container."""
    return {
        "ADDR_LOCALHOST": "127.0.0.1",
        "N8N_PORT": "5678",
        "N8N_OWNER_EMAIL": "owner@example.test",
        "N8N_OWNER_PASSWORD": "s3cret!",
        "N8N_API_KEY_ISSUER": "n8n",
        "N8N_API_KEY_AUDIENCE": "public-api",
        "N8N_USER_MANAGEMENT_JWT_SECRET": "shared-secret",
        "N8NCTL_CONFIG_DIR": str(tmp_path / "n8n-home"),
        "N8NCTL_DATA_DIR": str(data_dir),
        "N8NCTL_DATABASE": str(tmp_path / "database.sqlite"),
        "N8NCTL_LOGS_DIR": str(tmp_path / "logs"),
    }


@pytest.fixture
def app_config(tmp_path: Path, base_env: dict[str, str]) -> AppConfig:
    """Configuration resolved from :func:`base_env` only."""
    return load_config(config_file=tmp_path / "absent.yml", env=base_env)


@pytest.fixture
def n8n_engine(tmp_path: Path) -> Iterator[Engine]:
    """SQLite database shaped like the tables n8n keeps for users and keys."""
    engine = create_engine(f"sqlite:///{tmp_path / 'database.sqlite'}")
    with engine.begin() as connection:
        connection.execute(
            text('CREATE TABLE "user" (id VARCHAR PRIMARY KEY, email VARCHAR, role VARCHAR)')
        )
        connection.execute(
            text(
                "CREATE TABLE user_api_keys ("
                "id VARCHAR(36) PRIMARY KEY, "
                '"userId" VARCHAR NOT NULL, '
                "label VARCHAR(100) NOT NULL, "
                '"apiKey" VARCHAR NOT NULL, '
                '"createdAt" DATETIME NOT NULL, '
                '"updatedAt" DATETIME NOT NULL, '
                "scopes TEXT, "
                'UNIQUE ("userId", label))'
            )
        )
    yield engine
    engine.dispose()
