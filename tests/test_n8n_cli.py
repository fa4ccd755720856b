"""Tests for the n8n executable provider."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from n8nctl.providers.n8n_cli import N8nCli, N8nCliError


def test_import_dir_builds_arguments(tmp_path: Path, runner_factory: Any) -> None:
    """Bulk import reads every file of one folder."""
    runner = runner_factory()

    N8nCli(n8n_bin="/opt/n8n/bin/n8n", runner=runner).import_dir("workflow", tmp_path)

    assert runner.calls == [
        ["/opt/n8n/bin/n8n", "import:workflow", "--separate", "--input", str(tmp_path)]
    ]


@pytest.mark.parametrize(
    ("decrypted", "expected"),
    [
        (False, ["n8n", "export:workflow", "--separate"]),
        (True, ["n8n", "export:workflow", "--decrypted", "--separate"]),
    ],
)
def test_export_one_builds_arguments(
    tmp_path: Path,
    runner_factory: Any,
    decrypted: bool,
    expected: list[str],
) -> None:
    """Single exports target one id and optionally decrypt secrets."""
    runner = runner_factory()

    N8nCli(runner=runner).export_one("workflow", "wf-1", tmp_path, decrypted=decrypted)

    assert runner.calls == [expected + ["--output", str(tmp_path), "--id", "wf-1"]]


def test_non_zero_exit_raises(tmp_path: Path, runner_factory: Any) -> None:
    """A failing command is reported with its subcommand and exit code."""
    runner = runner_factory({"wf-1": 3})

    with pytest.raises(N8nCliError, match=r"n8n export:workflow failed \(exit 3\)"):
        N8nCli(runner=runner).export_one("workflow", "wf-1", tmp_path)


def test_missing_executable_raises(tmp_path: Path) -> None:
    """A missing binary surfaces as N8nCliError."""

    def runner(args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError(2, "No such file or directory", args[0])

    with pytest.raises(N8nCliError, match="n8n-missing not found"):
        N8nCli(n8n_bin="n8n-missing", runner=runner).import_dir("credentials", tmp_path)


def test_default_runner_inherits_terminal(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Without an injected runner the command runs via subprocess.run."""
    captured: dict[str, Any] = {}

    def fake_run(args: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        captured["args"] = args
        captured["kwargs"] = kwargs
        return subprocess.CompletedProcess(args, 0)

    monkeypatch.setattr(subprocess, "run", fake_run)

    N8nCli().import_dir("credentials", tmp_path)

    assert captured["args"] == ["n8n", "import:credentials", "--separate", "--input", str(tmp_path)]
    assert captured["kwargs"] == {"text": True, "check": False}
