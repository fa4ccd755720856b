"""Export artifacts from n8n back into the data directory.

n8n's exporter cannot choose output filenames and emits keys in whatever order
it likes. Each artifact is therefore exported into a scratch directory, its
top-level keys are sorted, and it is written under the filename it already had
in the data directory (or one derived from its ``name``).
"""
from __future__ import annotations

import json
import os
import re
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from ..config import ConfigError
from ..providers.n8n_cli import N8nCli, N8nCliError
from .models import (
    ArtifactFile,
    ArtifactType,
    artifact_dir,
    extract_declared_id,
    filename_for,
    list_artifact_files,
    sort_top_level_keys,
)

_UNSAFE_ID_CHARS = re.compile(r"[\\/\x00]")


@dataclass(slots=True)
class ExportReport:
    """Outcome of exporting one artifact type."""

    artifact_type: ArtifactType
    written: list[Path] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ArtifactExporter:
    """Write n8n's current state of artifacts into the data directory."""

    data_dir: Path
    cli: N8nCli
    console: Console

    def scan(self, artifact_type: ArtifactType, report: ExportReport) -> list[ArtifactFile]:
        """Return the artifacts whose id can be read from the directory.

        Files without a locatable ``id`` are reported and left out.
        """
        artifacts: list[ArtifactFile] = []
        for path in list_artifact_files(artifact_dir(self.data_dir, artifact_type)):
            try:
                declared = extract_declared_id(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError) as exc:
                self._report(report, f"Unable to read {path}; its filename is not reused: {exc}")
                continue
            if declared is None:
                self._report(
                    report,
                    f'Unable to find the "id" in {path}; its filename is not reused.',
                )
                continue
            artifacts.append(
                ArtifactFile(
                    id=declared,
                    type=artifact_type,
                    source_path=path,
                    display_name=path.name,
                )
            )
        return artifacts

    def export_artifacts(
        self,
        artifact_type: ArtifactType | None,
        ids: Sequence[str] | None = None,
    ) -> ExportReport:
        """Export *ids* (or every id found on disk) of *artifact_type*.

        A failed export of one artifact is reported and skipped; the rest of
        the batch continues.
        """
        if artifact_type is None:
            raise ConfigError("An artifact type (workflows or credentials) must be provided.")

        report = ExportReport(artifact_type)
        known: dict[str, str] = {}
        for artifact in self.scan(artifact_type, report):
            known.setdefault(artifact.id, artifact.display_name)

        targets = list(ids) if ids else list(known)
        directory = artifact_dir(self.data_dir, artifact_type)
        directory.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix="n8nctl-export-") as scratch:
            scratch_dir = Path(scratch)
            for artifact_id in targets:
                self.console.print(f'Exporting {artifact_type.label} "{escape(artifact_id)}"...')
                written = self._export_one(
                    artifact_type,
                    artifact_id,
                    scratch_dir,
                    directory,
                    known,
                    report,
                )
                if written is not None:
                    report.written.append(written)

        return report

    def _export_one(
        self,
        artifact_type: ArtifactType,
        artifact_id: str,
        scratch_dir: Path,
        directory: Path,
        known: dict[str, str],
        report: ExportReport,
    ) -> Path | None:
        export_path = _scratch_path(scratch_dir, artifact_id)
        if export_path is None:
            self._skip(report, artifact_type, artifact_id, "the id is not a plain file name.")
            return None
        try:
            self.cli.export_one(
                artifact_type.command,
                artifact_id,
                scratch_dir,
                decrypted=artifact_type.decrypted_export,
            )
            payload = json.loads(export_path.read_text(encoding="utf-8"))
        except (N8nCliError, OSError, ValueError) as exc:
            self._skip(report, artifact_type, artifact_id, str(exc))
            return None
        finally:
            export_path.unlink(missing_ok=True)

        if isinstance(payload, list) and len(payload) == 1:
            payload = payload[0]
        if not isinstance(payload, dict):
            self._skip(report, artifact_type, artifact_id, "n8n exported no JSON object.")
            return None

        filename = _target_filename(directory, artifact_id, payload.get("name"), known)
        if filename is None:
            self._skip(
                report,
                artifact_type,
                artifact_id,
                "every candidate filename belongs to another artifact.",
            )
            return None

        target = directory / filename
        try:
            target.write_text(
                json.dumps(sort_top_level_keys(payload), indent=2, ensure_ascii=False) + "\n",
                encoding="utf-8",
            )
        except OSError as exc:
            self._skip(report, artifact_type, artifact_id, str(exc))
            return None
        known[artifact_id] = filename
        return target

    def _skip(
        self,
        report: ExportReport,
        artifact_type: ArtifactType,
        artifact_id: str,
        reason: str,
    ) -> None:
        report.skipped.append(artifact_id)
        self._report(report, f"Skipped {artifact_type.label} {artifact_id}: {reason}")

    def _report(self, report: ExportReport, message: str) -> None:
        self.console.print(f"[red]{escape(message)}[/red]")
        report.errors.append(message)


def _scratch_path(scratch_dir: Path, artifact_id: str) -> Path | None:
    """Return where n8n writes *artifact_id*, or ``None`` if it escapes *scratch_dir*."""
    if not artifact_id or _UNSAFE_ID_CHARS.search(artifact_id) or artifact_id in {".", ".."}:
        return None
    path = scratch_dir / f"{artifact_id}.json"
    if path.resolve().parent != scratch_dir.resolve():
        return None
    return path


def _target_filename(
    directory: Path,
    artifact_id: str,
    name: object,
    known: Mapping[str, str],
) -> str | None:
    """Pick the filename for *artifact_id* without taking another artifact's file.

    A filename already observed for the id wins. Otherwise the name-derived
    filename is used, then ``<id>.json``, skipping any that another id owns or
    that already exist on disk.
    """
    existing = known.get(artifact_id)
    if existing is not None:
        return existing
    taken = {filename for owner, filename in known.items() if owner != artifact_id}
    for candidate in (filename_for(name, artifact_id), f"{artifact_id}.json"):
        if candidate not in taken and not os.path.exists(directory / candidate):
            return candidate
    return None


__all__ = ["ArtifactExporter", "ExportReport"]
