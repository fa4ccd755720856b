"""Artifact types and helpers shared by the importer and exporter."""
from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..config import ConfigError

_ID_MEMBER = re.compile(r'"id"\s*:\s*"((?:[^"\\]|\\.)*)"')
_UNSAFE_FILENAME_CHARS = re.compile(r"[\\/\x00]")


class ArtifactType(str, Enum):
    """Kinds of artifacts kept under the data directory."""

    WORKFLOWS = "workflows"
    CREDENTIALS = "credentials"

    @property
    def command(self) -> str:
        """Return the noun used by ``n8n import:*`` / ``n8n export:*``."""
        return "workflow" if self is ArtifactType.WORKFLOWS else "credentials"

    @property
    def label(self) -> str:
        """Return a singular, human-readable name."""
        return "workflow" if self is ArtifactType.WORKFLOWS else "credential"

    @property
    def templated(self) -> bool:
        """Whether files are rendered against the environment before import."""
        return self is ArtifactType.CREDENTIALS

    @property
    def decrypted_export(self) -> bool:
        """Whether exports ask n8n for decrypted data."""
        return self is ArtifactType.CREDENTIALS

    @classmethod
    def parse(cls, value: str | None) -> ArtifactType:
        """Return the member named by *value*, accepting singular forms."""
        if not value:
            raise ConfigError("An artifact type (workflows or credentials) must be provided.")
        normalized = value.strip().lower()
        for member in cls:
            if normalized in (member.value, member.value.rstrip("s"), member.command):
                return member
        allowed = ", ".join(member.value for member in cls)
        raise ConfigError(f"Unknown artifact type '{value}'. Allowed: {allowed}.")


@dataclass(frozen=True, slots=True)
class ArtifactFile:
    """A workflow or credential definition stored as one JSON file."""

    id: str
    type: ArtifactType
    source_path: Path
    display_name: str


def artifact_dir(data_dir: Path, artifact_type: ArtifactType) -> Path:
    """Return the source-of-truth directory for *artifact_type*."""
    return data_dir / artifact_type.value


def list_artifact_files(directory: Path) -> list[Path]:
    """Return the JSON files directly inside *directory*, sorted by name."""
    if not directory.is_dir():
        return []
    return sorted(path for path in directory.glob("*.json") if path.is_file())


def extract_declared_id(raw_text: str) -> str | None:
    """Return the top-level ``"id"`` string of a JSON-like document.

    Best effort only: credential files are templates and may not be valid
    JSON, so instead of parsing the document this scans it, skipping string
    literals and tracking brace depth, and matches ``"id": "<value>"`` at the
    outermost object level. Returns ``None`` when no such member is found.
    """
    depth = 0
    index = 0
    length = len(raw_text)
    while index < length:
        char = raw_text[index]
        if char == '"':
            if depth == 1:
                match = _ID_MEMBER.match(raw_text, index)
                if match:
                    return _unescape(match.group(1))
            index = _skip_string(raw_text, index)
            continue
        if char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
        index += 1
    return None


def _skip_string(text: str, start: int) -> int:
    index = start + 1
    while index < len(text):
        char = text[index]
        if char == "\\":
            index += 2
            continue
        if char == '"':
            return index + 1
        index += 1
    return index


def _unescape(value: str) -> str:
    try:
        return str(json.loads(f'"{value}"'))
    except ValueError:
        return value


def sort_top_level_keys(payload: Mapping[str, object]) -> dict[str, object]:
    """Return *payload* with its top-level keys in alphabetical order."""
    return {key: payload[key] for key in sorted(payload)}


def filename_for(name: object, artifact_id: str) -> str:
    """Derive a filename from an artifact's ``name``, falling back to its id."""
    stem = _UNSAFE_FILENAME_CHARS.sub("-", name).strip() if isinstance(name, str) else ""
    return f"{stem or artifact_id}.json"


__all__ = [
    "ArtifactFile",
    "ArtifactType",
    "artifact_dir",
    "extract_declared_id",
    "filename_for",
    "list_artifact_files",
    "sort_top_level_keys",
]
