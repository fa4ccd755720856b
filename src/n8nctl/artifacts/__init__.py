"""Synchronisation of workflow and credential files with n8n."""
from __future__ import annotations

from .exporter import ArtifactExporter, ExportReport
from .importer import ArtifactImporter, ImportReport
from .models import (
    ArtifactFile,
    ArtifactType,
    artifact_dir,
    extract_declared_id,
    filename_for,
    list_artifact_files,
    sort_top_level_keys,
)

__all__ = [
    "ArtifactExporter",
    "ArtifactFile",
    "ArtifactImporter",
    "ArtifactType",
    "ExportReport",
    "ImportReport",
    "artifact_dir",
    "extract_declared_id",
    "filename_for",
    "list_artifact_files",
    "sort_top_level_keys",
]
