"""Import artifacts from the data directory into n8n."""
from __future__ import annotations

import json
import shutil
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from ..http import RetryPolicy
from ..providers.n8n_api import N8nApi
from ..providers.n8n_cli import N8nCli
from ..templates import TemplateEngine
from .models import ArtifactType, artifact_dir, list_artifact_files


@dataclass(slots=True)
class ImportReport:
    """Outcome of importing one artifact type."""

    artifact_type: ArtifactType
    files: list[Path] = field(default_factory=list)
    active: list[str] = field(default_factory=list)
    inactive: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ArtifactImporter:
    """Bulk-import artifacts and activate imported workflows."""

    data_dir: Path
    cli: N8nCli
    api: N8nApi
    templates: TemplateEngine
    console: Console
    activation_retry: RetryPolicy
    environment: Mapping[str, str] | None = None

    def import_artifacts(self, artifact_type: ArtifactType) -> list[Path]:
        """Run ``n8n import:*`` over the type's directory.

        Returns the imported files most-recently-discovered first. Templated
        types are rendered into a temporary directory that is removed once the
        import finishes, whatever its outcome. A failing import raises
        :class:`~n8nctl.providers.n8n_cli.N8nCliError`.
        """
        directory = artifact_dir(self.data_dir, artifact_type)
        file_paths = list_artifact_files(directory)
        if not file_paths:
            return []

        if artifact_type.templated:
            rendered = self.templates.materialize(file_paths, self.environment)
            try:
                self.cli.import_dir(artifact_type.command, rendered)
            finally:
                shutil.rmtree(rendered, ignore_errors=True)
        else:
            self.cli.import_dir(artifact_type.command, directory)

        file_paths.reverse()
        return file_paths

    def import_credentials(self) -> ImportReport:
        """Import credential templates rendered against the environment."""
        report = ImportReport(ArtifactType.CREDENTIALS)
        report.files = self.import_artifacts(ArtifactType.CREDENTIALS)
        return report

    def import_workflows(self, api_key: str, *, activate: bool = True) -> ImportReport:
        """Import workflows, then activate each through the public API.

        n8n reports business failures (e.g. a workflow without a trigger) as
        a ``message`` in the response; those are collected in the report and
        the batch continues.
        """
        report = ImportReport(ArtifactType.WORKFLOWS)
        report.files = self.import_artifacts(ArtifactType.WORKFLOWS)
        if not activate:
            return report

        for path in report.files:
            workflow_id = _declared_workflow_id(path)
            if workflow_id is None:
                message = f"Cannot activate {path}: no readable \"id\" in the file."
                self.console.print(f"[red]{escape(message)}[/red]")
                report.errors.append(message)
                continue

            response = self.api.activate_workflow(
                workflow_id,
                api_key=api_key,
                retry=self.activation_retry,
            )
            error = response.get("message")
            if error:
                message = f"Failed to activate workflow {workflow_id} ({path.name}): {error}"
                self.console.print(f"[red]{escape(message)}[/red]")
                report.errors.append(message)
                continue

            name = escape(str(response.get("name") or workflow_id))
            if response.get("active"):
                report.active.append(workflow_id)
                self.console.print(f'The workflow "{name}" set to active.')
            else:
                report.inactive.append(workflow_id)
                self.console.print(f'The workflow "{name}" set to inactive.')

        return report


def _declared_workflow_id(path: Path) -> str | None:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    value = payload.get("id")
    return str(value) if value else None


__all__ = ["ArtifactImporter", "ImportReport"]
