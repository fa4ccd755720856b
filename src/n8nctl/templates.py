"""Jinja2 rendering for artifact files that embed environment values.

Credential files in the data directory are templates such as::

    {"id": "abc", "data": {"apiKey": "{{ API_SECRET }}"}}

They are rendered with the process environment as context into a private
temporary directory which ``n8n import:credentials`` then consumes. Variables
are strict: a reference to a missing variable fails loudly instead of
importing an empty secret.
"""
from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

import jinja2


class TemplateError(RuntimeError):
    """Raised when an artifact template cannot be rendered."""


@dataclass(slots=True)
class TemplateEngine:
    """Render artifact templates with strict variables."""

    environment: jinja2.Environment

    @classmethod
    def strict(cls) -> TemplateEngine:
        """Return an engine that rejects undefined variables."""
        environment = jinja2.Environment(  # noqa: S701 - output is JSON, not HTML
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        return cls(environment=environment)

    def render_text(
        self,
        source: str,
        context: Mapping[str, object],
        *,
        name: str = "<string>",
    ) -> str:
        """Render template *source*; *name* is used in error messages."""
        try:
            return self.environment.from_string(source).render(dict(context))
        except jinja2.TemplateError as exc:
            raise TemplateError(f"Failed to render {name}: {exc.message or exc}") from exc

    def render_to_path(
        self,
        source: Path,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o600,
    ) -> None:
        """Render *source* into *destination* with permissions *mode*."""
        rendered = self.render_text(
            source.read_text(encoding="utf-8"),
            context,
            name=str(source),
        )
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(rendered, encoding="utf-8")
        os.chmod(destination, mode)

    def materialize(
        self,
        file_paths: Iterable[Path],
        context: Mapping[str, object] | None = None,
    ) -> Path:
        """Render each file into a fresh temporary directory and return it.

        *context* defaults to the process environment. The caller owns the
        directory and must remove it once the rendered files are consumed;
        on a rendering failure it is removed here before re-raising.
        """
        variables = dict(os.environ) if context is None else dict(context)
        directory = Path(tempfile.mkdtemp(prefix="n8nctl-"))
        try:
            for path in file_paths:
                self.render_to_path(path, directory / path.name, variables)
        except BaseException:
            shutil.rmtree(directory, ignore_errors=True)
            raise
        return directory


__all__ = ["TemplateEngine", "TemplateError"]
