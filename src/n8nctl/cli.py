"""Typer-powered command line for ``n8nctl``.

Commands run inside the n8n container against the local instance:

* ``configure`` / ``import`` wait for n8n, bootstrap the owner and its API key,
  then import credentials and workflows from the data directory.
* ``export`` writes n8n's current workflows and credentials back into the data
  directory with stable filenames and key order.
"""
from __future__ import annotations

import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from .artifacts import (
    ArtifactExporter,
    ArtifactImporter,
    ArtifactType,
    ExportReport,
    ImportReport,
)
from .bootstrap import (
    AdminTokenStore,
    BootstrapError,
    SqlAdminTokenStore,
    resolve_or_create_api_key,
    resolve_owner,
)
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .http import HttpClient, HttpError, RetryPolicy, is_connection_reset
from .logging import OperationScope, StructuredLogger
from .providers import N8nApi, N8nCli, N8nCliError
from .templates import TemplateEngine, TemplateError

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to n8nctl's YAML config file.",
)

DATA_DIR_OPTION = typer.Option(
    None,
    "--data-dir",
    dir_okay=True,
    file_okay=False,
    help="Directory holding the workflows/ and credentials/ folders.",
)

SKIP_ACTIVATION_OPTION = typer.Option(
    False,
    "--skip-activation",
    help="Import workflows without activating them.",
)

EXPORT_TYPE_ARGUMENT = typer.Argument(
    None,
    metavar="[TYPE]",
    help="Artifact type to export (workflows|credentials). Omit to export both.",
)

EXPORT_ID_OPTION = typer.Option(
    None,
    "--id",
    help="Artifact id to export; repeat for several. Requires TYPE.",
)

CONFIG_JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the configuration as JSON.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        n8n provisioning and artifact sync CLI.

        Bootstraps the owner account and its API key on a fresh n8n instance
        and keeps workflow and credential files in sync with it.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the resolved configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    api: N8nApi
    n8n_cli: N8nCli
    store: AdminTokenStore
    importer: ArtifactImporter
    exporter: ArtifactExporter


def _build_runtime(config: AppConfig) -> RuntimeContext:
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.strict()
    client = HttpClient(
        host=config.service.host,
        port=config.service.port,
        timeout=config.service.timeout,
    )
    api = N8nApi(
        client=client,
        console=console,
        readiness_interval_ms=config.readiness.interval_ms,
    )
    n8n_cli = N8nCli(n8n_bin=config.n8n_bin)
    activation_retry = RetryPolicy(
        max_attempts=config.activation.attempts,
        predicate=is_connection_reset,
        delay_ms=config.activation.delay_ms,
    )
    importer = ArtifactImporter(
        data_dir=config.data_dir,
        cli=n8n_cli,
        api=api,
        templates=templates,
        console=console,
        activation_retry=activation_retry,
    )
    exporter = ArtifactExporter(data_dir=config.data_dir, cli=n8n_cli, console=console)
    return RuntimeContext(
        config=config,
        logger=logger,
        templates=templates,
        api=api,
        n8n_cli=n8n_cli,
        store=SqlAdminTokenStore.from_url(config.database_url),
        importer=importer,
        exporter=exporter,
    )


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    data_dir: Path | None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if data_dir is not None:
        overrides["data_dir"] = str(data_dir)

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    runtime = _build_runtime(config)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None)


def _fail(op: OperationScope, message: str, code: ExitCode, exc: BaseException) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=[str(exc)], rc=int(code))
    raise typer.Exit(code=int(code)) from exc


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the n8nctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    data_dir: Path | None = DATA_DIR_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"n8nctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file, data_dir)


def _bootstrap_api_key(runtime: RuntimeContext) -> str:
    """Wait for n8n, make sure the owner exists and return its API key."""
    runtime.api.wait_until_ready()
    owner = resolve_owner(runtime.api, runtime.config.owner)
    return resolve_or_create_api_key(runtime.store, owner.id, runtime.config.api_key)


def _run_import(ctx: typer.Context, command: str, *, skip_activation: bool) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        command,
        args={"skip_activation": skip_activation},
        target={"kind": "n8n", "data_dir": runtime.config.data_dir},
    ) as op:
        try:
            runtime.config.require_bootstrap_settings()
            api_key = _bootstrap_api_key(runtime)
            credentials = runtime.importer.import_credentials()
            workflows = runtime.importer.import_workflows(
                api_key,
                activate=not skip_activation,
            )
        except (ConfigError, TemplateError) as exc:
            _fail(op, str(exc), ExitCode.VALIDATION, exc)
        except (HttpError, BootstrapError) as exc:
            _fail(op, f"n8n request failed: {exc}", ExitCode.PROVIDER, exc)
        except N8nCliError as exc:
            _fail(op, f"n8n import failed: {exc}", ExitCode.PROVIDER, exc)
        except SQLAlchemyError as exc:
            _fail(op, f"n8n database error: {exc}", ExitCode.ENVIRONMENT, exc)

        _print_import_summary((credentials, workflows))
        context = {
            "credentials": [str(path) for path in credentials.files],
            "workflows": [str(path) for path in workflows.files],
            "active": workflows.active,
            "inactive": workflows.inactive,
        }
        changed = len(credentials.files) + len(workflows.files)
        if workflows.errors:
            op.warning(
                "Imported artifacts with activation errors.",
                errors=workflows.errors,
                changed=changed,
                context=context,
            )
        else:
            op.success("Imported artifacts.", changed=changed, context=context)


def _print_import_summary(reports: tuple[ImportReport, ...]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Type", style="bold")
    table.add_column("Files", justify="right")
    table.add_column("Active", justify="right")
    table.add_column("Errors", justify="right")
    for report in reports:
        active = str(len(report.active)) if report.artifact_type is ArtifactType.WORKFLOWS else "-"
        table.add_row(
            report.artifact_type.value,
            str(len(report.files)),
            active,
            str(len(report.errors)),
        )
    console.print(table)


@app.command("configure")
def configure(
    ctx: typer.Context,
    skip_activation: bool = SKIP_ACTIVATION_OPTION,
) -> None:
    """Bootstrap the owner, then import credentials and workflows."""
    _run_import(ctx, "configure", skip_activation=skip_activation)


@app.command("import")
def import_command(
    ctx: typer.Context,
    skip_activation: bool = SKIP_ACTIVATION_OPTION,
) -> None:
    """Alias of ``configure``."""
    _run_import(ctx, "import", skip_activation=skip_activation)


@app.command("export")
def export_command(
    ctx: typer.Context,
    artifact_type: str | None = EXPORT_TYPE_ARGUMENT,
    ids: list[str] | None = EXPORT_ID_OPTION,
) -> None:
    """Export artifacts from n8n into the data directory."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "export",
        args={"type": artifact_type, "ids": list(ids or [])},
        target={"kind": "n8n", "data_dir": runtime.config.data_dir},
    ) as op:
        try:
            if ids and not artifact_type:
                raise ConfigError("--id requires an artifact TYPE (workflows or credentials).")
            types = [ArtifactType.parse(artifact_type)] if artifact_type else list(ArtifactType)
        except ConfigError as exc:
            _fail(op, str(exc), ExitCode.VALIDATION, exc)

        reports: list[ExportReport] = []
        for kind in types:
            reports.append(runtime.exporter.export_artifacts(kind, ids or None))

        written = [str(path) for report in reports for path in report.written]
        errors = [message for report in reports for message in report.errors]
        for report in reports:
            console.print(
                f"Exported {len(report.written)} {report.artifact_type.value} file(s)"
                f" ({len(report.skipped)} skipped)."
            )
        context = {"written": written}
        if errors:
            op.warning(
                "Exported artifacts with errors.",
                errors=errors,
                changed=len(written),
                context=context,
            )
        else:
            op.success("Exported artifacts.", changed=len(written), context=context)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = CONFIG_JSON_OPTION,
) -> None:
    """Print the resolved configuration with secrets redacted."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config", "path": runtime.config.config_file},
    ) as op:
        data = runtime.config.to_dict()
        if json_output:
            console.print_json(data=data)
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Key", style="bold")
            table.add_column("Value")
            for key, value in _flatten(data):
                table.add_row(key, str(value))
            console.print(table)
        op.success("Reported configuration.", changed=0)


def _flatten(data: dict[str, object], prefix: str = "") -> list[tuple[str, object]]:
    rows: list[tuple[str, object]] = []
    for key, value in data.items():
        path = f"{prefix}{key}"
        if isinstance(value, dict):
            rows.extend(_flatten(value, f"{path}."))
        else:
            rows.append((path, value))
    return rows


def main() -> None:
    """Console script entry point."""
    app()
