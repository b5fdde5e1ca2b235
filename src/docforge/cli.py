# src/docforge/cli.py
"""docforge Command Line Interface.

Entry point for the docforge CLI tool.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from docforge import __version__
from docforge.contracts.errors import ConfigError, CycleError
from docforge.core.config import DocforgeSettings, load_settings
from docforge.core.context import ProjectContext

if TYPE_CHECKING:
    from docforge.engine.orchestrator import ExecutionEngine
    from docforge.engine.report import RunReport
    from docforge.plugins.manager import PluginManager

__all__ = [
    "app",
    "load_settings",  # Re-exported from config for convenience
]

# Module-level singleton for plugin manager
_plugin_manager_cache: PluginManager | None = None


def _get_plugin_manager() -> PluginManager:
    """Get initialized plugin manager (singleton).

    Returns:
        PluginManager with built-in and entry-point plugins registered
    """
    global _plugin_manager_cache

    from docforge.engine.orchestrator import default_plugin_manager

    if _plugin_manager_cache is None:
        _plugin_manager_cache = default_plugin_manager()
    return _plugin_manager_cache


app = typer.Typer(
    name="docforge",
    help="docforge: dependency-ordered, budget-aware document generation.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"docforge version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # We handle existence check ourselves for better error message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """docforge: dependency-ordered, budget-aware document generation."""
    from docforge.core.logging import configure_logging

    log_level = "DEBUG" if verbose else "WARNING"
    configure_logging(json_output=json_logs, level=log_level)

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


# === Error display ===


def _format_validation_error(
    title: str,
    message: str,
    hint: str | None = None,
    details: list[str] | None = None,
) -> None:
    """Display a formatted validation error with optional hint and details."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    console = Console(stderr=True)

    content = Text()
    content.append(message, style="white")

    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")

    if hint:
        content.append("\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    panel = Panel(
        content,
        title=f"[red bold]❌ {title}[/]",
        border_style="red",
        padding=(0, 1),
    )
    console.print(panel)


def _load_settings_or_exit(settings: str) -> DocforgeSettings:
    """Load settings, printing a formatted error and exiting 1 on failure."""
    settings_path = Path(settings).expanduser()
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        _format_validation_error(
            title="YAML Syntax Error",
            message=f"Failed to parse {settings_path.name}",
            details=[str(e.problem)] if hasattr(e, "problem") else None,
            hint="Check for unclosed brackets, incorrect indentation, or invalid characters.",
        )
        raise typer.Exit(1) from None
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Settings file does not exist: {settings}",
            hint="Check the path and ensure the file exists.",
        )
        raise typer.Exit(1) from None
    except ValidationError as e:
        # Must precede ValueError: ValidationError subclasses it
        details = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            details.append(f"{loc}: {error['msg']}")
        _format_validation_error(
            title="Configuration Validation Failed",
            message=f"Invalid settings in {settings_path.name}",
            details=details,
            hint="Check field names, types, and required values.",
        )
        raise typer.Exit(1) from None


def _build_engine_or_exit(config: DocforgeSettings, **overrides: object) -> ExecutionEngine:
    """Assemble the engine, printing registry and graph errors and exiting 1 on failure."""
    from docforge.engine.orchestrator import ExecutionEngine

    try:
        return ExecutionEngine.from_settings(config, plugin_manager=_get_plugin_manager(), **overrides)  # type: ignore[arg-type]
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Processor registry does not exist: {config.registry}",
            hint="The registry path is resolved relative to the settings file.",
        )
        raise typer.Exit(1) from None
    except ConfigError as e:
        _format_validation_error(
            title="Processor Registry Invalid",
            message=f"{len(e.issues)} issue(s) found",
            details=[str(issue) for issue in e.issues],
            hint="Fix every listed declaration; nothing runs until the registry is valid.",
        )
        raise typer.Exit(1) from None
    except CycleError as e:
        _format_validation_error(
            title="Dependency Cycle",
            message=str(e),
            hint="Each processor in the cycle depends on the next; remove one of the dependencies.",
        )
        raise typer.Exit(1) from None


def _load_context_or_exit(context: Path | None) -> ProjectContext:
    if context is None:
        return ProjectContext.empty()
    try:
        return ProjectContext.from_markdown(context.expanduser().read_text(encoding="utf-8"))
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Context file does not exist: {context}",
        )
        raise typer.Exit(1) from None


# === Commands ===


@app.command()
def validate(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Validate settings, the processor registry and its dependency graph."""
    config = _load_settings_or_exit(settings)
    engine = _build_engine_or_exit(config)

    typer.echo("✅ Configuration valid!")
    typer.echo(f"  Processors: {len(engine.registry)}")
    typer.echo(f"  Backends: {', '.join(p.backend_id for p in engine.pool.profiles)}")
    typer.echo(f"  Graph: {engine.graph.node_count} nodes, {engine.graph.edge_count} edges")
    for warning in engine.graph.warnings():
        typer.secho(f"  ⚠ {warning.message}: {', '.join(warning.keys)}", fg=typer.colors.YELLOW)


@app.command()
def plan(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    context: Path | None = typer.Option(
        None,
        "--context",
        "-c",
        help="Markdown project context file.",
    ),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Show the execution order and each task's budget verdict without calling any backend."""
    config = _load_settings_or_exit(settings)
    engine = _build_engine_or_exit(config)
    previews = engine.preview(_load_context_or_exit(context))

    if output_format == "json":
        rows = []
        for preview in previews:
            verdict = preview.verdict
            rows.append(
                {
                    "key": preview.key,
                    "order_index": preview.order_index,
                    "level": preview.level,
                    "backend_id": preview.backend_id,
                    "estimated_tokens": verdict.estimated_tokens if verdict else None,
                    "available_tokens": verdict.available_tokens if verdict else None,
                    "utilization_pct": verdict.utilization_pct if verdict else None,
                    "needs_fallback": verdict.needs_fallback if verdict else None,
                    "warnings": list(verdict.warnings) if verdict else [],
                }
            )
        typer.echo(json.dumps(rows, indent=2))
        return

    typer.echo(f"Execution order ({len(previews)} processor(s)):")
    for preview in previews:
        verdict = preview.verdict
        if verdict is None:
            typer.secho(f"  {preview.order_index + 1}. {preview.key}: no backend available", fg=typer.colors.RED)
            continue
        marker = "fallback needed" if verdict.needs_fallback else "fits"
        typer.echo(
            f"  {preview.order_index + 1}. {preview.key} [level {preview.level}] on {preview.backend_id}: "
            f"{verdict.estimated_tokens}/{verdict.available_tokens} tokens "
            f"({verdict.utilization_pct:.1f}%) {marker}"
        )
        for warning in verdict.warnings:
            typer.secho(f"       ⚠ {warning}", fg=typer.colors.YELLOW)


@app.command()
def run(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    context: Path | None = typer.Option(
        None,
        "--context",
        "-c",
        help="Markdown project context file.",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Directory to write <key>.md artifacts into.",
    ),
    slow_threshold: float | None = typer.Option(
        None,
        "--slow-threshold",
        min=0,
        help="Flag tasks slower than this many milliseconds.",
    ),
    max_concurrency: int | None = typer.Option(
        None,
        "--max-concurrency",
        "-j",
        min=1,
        help="Maximum tasks executing at once.",
    ),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show task starts and retries.",
    ),
) -> None:
    """Execute every processor and print the run report.

    Exits 0 when no task failed, 1 otherwise.
    """
    from docforge.cli_formatters import create_console_formatters, create_json_formatters, subscribe_formatters
    from docforge.core.events import EventBus
    from docforge.engine.cancellation import CancellationToken, cancel_on_signals

    config = _load_settings_or_exit(settings)
    project_context = _load_context_or_exit(context)

    event_bus = EventBus()
    formatters = create_json_formatters() if output_format == "json" else create_console_formatters(verbose)
    subscribe_formatters(event_bus, formatters)

    engine = _build_engine_or_exit(
        config,
        event_bus=event_bus,
        max_concurrency=max_concurrency,
        slow_threshold_ms=slow_threshold,
    )

    with cancel_on_signals(CancellationToken()) as token:
        report = engine.run(project_context, cancellation=token)

    if output is not None:
        _write_artifacts(report, output)

    if output_format == "json":
        typer.echo(json.dumps({"event": "run_report", **report.to_dict()}))
    else:
        _print_report_details(report)

    raise typer.Exit(report.exit_code)


def _write_artifacts(report: RunReport, output: Path) -> None:
    output.mkdir(parents=True, exist_ok=True)
    for key, artifact in report.artifacts.items():
        (output / f"{key}.md").write_text(artifact, encoding="utf-8")


def _print_report_details(report: RunReport) -> None:
    if report.soft_degradations:
        typer.echo("\nDegraded (content reduced by fallback):")
        for outcome in report.soft_degradations:
            assert outcome.fallback is not None
            typer.echo(
                f"  {outcome.key}: {outcome.strategy_used.value}, "
                f"{outcome.fallback.original_tokens} → {outcome.fallback.final_tokens} tokens "
                f"(-{outcome.fallback.reduction_pct:.1f}%)"
            )
    if report.hard_failures:
        typer.echo("\nFailed:", err=True)
        for outcome in report.hard_failures:
            kind = outcome.error_kind.value if outcome.error_kind else "unknown"
            typer.echo(f"  {outcome.key} [{kind}]: {outcome.error_message}", err=True)
    slowest = report.slowest
    if slowest:
        typer.echo("\nSlowest tasks:")
        for outcome in slowest:
            typer.echo(f"  {outcome.key}: {outcome.duration_ms:.0f} ms")


# === Plugins ===

plugins_app = typer.Typer(help="Plugin management commands.")
app.add_typer(plugins_app, name="plugins")


@dataclass(frozen=True)
class PluginInfo:
    """Metadata for a registered plugin.

    Attributes:
        name: The plugin identifier used in configuration files.
        description: Human-readable description of the plugin's purpose.
    """

    name: str
    description: str


def _describe(cls: type) -> str:
    doc = cls.__doc__ or ""
    return doc.strip().splitlines()[0] if doc.strip() else ""


@plugins_app.command("list")
def plugins_list() -> None:
    """List registered processor handlers and backend plugins."""
    manager = _get_plugin_manager()
    groups = {
        "Processor handlers": [PluginInfo(cls.name, _describe(cls)) for cls in manager.get_processors()],
        "Backends": [PluginInfo(cls.name, _describe(cls)) for cls in manager.get_backends()],
    }
    for title, infos in groups.items():
        typer.echo(f"{title}:")
        if not infos:
            typer.echo("  (none)")
        for info in sorted(infos, key=lambda i: i.name):
            typer.echo(f"  {info.name:<16} {info.description}")


if __name__ == "__main__":
    app()
