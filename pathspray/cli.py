"""Rich CLI interface for pathspray."""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from pathspray import __version__
from pathspray.core.checkpoint import open_store
from pathspray.core.config import ConfigurationError, Settings, load_settings
from pathspray.core.logger import close_logging, get_logger, setup_logging
from pathspray.core.runner import load_targets, run_spray
from pathspray.models.task import RunSummary, TaskState

app = typer.Typer(
    name="pathspray",
    help="Concurrent web path fuzzer",
    add_completion=False,
)
# Results and logs share stderr; the summary goes there too
console = Console(stderr=True)
logger = get_logger(__name__)


def _show_banner() -> None:
    """Display the pathspray banner with usage hints."""
    console.print(f"  [bold blue]pathspray[/bold blue] v{__version__}")
    console.print()
    console.print("  [bold]Usage:[/bold]")
    console.print("    [green]pathspray scan -u http://example.com -d words.txt[/green]")
    console.print("    [green]pathspray scan -l urls.txt -w 'admin{?d#2}' -e php,bak[/green]")
    console.print("    [green]pathspray scan --resume-from stat.json[/green]")
    console.print()
    console.print("  [dim]Run[/dim] [bold]pathspray --help[/bold] [dim]for all options[/dim]")
    console.print()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]pathspray[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None, "--version", "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version",
    ),
    debug: bool = typer.Option(
        False, "--debug",
        help="Enable debug logging",
    ),
    verbose: bool = typer.Option(
        False, "--verbose",
        help="Log task progress",
    ),
    log_json: bool = typer.Option(
        False, "--log-json",
        help="Emit logs as JSON lines",
    ),
    log_file: Optional[Path] = typer.Option(
        None, "--log-file",
        help="Append logs to a file instead of stderr",
    ),
) -> None:
    """pathspray - concurrent web path fuzzer."""
    # Emitted results are logged at warning level, so they stay visible
    log_level = "DEBUG" if debug else "INFO" if verbose else "WARNING"
    setup_logging(level=log_level, json_format=log_json, log_file=log_file)
    ctx.call_on_close(close_logging)

    if ctx.invoked_subcommand is None:
        _show_banner()


def _parse_replaces(pairs: Optional[list[str]]) -> Optional[dict[str, str]]:
    if not pairs:
        return None
    replaces = {}
    for pair in pairs:
        old, sep, new = pair.partition(":")
        if not sep or not old:
            raise ConfigurationError(f"Invalid replace {pair!r}, expected old:new")
        replaces[old] = new
    return replaces


def _section(**values: Any) -> dict[str, Any]:
    """Keep only the options that were actually given."""
    return {
        key: value
        for key, value in values.items()
        if value is not None and value is not False and value != []
    }


def build_overrides(**options: Any) -> dict[str, dict[str, Any]]:
    """Map CLI options onto settings sections."""
    sections = {
        "word": _section(
            word=options.get("word"),
            dictionaries=options.get("dictionaries"),
            rules=options.get("rules"),
            rule_filter=options.get("rule_filter"),
            extensions=options.get("extensions"),
            remove_extensions=options.get("remove_extensions"),
            exclude_extensions=options.get("exclude_extensions"),
            uppercase=options.get("uppercase"),
            lowercase=options.get("lowercase"),
            prefixes=options.get("prefixes"),
            suffixes=options.get("suffixes"),
            replaces=_parse_replaces(options.get("replaces")),
            offset=options.get("offset"),
            limit=options.get("limit"),
        ),
        "classifier": _section(
            match=options.get("match"),
            filter=options.get("filter"),
            recursive=options.get("recursive"),
            white_status=options.get("white_status"),
            black_status=options.get("black_status"),
            fuzzy_status=options.get("fuzzy_status"),
            distance=options.get("distance"),
            duplicate_policy=options.get("duplicate_policy"),
            depth=options.get("depth"),
        ),
        "breaker": _section(
            force=options.get("force"),
            check_period=options.get("check_period"),
            error_period=options.get("error_period"),
            break_threshold=options.get("error_threshold"),
        ),
        "request": _section(
            mode=options.get("mode"),
            timeout=options.get("timeout"),
            headers=options.get("headers"),
            extractors=options.get("extractors"),
        ),
        "run": _section(
            pool_size=options.get("pool_size"),
            threads=options.get("threads"),
            deadline=options.get("deadline"),
            stat_file=options.get("stat_file"),
            check_only=options.get("check_only"),
            output_file=options.get("output_file"),
            fuzzy=options.get("fuzzy"),
            fuzzy_file=options.get("fuzzy_file"),
            output_format=options.get("output_format"),
            probes=options.get("probes"),
        ),
    }
    if options.get("no_random_baseline"):
        sections["request"]["random_baseline"] = False
    return {name: values for name, values in sections.items() if values}


@app.command()
def scan(
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Base URL(s), comma separated"),
    url_file: Optional[Path] = typer.Option(None, "--list", "-l", help="File with one base URL per line"),
    resume_from: Optional[Path] = typer.Option(None, "--resume-from", help="Resume from a checkpoint file"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML settings file"),
    word: Optional[str] = typer.Option(None, "--word", "-w", help="Word mask, e.g. 'admin{?d#2}'"),
    dictionaries: Optional[list[Path]] = typer.Option(None, "--dict", "-d", help="Dictionary file (repeatable)"),
    rules: Optional[list[Path]] = typer.Option(None, "--rules", "-r", help="Rule file (repeatable)"),
    rule_filter: Optional[str] = typer.Option(None, "--rule-filter", help="Rejection rule applied to every candidate"),
    extensions: Optional[str] = typer.Option(None, "--extension", "-e", help="Extensions to add, comma separated"),
    remove_extensions: Optional[str] = typer.Option(None, "--remove-extension", help="Extensions to strip"),
    exclude_extensions: Optional[str] = typer.Option(None, "--exclude-extension", help="Extensions to drop"),
    uppercase: bool = typer.Option(False, "--uppercase", help="Uppercase every candidate"),
    lowercase: bool = typer.Option(False, "--lowercase", help="Lowercase every candidate"),
    prefixes: Optional[list[str]] = typer.Option(None, "--prefix", help="Prefix (repeatable)"),
    suffixes: Optional[list[str]] = typer.Option(None, "--suffix", help="Suffix (repeatable)"),
    replaces: Optional[list[str]] = typer.Option(None, "--replace", help="old:new substitution (repeatable)"),
    offset: Optional[int] = typer.Option(None, "--offset", help="Start at this candidate index"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Request at most this many candidates"),
    match: Optional[str] = typer.Option(None, "--match", help="Keep responses matching this expression"),
    filter: Optional[str] = typer.Option(None, "--filter", help="Drop responses matching this expression"),
    recursive: Optional[str] = typer.Option(None, "--recursive", help="Recurse when this expression holds"),
    depth: Optional[int] = typer.Option(None, "--depth", help="Maximum recursion depth"),
    white_status: Optional[str] = typer.Option(None, "--white-status", help="Status codes always emitted"),
    black_status: Optional[str] = typer.Option(None, "--black-status", help="Status codes always discarded"),
    fuzzy_status: Optional[str] = typer.Option(None, "--fuzzy-status", help="Status codes routed to the fuzzy stream"),
    distance: Optional[int] = typer.Option(None, "--distance", help="Simhash distance treated as duplicate"),
    duplicate_policy: Optional[str] = typer.Option(None, "--duplicates", help="discard or fuzzy"),
    force: bool = typer.Option(False, "--force", help="Never trip the circuit breaker"),
    check_period: Optional[int] = typer.Option(None, "--check-period", help="Requests per error window"),
    error_period: Optional[int] = typer.Option(None, "--error-period", help="Errors between consecutive checks"),
    error_threshold: Optional[int] = typer.Option(None, "--error-threshold", help="Errors that trip the breaker"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="path or host"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Request timeout in seconds"),
    headers: Optional[list[str]] = typer.Option(None, "--header", "-H", help="'Name: value' (repeatable)"),
    extractors: Optional[list[str]] = typer.Option(None, "--extract", help="url, ip, mail, js or name:regex"),
    no_random_baseline: bool = typer.Option(False, "--no-random-baseline", help="Skip soft-404 seeding"),
    pool_size: Optional[int] = typer.Option(None, "--pool", "-P", help="Tasks run concurrently"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", help="Workers per task"),
    deadline: Optional[float] = typer.Option(None, "--deadline", help="Stop the run after this many seconds"),
    stat_file: Optional[Path] = typer.Option(None, "--stat-file", help="Checkpoint file (.json or .db)"),
    check_only: bool = typer.Option(False, "--check-only", help="Request each base URL once"),
    output_file: Optional[Path] = typer.Option(None, "--output", "-f", help="Result file"),
    fuzzy: bool = typer.Option(False, "--fuzzy", help="Write the fuzzy stream"),
    fuzzy_file: Optional[Path] = typer.Option(None, "--fuzzy-file", help="Fuzzy result file"),
    output_format: Optional[str] = typer.Option(None, "--format", help="json or probe"),
    probes: Optional[str] = typer.Option(None, "--probe", help="Probe fields, comma separated"),
) -> None:
    """Spray candidate paths against one or more base URLs."""
    options = dict(locals())
    try:
        overrides = build_overrides(**options)
        settings = load_settings(config, **overrides)
        urls = [] if resume_from else load_targets(url, url_file, sys.stdin)
    except ValidationError as e:
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            console.print(f"[red]Invalid option {location}: {error['msg']}[/red]")
        raise typer.Exit(1)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    try:
        summary = asyncio.run(_run_scan(settings, urls, resume_from))
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        raise typer.Exit(130)

    _display_summary(summary)
    if summary.outcome == "failure":
        raise typer.Exit(1)


async def _run_scan(settings: Settings, urls: list[str], resume_from: Optional[Path]) -> RunSummary:
    """Execute the run with Ctrl-C mapped to a controlled shutdown."""
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except NotImplementedError:
        logger.debug("Signal handlers unavailable, Ctrl-C aborts immediately")

    async with open_store(settings.run.stat_file) as store:
        if resume_from is None:
            return await run_spray(settings, urls, store=store, cancel=cancel)
        async with open_store(resume_from) as resume_store:
            return await run_spray(settings, resume_store=resume_store, store=store, cancel=cancel)


def _display_summary(summary: RunSummary) -> None:
    """Display the run summary."""
    colors = {"success": "green", "partial": "yellow", "failure": "red"}
    color = colors[summary.outcome]

    table = Table(title=f"[bold]Run {summary.outcome}[/bold]", border_style=color, show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white", justify="right")
    table.add_row("Requests", str(summary.requests))
    table.add_row("Errors", str(summary.errors))
    table.add_row("Emitted", f"[bold green]{summary.emitted}[/bold green]")
    table.add_row("Fuzzy", str(summary.fuzzy))
    table.add_row("Duplicates", str(summary.duplicates))
    table.add_row("Recursed", str(summary.recursed))
    table.add_row(
        "Tasks",
        f"{summary.tasks_completed} completed, {summary.tasks_tripped} tripped, "
        f"{summary.tasks_cancelled} cancelled",
    )
    table.add_row("Duration", f"{summary.duration_seconds:.1f}s")
    console.print(table)

    unfinished = [t for t in summary.tasks if t.state != TaskState.COMPLETED]
    if not unfinished:
        return

    tasks = Table(title="Unfinished tasks", border_style="yellow")
    tasks.add_column("Base URL", style="cyan")
    tasks.add_column("State")
    tasks.add_column("Resume offset", justify="right")
    tasks.add_column("Reason", style="dim")
    for report in unfinished:
        tasks.add_row(
            report.base_url,
            report.state.value,
            str(report.checkpoint_offset),
            report.reason or "",
        )
    console.print(tasks)
    if summary.incomplete:
        console.print("[dim]Resume with[/dim] [bold]pathspray scan --resume-from <stat file>[/bold]")


@app.command(name="config")
def write_config(
    output: Path = typer.Argument(Path("pathspray.yaml"), help="Where to write the settings"),
) -> None:
    """Write the effective settings (defaults plus PATHSPRAY_ environment) as YAML."""
    try:
        settings = load_settings()
    except ValidationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    settings.to_yaml(output)
    console.print(f"[green]Settings written to {output}[/green]")


if __name__ == "__main__":
    app()
