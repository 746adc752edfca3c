"""checklints CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console

from checklints import __version__
from checklints.config import Settings, load_settings, user_checklists_dir, user_templates_dir
from checklints.errors import CacheIOError, ConfigError, ParseError, RepositoryError


@click.group()
@click.version_option(version=__version__, prog_name="checklints")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output (debug logging).")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """checklints - check a repository against declarative rule sets."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _settings_or_exit(overrides: dict[str, object] | None = None) -> Settings:
    try:
        return load_settings(overrides)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


@main.command()
@click.argument(
    "project_dir",
    type=click.Path(file_okay=False, path_type=Path),
    required=False,
)
@click.option(
    "--check",
    "-c",
    "checks",
    multiple=True,
    type=click.Path(exists=True, path_type=Path),
    help="Rule document or directory of rule documents (repeatable).",
)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["rich", "json", "porcelain"]),
    default=None,
    help="Output format (default: rich if TTY, porcelain if piped).",
)
@click.option("--no-cache", is_flag=True, help="Neither read nor write the fact cache.")
@click.option("--no-read-cache", is_flag=True, help="Recompute facts instead of reading the cache.")
@click.option("--no-write-cache", is_flag=True, help="Do not store computed facts.")
@click.option("--clear-cache", is_flag=True, help="Empty the fact cache before running.")
@click.option("--no-user-checklists", is_flag=True, help="Skip the user-wide rule documents.")
@click.option("--fail-fast", is_flag=True, help="Stop after the first failing check.")
@click.option("--jobs", "-j", type=int, default=None, help="Worker threads (default: 8).")
@click.option(
    "--timeout",
    "command_timeout",
    type=float,
    default=None,
    help="Per-command timeout in seconds (default: 30).",
)
def check(
    *,
    project_dir: Path | None,
    checks: tuple[Path, ...],
    fmt: str | None,
    no_cache: bool,
    no_read_cache: bool,
    no_write_cache: bool,
    clear_cache: bool,
    no_user_checklists: bool,
    fail_fast: bool,
    jobs: int | None,
    command_timeout: float | None,
) -> None:
    """Check PROJECT_DIR (default: current directory) against its rule documents.

    Exit codes: 0 = all checks pass, 1 = a check failed or a fact or
    condition errored, 2 = invalid rule document, configuration, or
    repository.
    """
    from checklints.engine.runner import check_repository
    from checklints.report.formatters import (
        format_json,
        format_porcelain,
        render_parse_error,
        render_report,
    )
    from checklints.rules.discovery import discover_rule_files

    project_root = project_dir or Path.cwd()

    # Resolve output format: explicit flag > TTY detection.
    if fmt is None:
        fmt = "rich" if sys.stdout.isatty() else "porcelain"

    # Flags only ever switch behaviour on; unset flags defer to config and env.
    settings = _settings_or_exit(
        {
            "no_cache": True if no_cache else None,
            "read_cache": False if no_read_cache else None,
            "write_cache": False if no_write_cache else None,
            "clear_cache": True if clear_cache else None,
            "user_checklists": False if no_user_checklists else None,
            "fail_fast": True if fail_fast else None,
            "jobs": jobs,
            "command_timeout": command_timeout,
        }
    )

    user_dir = user_checklists_dir() if settings.user_checklists else None
    rule_files = discover_rule_files(project_root, extra=checks, user_dir=user_dir)
    if not rule_files:
        click.echo(f"Error: no rule documents found for {project_root}", err=True)
        sys.exit(2)

    try:
        result = check_repository(
            project_root,
            rule_files,
            cache_path=settings.cache_path,
            clear_cache=settings.clear_cache,
            template_dirs=[user_templates_dir()],
            jobs=settings.jobs,
            fail_fast=settings.fail_fast,
            command_timeout=settings.command_timeout,
            read_cache=settings.read_cache,
            write_cache=settings.write_cache,
        )
    except ParseError as exc:
        render_parse_error(exc, Console(stderr=True))
        sys.exit(2)
    except (RepositoryError, OSError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)

    if fmt == "rich":
        render_report(result, Console())
    else:
        output = format_json(result) if fmt == "json" else format_porcelain(result)
        if output:
            click.echo(output)

    sys.exit(result.report.exit_code)


# ---------------------------------------------------------------------------
# dump
# ---------------------------------------------------------------------------


@main.command()
@click.argument("rule_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["yaml", "json"]),
    default="yaml",
    help="Output format (default: yaml).",
)
def dump(*, rule_file: Path, fmt: str) -> None:
    """Validate RULE_FILE and print it re-serialized in canonical form."""
    from checklints.report.formatters import render_parse_error
    from checklints.rules.loader import dump as dump_rules
    from checklints.rules.loader import dumps, load_path

    try:
        rule_set = load_path(rule_file)
    except ParseError as exc:
        render_parse_error(exc, Console(stderr=True))
        sys.exit(2)

    if fmt == "json":
        click.echo(json.dumps(dump_rules(rule_set), indent=2))
    else:
        click.echo(dumps(rule_set), nl=False)


# ---------------------------------------------------------------------------
# cache
# ---------------------------------------------------------------------------


@main.group()
def cache() -> None:
    """Inspect or empty the persistent fact cache."""


def _cache_path(settings: Settings) -> Path:
    from checklints.engine.cache import default_cache_path

    return settings.cache_path or default_cache_path()


@cache.command("info")
def cache_info() -> None:
    """Show the cache location and number of entries."""
    from checklints.engine.cache import open_cache

    path = _cache_path(_settings_or_exit())
    click.echo(f"Cache: {path}")
    if not path.is_file():
        click.echo("Entries: 0 (no cache file)")
        return
    try:
        store = open_cache(path)
    except CacheIOError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)
    try:
        stats = store.stats()
    finally:
        store.close()
    click.echo(f"Entries: {stats['entries']}")


@cache.command("clear")
def cache_clear() -> None:
    """Delete every cached fact."""
    from checklints.engine.cache import open_cache

    path = _cache_path(_settings_or_exit())
    if not path.is_file():
        click.echo(f"No cache at {path}")
        return
    try:
        store = open_cache(path)
        try:
            store.clear()
        finally:
            store.close()
    except CacheIOError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)
    click.echo(f"Cleared cache {path}")
