"""Typer application and CLI entry point for komikcast.

Every data command builds a :class:`~komikcast.session.Session` from the
resolved settings, loads one :class:`~komikcast.fetcher.Resource` (served
from the persistent cache when fresh) and prints it through
:mod:`komikcast.output`. The ``cache`` sub-group inspects and clears the
on-disk cache and the ``config`` sub-group shows and edits the saved
settings.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. Unhandled exceptions are written to a crash log under
the data directory.
"""

from __future__ import annotations

import asyncio
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from komikcast import __version__, build_api
from komikcast.exit_codes import EXIT_GENERIC_FAILURE
from komikcast.fetcher import DataFetcher, Resource
from komikcast.models import Settings
from komikcast.session import Session

T = TypeVar("T")

app = typer.Typer(
    name="komikcast",
    help="Browse the Komikcast comic API from the terminal.",
    no_args_is_help=True,
    add_completion=True,
    rich_markup_mode="rich",
)

cache_app = typer.Typer(no_args_is_help=True)
app.add_typer(cache_app, name="cache", help="Inspect and clear the response cache.")

config_app = typer.Typer(no_args_is_help=True)
app.add_typer(config_app, name="config", help="View and change saved settings.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"komikcast {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    base_url: Optional[str] = typer.Option(
        None, "--base-url", help="API base URL (overrides config and KOMIKCAST_BASE_URL)."
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the response cache."),
    refresh: bool = typer.Option(
        False, "--refresh", help="Ignore cached data and store a fresh copy."
    ),
    output_file: Optional[str] = typer.Option(
        None, "-o", "--output", help="Output file path."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~komikcast.output.OutputManager` from
    CLI flags and stores the connection options in ``ctx.obj``.
    """
    from komikcast.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(
        OutputManager(
            format=fmt,
            no_color=no_color,
            quiet=quiet,
            verbose=verbose,
            output_file=output_file,
        )
    )

    ctx.ensure_object(dict)
    ctx.obj["base_url"] = base_url
    ctx.obj["no_cache"] = no_cache
    ctx.obj["refresh"] = refresh


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _settings(ctx: typer.Context) -> Settings:
    from komikcast.config import resolve_settings

    obj = ctx.obj or {}
    return resolve_settings(cli_base_url=obj.get("base_url"), cli_no_cache=obj.get("no_cache", False))


def _run(work: Callable[[], Awaitable[T]]) -> T:
    """Run *work* on a fresh event loop, turning komikcast errors into exits."""
    from komikcast.exceptions import KomikcastError
    from komikcast.output import error

    try:
        return asyncio.run(work())
    except KomikcastError as exc:
        error(exc.message)
        raise typer.Exit(code=exc.exit_code) from None


def _show(ctx: typer.Context, make_resource: Callable[[DataFetcher], Resource]) -> None:
    """Load one resource and print its data, or exit with its error."""
    from komikcast.exceptions import ErrorKind
    from komikcast.output import debug, error, format_response, suggest

    refresh = (ctx.obj or {}).get("refresh", False)

    async def _load() -> Resource:
        async with build_api(_settings(ctx)) as session:
            resource = make_resource(session.fetcher)
            if refresh:
                await resource.refetch()
            else:
                await resource.load()
            return resource

    resource = _run(_load)
    if resource.error is not None:
        debug(f"{resource.cache_key}: {resource.error!r}")
        error(resource.error.message)
        if resource.error.kind is ErrorKind.NOT_FOUND:
            suggest("Use 'komikcast search KEYWORD' to find the right endpoint.")
        raise typer.Exit(code=resource.error.exit_code)
    format_response(resource.data)


# ------------------------------------------------------------------ #
# Data commands
# ------------------------------------------------------------------ #


@app.command("recommended")
def recommended_command(ctx: typer.Context) -> None:
    """List recommended comics."""
    _show(ctx, lambda fetcher: fetcher.resource("recommended"))


@app.command("popular")
def popular_command(ctx: typer.Context) -> None:
    """List popular comics."""
    _show(ctx, lambda fetcher: fetcher.resource("popular"))


@app.command("latest")
def latest_command(
    ctx: typer.Context,
    page: int = typer.Option(1, "--page", "-p", help="Page number (1-1000)."),
) -> None:
    """List the newest chapter updates.

    Example::

        komikcast latest --page 2
    """
    _show(ctx, lambda fetcher: fetcher.resource("latest", page))


@app.command("detail")
def detail_command(
    ctx: typer.Context,
    endpoint: str = typer.Argument(help="Comic endpoint, e.g. 'solo-leveling'."),
) -> None:
    """Show a comic's details and chapter list."""
    _show(ctx, lambda fetcher: fetcher.resource("detail", endpoint))


@app.command("search")
def search_command(
    ctx: typer.Context,
    keyword: str = typer.Argument(help="Search keyword (at least 2 characters)."),
) -> None:
    """Search comics by title."""
    _show(ctx, lambda fetcher: fetcher.resource("search", keyword))


@app.command("read")
def read_command(
    ctx: typer.Context,
    endpoint: str = typer.Argument(help="Chapter endpoint, e.g. 'solo-leveling-chapter-1'."),
) -> None:
    """Show a chapter's title and image panels."""
    _show(ctx, lambda fetcher: fetcher.resource("chapter", endpoint))


@app.command("genres")
def genres_command(ctx: typer.Context) -> None:
    """List all genres."""
    _show(ctx, lambda fetcher: fetcher.resource("genres"))


@app.command("genre")
def genre_command(
    ctx: typer.Context,
    name: str = typer.Argument(help="Genre slug, e.g. 'action'."),
    page: int = typer.Option(1, "--page", "-p", help="Page number (1-1000)."),
) -> None:
    """List comics in a genre."""
    _show(ctx, lambda fetcher: fetcher.resource("genre_comics", name, page))


@app.command("route")
def route_command(
    ctx: typer.Context,
    route: str = typer.Argument(
        help="Route string, e.g. 'detail/solo-leveling' or 'genre/action?page=2'."
    ),
) -> None:
    """Fetch whatever a route string points at."""
    _show(ctx, lambda fetcher: fetcher.route(route))


# ------------------------------------------------------------------ #
# Cache commands
# ------------------------------------------------------------------ #


def _with_cache(ctx: typer.Context, action: Callable[[Session], T]) -> T:
    """Run *action* against a session whose cache is enabled regardless of flags."""
    from komikcast.output import warning

    if (ctx.obj or {}).get("no_cache"):
        warning("--no-cache is ignored by cache commands.")

    async def _work() -> T:
        settings = _settings(ctx)
        settings.cache.enabled = True
        async with build_api(settings) as session:
            return action(session)

    return _run(_work)


@cache_app.command("stats")
def cache_stats(ctx: typer.Context) -> None:
    """Show cache sizes and the default TTL."""
    from komikcast.output import format_response

    stats: dict[str, Any] = _with_cache(ctx, lambda session: session.cache.stats())
    format_response(stats)


@cache_app.command("clear")
def cache_clear(ctx: typer.Context) -> None:
    """Remove every cached response."""
    from komikcast.output import success

    _with_cache(ctx, lambda session: session.cache.clear())
    success("Cache cleared.")


@cache_app.command("invalidate")
def cache_invalidate(
    ctx: typer.Context,
    pattern: str = typer.Argument(help="Regular expression matched against cache keys."),
) -> None:
    """Remove cached responses whose key matches PATTERN.

    Example::

        komikcast cache invalidate '^detail_'
    """
    import re

    from komikcast.output import error, success

    try:
        regex = re.compile(pattern)
    except re.error as exc:
        error(f"Invalid pattern: {exc}")
        raise typer.Exit(code=2) from None

    removed = _with_cache(ctx, lambda session: session.cache.invalidate_pattern(regex))
    success(f"Removed {removed} cached entr{'y' if removed == 1 else 'ies'}.")


# ------------------------------------------------------------------ #
# Config commands
# ------------------------------------------------------------------ #


def _file_settings() -> Settings:
    """Load the saved settings, exiting cleanly when the file is broken."""
    from komikcast.config import load_settings
    from komikcast.exceptions import KomikcastError
    from komikcast.output import error

    try:
        return load_settings()
    except KomikcastError as exc:
        error(exc.message)
        raise typer.Exit(code=exc.exit_code) from None


@config_app.command("show")
def config_show() -> None:
    """Show the saved settings and where they live.

    Environment variables and global flags are not applied here; this is
    the content of the config file (or the defaults when there is none).
    """
    from komikcast.config import settings_path
    from komikcast.output import format_response, info

    settings = _file_settings()
    info(f"Config file: {settings_path()}")
    format_response(settings.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Settings key in dot notation, e.g. 'request.timeout'."),
    value: str = typer.Argument(help="New value."),
) -> None:
    """Change one saved setting.

    The value is coerced to the field's type and the whole settings object
    is validated before anything is written.

    Example::

        komikcast config set request.timeout 5
        komikcast config set cache.enabled false
        komikcast config set ttl.search 300
    """
    from pydantic import ValidationError as PydanticValidationError

    from komikcast.config import save_settings
    from komikcast.output import error, success

    data = _file_settings().model_dump(mode="json")

    *parents, final_key = key.split(".")
    target = data
    for part in parents:
        if not isinstance(target.get(part), dict):
            error(f"Invalid settings key: {key}")
            raise typer.Exit(code=2)
        target = target[part]
    if final_key not in target:
        error(f"Unknown settings key: {key}")
        raise typer.Exit(code=2)
    target[final_key] = value

    try:
        settings = Settings.model_validate(data)
    except PydanticValidationError as exc:
        error(f"Invalid value for {key}: {exc.errors()[0]['msg']}")
        raise typer.Exit(code=2) from None

    save_settings(settings)
    stored: Any = settings.model_dump(mode="json")
    for part in key.split("."):
        stored = stored[part]
    success(f"Set {key} = {stored}")


@config_app.command("reset")
def config_reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Replace the saved settings with the defaults."""
    from komikcast.config import save_settings
    from komikcast.output import info, success

    if not yes and not typer.confirm("Reset all settings to defaults?"):
        info("Cancelled.")
        raise typer.Exit()

    save_settings(Settings())
    success("Settings reset to defaults.")


# ------------------------------------------------------------------ #
# Entry point
# ------------------------------------------------------------------ #


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from komikcast.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``komikcast`` console script.

    :class:`~komikcast.exceptions.KomikcastError` instances cause a clean
    exit with the error's ``exit_code``. All other exceptions produce a
    crash log and a generic failure exit.
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from komikcast.exceptions import KomikcastError
        from komikcast.output import error

        if isinstance(exc, KomikcastError):
            error(exc.message)
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
