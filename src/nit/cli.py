"""nit CLI entry point."""

import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from nit import __version__
from nit.commands import FETCH, PULL, STATUS, Subcommand, passthrough
from nit.config import ExecutionConfig, load_config
from nit.git import GitCommand, UrlScheme
from nit.process import Failure
from nit.repo import discover_targets, parse_scan_depth, repo_display_name
from nit.runner import run_parallel


_PASSTHROUGH = "exec"

# Reason: Subcommands forward everything after their name to git, including
# options nit itself does not know about (e.g. `nit pull --rebase`).
_FORWARD_ARGS = {"allow_extra_args": True, "ignore_unknown_options": True}


class _PassthroughGroup(typer.core.TyperGroup):
    """Typer group that routes unknown subcommands to `exec`.

    Reason: Any git command should work (`nit log -1`, `nit checkout main`)
    without a dedicated nit command for each one.
    """

    def resolve_command(self, ctx, args):
        """Prefix unknown command names with the passthrough command."""
        if args and not args[0].startswith("-") and self.get_command(ctx, args[0]) is None:
            args = [_PASSTHROUGH, *args]
        return super().resolve_command(ctx, args)


app = typer.Typer(
    name="nit",
    help="nit — parallel git across many repositories.",
    no_args_is_help=True,
    cls=_PassthroughGroup,
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"nit {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    """Send log records to stderr through rich; DEBUG when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", help="Print exact commands without executing."),
    ssh: bool = typer.Option(False, "--ssh", help="Force SSH URLs (git@github.com:) for all remotes."),
    https: bool = typer.Option(False, "--https", help="Force HTTPS URLs (https://github.com/) for all remotes."),
    max_connections: Optional[int] = typer.Option(
        None, "--max-connections", "-n", min=0,
        help="Maximum concurrent git processes (default: 8, 0 = unlimited).",
    ),
    depth: Optional[str] = typer.Option(
        None, "--depth", "-d", help='Directory levels to scan for repositories (a positive integer or "all").',
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config.toml."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log scheduling details to stderr."),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """nit — parallel git across many repositories."""
    _configure_logging(verbose)

    if ssh and https:
        console.print("Error: --ssh and --https are mutually exclusive.")
        raise typer.Exit(code=2)

    try:
        settings = load_config(config_path)
    except ValidationError as exc:
        console.print(f"Error: invalid config: {escape(str(exc))}")
        raise typer.Exit(code=1)

    scan_depth = depth if depth is not None else settings.scan_depth
    try:
        parsed_depth = parse_scan_depth(scan_depth)
    except ValueError as exc:
        console.print(f"Error: {exc}")
        raise typer.Exit(code=2)

    url_scheme = UrlScheme.SSH if ssh else UrlScheme.HTTPS if https else None

    ctx.ensure_object(dict)
    ctx.obj["execution"] = ExecutionConfig.from_settings(
        settings, dry_run=dry_run, url_scheme=url_scheme, max_connections=max_connections
    )
    ctx.obj["scan_depth"] = parsed_depth


def _run(ctx: typer.Context, subcommand: Subcommand, args: Optional[list[str]]) -> None:
    """Discover repositories and run one git subcommand across all of them.

    Args:
        ctx: Typer context carrying the execution config and scan depth.
        subcommand: Argument builder and formatter for this git command.
        args: Extra arguments forwarded to git.
    """
    config: ExecutionConfig = ctx.obj["execution"]
    root = Path.cwd()

    repos = discover_targets(root, ctx.obj["scan_depth"])
    if not repos:
        console.print("No git repositories found in current directory")
        return

    if config.dry_run:
        typer.echo(
            f"[nit v{__version__}] Running in **dry-run mode**, no git commands will be "
            "executed. Planned git commands below."
        )

    git_args = subcommand.git_args(args)
    outcomes = run_parallel(
        config,
        repos,
        lambda repo: GitCommand(repo, git_args),
        subcommand.formatter,
        sink=typer.echo,
        label=lambda repo: repo_display_name(repo, root),
    )

    # Reason: The run succeeds only if every repo ran and exited cleanly.
    if any(
        isinstance(item.outcome, Failure) or item.outcome.returncode != 0
        for item in outcomes
    ):
        raise typer.Exit(code=1)


@app.command("pull", context_settings=_FORWARD_ARGS)
def pull_cmd(
    ctx: typer.Context,
    args: Optional[list[str]] = typer.Argument(None, help="Additional arguments to pass to git pull."),
) -> None:
    """Pull all repositories."""
    _run(ctx, PULL, args)


@app.command("fetch", context_settings=_FORWARD_ARGS)
def fetch_cmd(
    ctx: typer.Context,
    args: Optional[list[str]] = typer.Argument(None, help="Additional arguments to pass to git fetch."),
) -> None:
    """Fetch all repositories."""
    _run(ctx, FETCH, args)


@app.command("status", context_settings=_FORWARD_ARGS)
def status_cmd(
    ctx: typer.Context,
    args: Optional[list[str]] = typer.Argument(None, help="Additional arguments to pass to git status."),
) -> None:
    """Show branch and working tree state of all repositories."""
    _run(ctx, STATUS, args)


@app.command(_PASSTHROUGH, context_settings=_FORWARD_ARGS)
def exec_cmd(
    ctx: typer.Context,
    args: list[str] = typer.Argument(..., help="git command and its arguments."),
) -> None:
    """Run any git command in all repositories.

    Unknown nit commands are routed here, so `nit log -1` is the same as
    `nit exec log -1`.
    """
    name, *rest = args
    _run(ctx, passthrough(name), rest)
