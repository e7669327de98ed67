"""
vertexhub command-line interface.

Maps a single verb to a flow. This module is the only error boundary:
commands raise :class:`~vertexhub.exceptions.VertexHubError` subclasses,
and :func:`main` renders them and turns them into exit codes.

Commands:
    vertexhub login    - Link a Google account through the proxy
    vertexhub start    - Start the proxy and launch Claude Code
    vertexhub status   - Proxy health, accounts and local configuration
    vertexhub accounts - Forward add/list/remove/verify to the accounts tool
    vertexhub models   - List the models the proxy serves
    vertexhub stop     - Stop whatever is listening on the proxy ports
"""

import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Awaitable, Callable

from rich.markup import escape

from . import __version__
from .config import DEFAULT_PORT, Config, configure_logging, load_config
from .console import (
    banner,
    console,
    err,
    err_console,
    hint,
    log,
    ok,
    output_callback,
    progress_dot,
    warn,
)
from .exceptions import (
    ProxyStartError,
    ProxyUnavailableError,
    SubprocessFailedError,
    VertexHubError,
)
from .health import fetch_models, fetch_status, find_running_proxy, probe_health
from .process import PollOutcome, ProcessManager, run_foreground
from .runtime import (
    CLAUDE_INSTALL_HINT,
    check_proxy_install,
    find_claude_bin,
    find_node_bin,
    require_node,
    require_proxy_install,
)
from .sanitize import filter_allowed_subcommands, safe_display
from .settings import DocumentStatus, configure_claude_settings, read_claude_settings

logger = logging.getLogger(__name__)

SUCCESS = 0
GENERAL_ERROR = 1
KEYBOARD_INTERRUPT = 130

MUTATING_ACCOUNT_COMMANDS = frozenset({"add", "remove"})


@dataclass
class CommandContext:
    config: Config
    manager: ProcessManager


Command = Callable[[CommandContext, list[str]], Awaitable[int]]


def _path(value) -> str:
    return safe_display(value, limit=4096)


# ---------------------------------------------------------------------------
# Shared steps
# ---------------------------------------------------------------------------

async def _proxy_running(config: Config) -> bool:
    return await probe_health(config.proxy_url, config.probe_timeout)


async def _require_running_proxy(config: Config):
    if not await _proxy_running(config):
        raise ProxyUnavailableError(
            f"Proxy not running at {config.proxy_url}.",
            hint="Start it first: vertexhub start",
        )


async def _ensure_proxy(ctx: CommandContext, attempts: int, show_progress: bool = False) -> bool:
    """
    Start the proxy unless it already answers. Returns True if it was started here.

    Raises ProxyStartError when it does not become healthy within the budget.
    """
    config = ctx.config
    if await _proxy_running(config):
        return False

    require_proxy_install(config)
    node = require_node(config.home)

    log(f"Proxy not running, starting it on port {config.port}...")
    handle = await ctx.manager.start(
        node,
        [str(config.proxy_entry)],
        env=config.child_env(PORT=str(config.port), HOST=config.host),
        cwd=str(config.proxy_dir),
        port=config.port,
    )

    outcome = await ctx.manager.wait_until_healthy(
        handle,
        config.proxy_url,
        attempts=attempts,
        interval=config.poll_interval,
        timeout=config.probe_timeout,
        on_attempt=progress_dot if show_progress else None,
    )
    if show_progress:
        console.print()

    if outcome != PollOutcome.HEALTHY:
        raise ProxyStartError(
            f"Proxy failed to start within {attempts} seconds.",
            hint=f"Check logs: {config.log_file}",
        )
    return True


async def _run_accounts_tool(config: Config, verbs: list[str]) -> int:
    node = require_node(config.home)
    return await run_foreground(
        node,
        [str(config.accounts_script), *verbs],
        env=config.child_env(PORT=str(config.port)),
        cwd=str(config.proxy_dir),
    )


def _configure_claude(config: Config):
    result = configure_claude_settings(config)
    if result.recovered_corrupt:
        warn(f"Replaced unreadable settings in {_path(result.settings_file)}")
    ok(f"Claude Code settings configured → {_path(result.settings_file)}")
    if result.onboarding_updated:
        ok("Claude Code onboarding bypassed")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def cmd_login(ctx: CommandContext, args: list[str]) -> int:
    config = ctx.config
    banner("VertexHub — Google Login", "cyan")

    require_proxy_install(config)
    require_node(config.home)

    try:
        await _ensure_proxy(ctx, config.login_attempts)
    except ProxyStartError as e:
        raise ProxyStartError(
            "Could not start proxy.",
            hint="Start it manually with: vertexhub start",
        ) from e

    code = await _run_accounts_tool(config, ["add"])
    if code != 0:
        raise SubprocessFailedError(f"Account linking failed (exit code {code}).", code)

    ok("Google account linked successfully!")
    _configure_claude(config)
    log("Run [bold]vertexhub start[/bold] to begin coding with Claude Code.")
    return SUCCESS


async def cmd_start(ctx: CommandContext, args: list[str]) -> int:
    config = ctx.config
    banner("VertexHub — Starting Session", "magenta")

    # Settings first: Claude Code reads them as soon as it launches
    _configure_claude(config)

    started = await _ensure_proxy(ctx, config.startup_attempts, show_progress=True)
    if started:
        ok(f"Proxy started at {config.proxy_url}")
    else:
        ok(f"Proxy already running at {config.proxy_url}")

    log("Launching Claude Code CLI...")
    env = config.child_env(
        ANTHROPIC_BASE_URL=config.proxy_url,
        ANTHROPIC_AUTH_TOKEN=config.auth_token,
    )
    try:
        code = await run_foreground("claude", [], env=env)
    except FileNotFoundError:
        err("Claude Code CLI not found.")
        hint(CLAUDE_INSTALL_HINT)
        return GENERAL_ERROR

    log(f"Session ended (code: {code})")
    return SUCCESS if code == 0 else GENERAL_ERROR


async def cmd_status(ctx: CommandContext, args: list[str]) -> int:
    config = ctx.config
    banner("VertexHub — Status Check", "blue")

    url = await find_running_proxy(config.candidate_ports, config.host, config.status_timeout)
    if url:
        console.print(f"  Proxy: [green]● Running[/green] at {url}")
        snapshot = await fetch_status(url, config.status_timeout)
        if snapshot is not None:
            console.print(f"  Version: {safe_display(snapshot.health.version or 'unknown')}")
            console.print(f"  Strategy: {safe_display(snapshot.health.strategy or 'unknown')}")
            if snapshot.limits is not None:
                console.print(f"  Accounts: {len(snapshot.limits)}")
                for account in snapshot.limits:
                    console.print(
                        f"    → {safe_display(account.name)}: {safe_display(account.status or 'active')}"
                    )
    else:
        console.print(f"  Proxy: [red]● Stopped[/red] (checked {config.proxy_url})")

    install = check_proxy_install(config)
    if install.complete:
        console.print(f"  Proxy Dir: [green]● Found[/green] {_path(install.directory)}")
    elif install.dir_exists:
        console.print(f"  Proxy Dir: [yellow]● Incomplete[/yellow] {_path(install.directory)}")
    else:
        console.print(f"  Proxy Dir: [red]● Missing[/red] {_path(install.directory)}")

    node = find_node_bin(config.home)
    if node:
        console.print(f"  Node.js: [green]● Found[/green] {_path(node)}")
    else:
        console.print("  Node.js: [red]● Not found[/red]")

    document = read_claude_settings(config)
    if document.status == DocumentStatus.VALID:
        env = document.data.get("env")
        env = env if isinstance(env, dict) else {}
        console.print("  Claude Config: [green]● Configured[/green]")
        console.print(f"    Base URL: {safe_display(env.get('ANTHROPIC_BASE_URL') or 'not set')}")
        console.print(f"    Model: {safe_display(env.get('ANTHROPIC_MODEL') or 'not set')}")
    elif document.status == DocumentStatus.CORRUPT:
        console.print("  Claude Config: [yellow]● Invalid[/yellow]")
        console.print("    Run: [dim]vertexhub start[/dim] to rewrite it")
    else:
        console.print("  Claude Config: [red]● Not configured[/red]")
        console.print("    Run: [dim]vertexhub start[/dim] to auto-configure")

    if find_claude_bin():
        console.print("  Claude Code: [green]● Installed[/green]")
    else:
        console.print("  Claude Code: [red]● Not found[/red]")

    console.print()
    return SUCCESS


async def cmd_accounts(ctx: CommandContext, args: list[str]) -> int:
    config = ctx.config
    require_proxy_install(config)
    await _require_running_proxy(config)

    verbs = filter_allowed_subcommands(args)
    if len(verbs) != len(args):
        logger.debug(f"Dropped {len(args) - len(verbs)} disallowed account argument(s)")
    if not verbs:
        verbs = ["list"]

    if MUTATING_ACCOUNT_COMMANDS.intersection(verbs):
        log("Stopping the proxy while accounts change...")
        release = await ctx.manager.stop(config.candidate_ports, settle=config.settle_delay)
        if not release.killed and not release.complete:
            warn("Could not inspect every process on the proxy ports; the proxy may still be running")

    code = await _run_accounts_tool(config, verbs)
    if code != 0:
        raise SubprocessFailedError(f"Accounts command failed (exit code {code}).", code)

    if MUTATING_ACCOUNT_COMMANDS.intersection(verbs):
        log("Run [bold]vertexhub start[/bold] to restart the proxy.")
    return SUCCESS


async def cmd_models(ctx: CommandContext, args: list[str]) -> int:
    config = ctx.config
    await _require_running_proxy(config)

    models = await fetch_models(config.proxy_url, config.status_timeout)
    if models is None:
        err("Could not fetch models from proxy.")
        return GENERAL_ERROR

    console.print("\n[bold]Available Models:[/bold]\n")
    for model in models.data:
        console.print(f"  [cyan]{safe_display(model.id)}[/cyan]")
    console.print(f"\n  Total: {len(models.data)} models\n")
    return SUCCESS


async def cmd_stop(ctx: CommandContext, args: list[str]) -> int:
    config = ctx.config
    ports = config.candidate_ports
    log(f"Stopping proxy on port(s) {', '.join(str(p) for p in ports)}...")
    release = await ctx.manager.stop(ports, settle=config.settle_delay)
    if release.killed:
        ok(f"Stopped {len(release.killed)} process(es): {', '.join(str(pid) for pid in release.killed)}")
    elif release.complete:
        ok("Nothing was listening on the proxy ports")
    else:
        warn("Could not inspect every process on the proxy ports; a proxy owned by another user may still be running")
    return SUCCESS


def print_help(config: Config):
    console.print(
        f"""
[bold magenta]VertexHub CLI[/bold magenta] {__version__} — Claude Code + Google Antigravity

[bold]Usage:[/bold]
  vertexhub <command>

[bold]Commands:[/bold]
  [cyan]login[/cyan]      Link a Google account via OAuth
  [cyan]start[/cyan]      Start proxy + launch Claude Code
  [cyan]status[/cyan]     Check proxy health and config
  [cyan]accounts[/cyan]   Manage linked Google accounts (add, list, remove, verify)
  [cyan]models[/cyan]     List available models
  [cyan]stop[/cyan]       Stop the proxy
  [cyan]help[/cyan]       Show this help

[bold]Environment:[/bold]
  VERTEXHUB_PORT        Proxy port (default: {DEFAULT_PORT}, current: {config.port})
  VERTEXHUB_PROXY_DIR   Proxy checkout (default: ~/antigravity-proxy, current: {_path(config.proxy_dir)})

[bold]First time?[/bold]
  1. [dim]vertexhub login[/dim]     # Link your Google account
  2. [dim]vertexhub start[/dim]     # Start coding!
"""
    )


async def _cmd_help(ctx: CommandContext, args: list[str]) -> int:
    print_help(ctx.config)
    return SUCCESS


COMMANDS: dict[str, Command] = {
    "login": cmd_login,
    "start": cmd_start,
    "status": cmd_status,
    "accounts": cmd_accounts,
    "models": cmd_models,
    "stop": cmd_stop,
    "help": _cmd_help,
    "--help": _cmd_help,
    "-h": _cmd_help,
}


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

async def dispatch(config: Config, command: Command, args: list[str]) -> int:
    """Run one command with a process manager that cleans up on every exit path."""
    async with ProcessManager(on_output=output_callback) as manager:
        try:
            return await command(CommandContext(config=config, manager=manager), args)
        except asyncio.CancelledError:
            if manager.received_signal is None:
                raise
            return 128 + manager.received_signal


def main(argv: list[str] | None = None, config: Config | None = None) -> int:
    """
    Run the vertexhub CLI and return the process exit code.

    ``argv`` defaults to ``sys.argv[1:]``; the first element is the command.
    """
    if argv is None:
        argv = sys.argv[1:]
    if config is None:
        config = load_config()
        configure_logging(config)

    name = argv[0] if argv else "help"
    args = list(argv[1:])

    command = COMMANDS.get(name)
    if command is None:
        err(f"Unknown command: {safe_display(name)}")
        print_help(config)
        return GENERAL_ERROR

    try:
        return asyncio.run(dispatch(config, command, args))
    except VertexHubError as e:
        err(safe_display(e, limit=2000))
        if e.hint:
            hint(safe_display(e.hint, limit=2000))
        return GENERAL_ERROR
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Aborted by user.[/yellow]")
        return KEYBOARD_INTERRUPT
    except Exception as e:
        logger.exception(f"Unexpected error running {name}")
        err(f"Unexpected error: {escape(type(e).__name__)}: {safe_display(e, limit=500)}")
        return GENERAL_ERROR


def cli():
    """Console-script entry point."""
    sys.exit(main())
