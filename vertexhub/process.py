"""
Process supervision for the Antigravity proxy.

Spawns the proxy detached in its own session, reads its stdout/stderr
line by line on the event loop, polls its health endpoint until it is
up, frees ports held by stray proxies, and terminates whatever it
started when the CLI exits or is signalled.
"""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

import psutil

from .exceptions import ProxyStartError
from .health import probe_health

logger = logging.getLogger(__name__)

STARTED_SENTINEL = "Server started successfully"
ADDRESS_IN_USE_SENTINEL = "EADDRINUSE"

OutputCallback = Callable[[str, str], None]


class ProcessState(Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    HEALTHY = "healthy"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class PollOutcome(Enum):
    HEALTHY = "healthy"
    TIMED_OUT = "timed_out"


@dataclass
class ProxyHandle:
    """A proxy process started by a ProcessManager."""

    port: int
    process: asyncio.subprocess.Process | None = None
    state: ProcessState = ProcessState.NOT_STARTED
    saw_started: bool = False
    address_in_use: bool = False
    readers: list[asyncio.Task] = field(default_factory=list)

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None

    @property
    def exited(self) -> bool:
        return self.process is not None and self.process.returncode is not None


async def poll_until(
    predicate: Callable[[], Awaitable[bool]],
    attempts: int,
    interval: float,
    on_attempt: Callable[[int], None] | None = None,
) -> PollOutcome:
    """
    Sleep ``interval`` then evaluate ``predicate``, up to ``attempts`` times.

    Returns HEALTHY on the first true result, TIMED_OUT once every attempt
    has been spent. ``on_attempt`` is called with the attempt number after
    each failed check.
    """
    for attempt in range(1, attempts + 1):
        await asyncio.sleep(interval)
        if await predicate():
            return PollOutcome.HEALTHY
        if on_attempt:
            on_attempt(attempt)
    return PollOutcome.TIMED_OUT


@dataclass
class PortRelease:
    """Result of freeing one or more ports."""

    killed: list[int] = field(default_factory=list)
    # False when some process could not be inspected or killed
    complete: bool = True

    def merge(self, other: "PortRelease"):
        self.killed.extend(other.killed)
        self.complete = self.complete and other.complete


def _listens_on(conn, port: int) -> bool:
    return bool(conn.laddr) and conn.laddr.port == port and conn.status == psutil.CONN_LISTEN


def _scan_own_processes(port: int) -> tuple[set[int], bool]:
    """Per-process connection scan, for systems where the global table needs root (macOS)."""
    pids = set()
    complete = True
    for proc in psutil.process_iter():
        try:
            connections = proc.net_connections(kind="inet")
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            complete = False
            continue
        if any(_listens_on(conn, port) for conn in connections):
            pids.add(proc.pid)
    return pids, complete


def _listening_pids(port: int) -> tuple[set[int], bool]:
    try:
        connections = psutil.net_connections(kind="inet")
    except psutil.AccessDenied:
        logger.debug(f"System connection table denied, scanning own processes for port {port}")
        return _scan_own_processes(port)
    except OSError as e:
        logger.warning(f"Cannot list connections to free port {port}: {e}")
        return set(), False
    return {conn.pid for conn in connections if conn.pid and _listens_on(conn, port)}, True


def free_port(port: int) -> PortRelease:
    """Kill every process listening on port (except this one)."""
    pids, complete = _listening_pids(port)
    pids.discard(os.getpid())

    release = PortRelease(complete=complete)
    for pid in sorted(pids):
        try:
            psutil.Process(pid).kill()
            release.killed.append(pid)
            logger.info(f"Killed pid {pid} listening on port {port}")
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied:
            release.complete = False
            logger.warning(f"Access denied killing pid {pid} on port {port}")
    if not release.complete:
        logger.info(f"Port {port} could not be fully inspected")
    return release


async def run_foreground(
    command: str, args: list[str], env: dict[str, str] | None = None, cwd: str | None = None
) -> int:
    """
    Run an interactive child on the inherited terminal and return its exit code.

    SIGINT is ignored here while the child owns the terminal so Ctrl+C
    reaches only the child. Raises FileNotFoundError when command is missing.
    """
    process = await asyncio.create_subprocess_exec(command, *args, env=env, cwd=cwd)
    logger.info(f"Started {command} with PID {process.pid}")

    previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        return await process.wait()
    finally:
        signal.signal(signal.SIGINT, previous)


class ProcessManager:
    """Owns the proxy processes started during one CLI invocation."""

    def __init__(self, on_output: OutputCallback | None = None):
        self._handles: list[ProxyHandle] = []
        self._on_output = on_output
        self._owner_task: asyncio.Task | None = None
        self._signals: list[int] = []
        self.received_signal: int | None = None

    @property
    def handles(self) -> list[ProxyHandle]:
        return list(self._handles)

    async def __aenter__(self) -> "ProcessManager":
        loop = asyncio.get_running_loop()
        self._owner_task = asyncio.current_task()
        for sig in (signal.SIGTERM, getattr(signal, "SIGHUP", None)):
            if sig is None:
                continue
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
                self._signals.append(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                # Windows event loops have no signal handler support
                pass
        return self

    async def __aexit__(self, exc_type, exc, tb):
        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()
        self.shutdown_all()
        return False

    def _handle_signal(self, signum: int):
        logger.info(f"Received signal {signum}, terminating child processes")
        self.received_signal = signum
        self.shutdown_all()
        if self._owner_task is not None and not self._owner_task.done():
            self._owner_task.cancel()

    def _notify(self, level: str, message: str):
        if self._on_output:
            self._on_output(level, message)

    async def start(
        self,
        command: str,
        args: list[str],
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        port: int = 0,
    ) -> ProxyHandle:
        """Spawn a detached child and start reading its output. Raises ProxyStartError."""
        handle = ProxyHandle(port=port, state=ProcessState.STARTING)
        try:
            handle.process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                stdin=asyncio.subprocess.DEVNULL,
                env=env,
                cwd=cwd,
                start_new_session=True,  # own process group, detached from our terminal
            )
        except OSError as e:
            handle.state = ProcessState.FAILED
            logger.error(f"Failed to start {command}: {e}")
            raise ProxyStartError(f"Could not start the proxy: {e}") from e

        self._handles.append(handle)
        handle.readers = [
            asyncio.create_task(self._capture_output(handle, handle.process.stdout, "stdout")),
            asyncio.create_task(self._capture_output(handle, handle.process.stderr, "stderr")),
        ]
        logger.info(f"Started proxy with PID {handle.pid} on port {port}")
        return handle

    async def _capture_output(self, handle: ProxyHandle, stream: asyncio.StreamReader, name: str):
        """Log child output and react to the started / address-in-use sentinels."""
        try:
            while True:
                try:
                    line = await stream.readline()
                except ValueError:
                    # Line longer than the reader limit; readline already dropped the chunk
                    logger.debug(f"proxy[{handle.pid}] {name}: oversized line skipped")
                    continue
                if not line:
                    break
                decoded = line.decode("utf-8", errors="replace").rstrip()
                if not decoded:
                    continue

                logger.debug(f"proxy[{handle.pid}] {name}: {decoded}")

                if name == "stdout" and STARTED_SENTINEL in decoded and not handle.saw_started:
                    handle.saw_started = True
                    logger.info(f"Proxy reported startup on port {handle.port}")
                    self._notify("ok", f"Proxy running on port {handle.port}")
                elif name == "stderr" and ADDRESS_IN_USE_SENTINEL in decoded and not handle.address_in_use:
                    handle.address_in_use = True
                    logger.warning(f"Port {handle.port} already in use")
                    self._notify(
                        "warn", f"Port {handle.port} already in use - proxy may already be running"
                    )
        except Exception as e:
            logger.error(f"Error reading proxy {name}: {e}")

    async def wait_until_healthy(
        self,
        handle: ProxyHandle,
        base_url: str,
        attempts: int = 15,
        interval: float = 1.0,
        timeout: float = 2.0,
        on_attempt: Callable[[int], None] | None = None,
    ) -> PollOutcome:
        """Poll the proxy's /health until it answers or the attempt budget runs out."""
        outcome = await poll_until(
            lambda: probe_health(base_url, timeout),
            attempts=attempts,
            interval=interval,
            on_attempt=on_attempt,
        )
        if outcome == PollOutcome.HEALTHY:
            handle.state = ProcessState.HEALTHY
            logger.info(f"Proxy healthy at {base_url}")
        elif handle.exited and not handle.address_in_use:
            handle.state = ProcessState.FAILED
            logger.error(f"Proxy exited with code {handle.process.returncode} before becoming healthy")
        else:
            handle.state = ProcessState.TIMED_OUT
            logger.error(f"Proxy not healthy after {attempts} attempts")
        return outcome

    async def stop(self, ports: list[int], settle: float = 2.0) -> PortRelease:
        """Free every port in ports, then wait for the sockets to be released."""
        release = PortRelease()
        for port in ports:
            release.merge(free_port(port))
        await asyncio.sleep(settle)
        return release

    def terminate(self, handle: ProxyHandle):
        """Send SIGTERM to the handle's process group. Already-gone processes are ignored."""
        for task in handle.readers:
            task.cancel()

        process = handle.process
        if process is None or process.returncode is not None:
            return
        try:
            os.killpg(os.getpgid(process.pid), signal.SIGTERM)
            logger.info(f"Sent SIGTERM to proxy process group {process.pid}")
        except (ProcessLookupError, PermissionError):
            pass

    def shutdown_all(self):
        """Terminate every tracked child."""
        for handle in list(self._handles):
            self.terminate(handle)
        self._handles.clear()
