#!/usr/bin/env python3
"""Process supervisor for the OCR MCP server.

Launches the server with inherited stdio (so MCP frames pass through
untouched), restarts it after crashes with exponential backoff, and stops for
good once too many restarts happen inside a sliding window.

Run:
  local-ocr-mcp                             # supervise the installed server
  local-ocr-mcp --server-bin /path/to/bin   # supervise a specific executable
  local-ocr-mcp -- --extra-server-arg       # pass arguments through
"""

from __future__ import annotations

import argparse
import dataclasses
import enum
import logging
import os
import signal
import stat
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import Callable, Mapping, Protocol, Sequence

from .config import SUPERVISED_ENV_VAR, RestartPolicy, load_config_from_env
from .errors import SafeError

logger = logging.getLogger(__name__)

CLEAN_EXIT_SIGNALS = frozenset({signal.SIGINT, signal.SIGTERM})


class SupervisorState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    CRASH_DETECTED = "crash_detected"
    CLEAN_EXIT = "clean_exit"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class BackoffState:
    """Exponential restart delay.

    Doubles after every crash up to the cap and never resets while the
    supervisor lives.
    """

    def __init__(self, *, initial_delay_s: float, max_delay_s: float) -> None:
        self._max_delay_s = max_delay_s
        self.current_delay = min(initial_delay_s, max_delay_s)

    def next_delay(self) -> float:
        """Return the delay to wait now, then double it for next time."""
        delay = self.current_delay
        self.current_delay = min(self.current_delay * 2, self._max_delay_s)
        return delay


class RestartHistory:
    """Timestamps of supervisor-triggered restarts within a sliding window."""

    def __init__(self, *, max_restarts: int, window_s: float) -> None:
        self._max_restarts = max_restarts
        self._window_s = window_s
        self._timestamps: list[float] = []

    def __len__(self) -> int:
        return len(self._timestamps)

    def record(self, now: float) -> None:
        self._timestamps.append(now)

    def prune(self, now: float) -> None:
        self._timestamps = [ts for ts in self._timestamps if now - ts < self._window_s]

    def exhausted(self, now: float) -> bool:
        """True when no further restart is allowed at `now`."""
        self.prune(now)
        return len(self._timestamps) >= self._max_restarts


class ChildProcess(Protocol):
    """The subset of `subprocess.Popen` the supervisor relies on."""

    pid: int

    def wait(self) -> int:
        ...

    def poll(self) -> int | None:
        ...

    def send_signal(self, sig: int) -> None:
        ...


SpawnFunc = Callable[[Sequence[str], Mapping[str, str]], ChildProcess]


def default_spawn(argv: Sequence[str], env: Mapping[str, str]) -> ChildProcess:
    # stdin/stdout/stderr are inherited.
    return subprocess.Popen(list(argv), env=dict(env))


def is_clean_exit(returncode: int) -> bool:
    """Exit code 0, or termination by SIGINT/SIGTERM, is not a crash."""
    if returncode == 0:
        return True
    return returncode < 0 and -returncode in CLEAN_EXIT_SIGNALS


def describe_exit(returncode: int) -> str:
    if returncode < 0:
        try:
            return f"signal {signal.Signals(-returncode).name}"
        except ValueError:
            return f"signal {-returncode}"
    return f"code {returncode}"


def exit_status_for(returncode: int) -> int:
    """Map a child's return code to the supervisor's own exit status."""
    if returncode >= 0:
        return returncode
    if -returncode in CLEAN_EXIT_SIGNALS:
        return 0
    return 128 - returncode


class ProcessSupervisor:
    """Runs a server process and restarts it after crashes."""

    def __init__(
        self,
        argv: Sequence[str],
        *,
        policy: RestartPolicy,
        spawn: SpawnFunc | None = None,
        clock: Callable[[], float] = time.monotonic,
        wait: Callable[[float], object] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Create a supervisor.

        Args:
            argv: Server command; argv[0] is the executable to check.
            policy: Restart ceiling, window and backoff bounds.
            spawn: Process factory (tests inject fakes).
            clock: Monotonic time source for the restart window.
            wait: Backoff sleep. Defaults to a wait that returns early on
                shutdown.
            env: Base environment for the child (defaults to os.environ).
        """
        if not argv:
            raise ValueError("argv must name the server executable")
        self._argv = list(argv)
        self._policy = policy
        self._spawn = spawn or default_spawn
        self._clock = clock
        self._shutdown = threading.Event()
        self._wait = wait or self._shutdown.wait
        self._base_env = dict(os.environ if env is None else env)

        self.state = SupervisorState.IDLE
        self.backoff = BackoffState(initial_delay_s=policy.initial_delay_s, max_delay_s=policy.max_delay_s)
        self.history = RestartHistory(max_restarts=policy.max_restarts, window_s=policy.window_s)
        self._child: ChildProcess | None = None
        self._permission_fixed = False

    @property
    def binary(self) -> Path:
        return Path(self._argv[0])

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    def run(self) -> int:
        """Supervise until a clean exit, shutdown, or restart budget exhaustion.

        Returns:
            The process exit status the supervisor should terminate with.
        """
        try:
            return self._run()
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("Supervisor fault, shutting down")
            self.request_shutdown()
            self.state = SupervisorState.TERMINATED
            return 1

    def request_shutdown(self, signum: int | None = None) -> None:
        """Stop restarting and forward SIGTERM to a running child.

        Safe to call from a signal handler.
        """
        if signum is not None:
            logger.info("%s received, shutting down", signal.Signals(signum).name)
        self._shutdown.set()
        self.state = SupervisorState.SHUTTING_DOWN

        child = self._child
        if child is not None and child.poll() is None:
            logger.info("Forwarding SIGTERM to server (pid %s)", child.pid)
            try:
                child.send_signal(signal.SIGTERM)
            except ProcessLookupError:
                pass

    def install_signal_handlers(self) -> None:
        def _handler(signum: int, _frame: object) -> None:
            self.request_shutdown(signum)

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)

    # ─── Loop ────────────────────────────────────────────────────────────

    def _run(self) -> int:
        while True:
            if self._shutdown.is_set():
                self.state = SupervisorState.TERMINATED
                return 0

            if self.history.exhausted(self._clock()):
                logger.error(
                    "Too many restarts (%d in %gs), giving up",
                    self._policy.max_restarts,
                    self._policy.window_s,
                )
                self.state = SupervisorState.TERMINATED
                return 1

            if not self._ensure_executable():
                self.state = SupervisorState.TERMINATED
                return 1

            try:
                child = self._start_child()
            except OSError as exc:
                logger.error("Failed to launch server: %s", exc)
                if isinstance(exc, PermissionError):
                    self._fix_permissions()
                self._handle_crash()
                continue

            returncode = child.wait()
            self._child = None

            if self._shutdown.is_set():
                logger.info("Server exited during shutdown (%s)", describe_exit(returncode))
                self.state = SupervisorState.TERMINATED
                return exit_status_for(returncode)

            if is_clean_exit(returncode):
                logger.info("Server exited cleanly (%s)", describe_exit(returncode))
                self.state = SupervisorState.CLEAN_EXIT
                return exit_status_for(returncode)

            logger.error("Server crashed (%s)", describe_exit(returncode))
            self._handle_crash()

    def _start_child(self) -> ChildProcess:
        env = dict(self._base_env)
        env[SUPERVISED_ENV_VAR] = "true"
        logger.info("Starting server: %s", " ".join(self._argv))
        child = self._spawn(self._argv, env)
        self._child = child
        self.state = SupervisorState.RUNNING
        # A shutdown requested while spawning has no child to forward to yet.
        if self._shutdown.is_set():
            self.request_shutdown()
        return child

    def _handle_crash(self) -> None:
        self.state = SupervisorState.CRASH_DETECTED
        self.history.record(self._clock())
        delay = self.backoff.next_delay()
        logger.info("Restarting server in %gs", delay)
        self._wait(delay)

    # ─── Binary checks ───────────────────────────────────────────────────

    def _ensure_executable(self) -> bool:
        path = self.binary
        if not path.is_file():
            logger.error("Server binary not found at: %s", path)
            return False
        if not os.access(path, os.X_OK):
            self._fix_permissions()
        return True

    def _fix_permissions(self) -> bool:
        """Set the executable bit on the server binary, at most once."""
        if self._permission_fixed:
            return False
        self._permission_fixed = True
        path = self.binary
        try:
            mode = path.stat().st_mode
            path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        except OSError as exc:
            logger.error("Could not make server binary executable: %s", exc)
            return False
        logger.info("Fixed executable bit on %s", path)
        return True


# ─── CLI ─────────────────────────────────────────────────────────────────


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments. Anything after `--` goes to the server."""
    server_args: list[str] = []
    if "--" in argv:
        split = argv.index("--")
        argv, server_args = argv[:split], argv[split + 1:]

    parser = argparse.ArgumentParser(prog="local-ocr-mcp", add_help=True)
    parser.add_argument("--server-bin", type=Path, default=None, help="Server executable to supervise.")
    parser.add_argument("--max-restarts", type=int, default=None, help="Restarts allowed per window.")
    parser.add_argument("--restart-window", type=float, default=None, help="Sliding window in seconds.")
    parser.add_argument("--initial-delay", type=float, default=None, help="First restart delay in seconds.")
    parser.add_argument("--max-delay", type=float, default=None, help="Restart delay cap in seconds.")
    args = parser.parse_args(argv)
    args.server_args = server_args
    return args


def build_command(server_bin: Path | None, default_bin: Path, server_args: list[str]) -> list[str]:
    """Pick the server command: explicit binary, installed script, or `python -m`."""
    if server_bin is not None:
        return [str(server_bin), *server_args]
    if default_bin.is_file():
        return [str(default_bin), *server_args]
    return [sys.executable, "-m", "local_ocr_mcp", *server_args]


def main(argv: list[str] | None = None) -> None:
    """Supervisor entry point."""
    args = parse_args(sys.argv[1:] if argv is None else argv)

    try:
        config = load_config_from_env()
    except SafeError as err:
        print(f"Configuration error: {err}", file=sys.stderr)
        sys.exit(2)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    overrides = {
        "max_restarts": args.max_restarts,
        "window_s": args.restart_window,
        "initial_delay_s": args.initial_delay,
        "max_delay_s": args.max_delay,
    }
    policy = dataclasses.replace(config.restart, **{k: v for k, v in overrides.items() if v is not None})

    supervisor = ProcessSupervisor(
        build_command(args.server_bin, config.server_bin, args.server_args),
        policy=policy,
    )
    supervisor.install_signal_handlers()
    sys.exit(supervisor.run())


if __name__ == "__main__":
    main()
