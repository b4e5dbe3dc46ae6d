"""
tmux implementation of MultiplexerInterface.

Every operation is one tmux invocation through a SubprocessInterface with a
deadline, so a wedged tmux server can never stall the poller. Targets use
tmux's exact-match form (=name) so "demo" never resolves to "demo-2".
"""

import os
import re
import shlex
import time
from typing import List, Optional

from .exceptions import MultiplexerError, MultiplexerUnavailable, NotFound
from .implementations import RealSubprocess
from .logging_config import get_logger
from .protocols import CommandResult, SubprocessInterface, WindowInfo
from .settings import TIMING, tmux_socket_name

logger = get_logger("tmux")

TMUX_BINARY = "tmux"

# stderr fragments meaning no tmux server is listening on the socket
_NO_SERVER_MARKERS = (
    "no server running",
    "error connecting to",
    "no such file or directory",
)

# stderr fragments meaning the target does not exist
_MISSING_MARKERS = (
    "can't find session",
    "can't find window",
    "can't find pane",
    "session not found",
) + _NO_SERVER_MARKERS

WINDOW_FORMAT = "#{window_index}\t#{window_name}\t#{window_active}\t#{pane_dead}"


def _is_missing(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in _MISSING_MARKERS)


def _no_server(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in _NO_SERVER_MARKERS)


def _binding_option(key_seq: str) -> str:
    """Session user option that enables the binding for key_seq."""
    return "@asmgr_key_" + re.sub(r"[^A-Za-z0-9]", "_", key_seq)


def _shell_command(cmd: List[str]) -> Optional[str]:
    """Join argv into the single shell string tmux runs; None means a shell."""
    if not cmd:
        return None
    if len(cmd) == 1:
        return cmd[0]
    return shlex.join(cmd)


class TmuxAdapter:
    """Deterministic command layer over the tmux CLI."""

    def __init__(
        self,
        runner: Optional[SubprocessInterface] = None,
        socket_name: Optional[str] = None,
        timeout: float = TIMING.capture_timeout,
        enter_delay: float = 0.1,
    ):
        """Initialize with optional socket name for test isolation.

        If no socket_name is provided, checks the ASMGR_TMUX_SOCKET env var.
        """
        self._runner = runner or RealSubprocess()
        self.socket_name = socket_name or tmux_socket_name()
        self.timeout = timeout
        # Some agents drop an Enter that arrives in the same read as the text
        self.enter_delay = enter_delay

    # ── Plumbing ──────────────────────────────────────────────────────

    def _base(self) -> List[str]:
        argv = [TMUX_BINARY]
        if self.socket_name:
            argv += ["-L", self.socket_name]
        return argv

    def _run(self, *args: str) -> CommandResult:
        argv = self._base() + list(args)
        try:
            return self._runner.run(argv, timeout=self.timeout)
        except (FileNotFoundError, PermissionError) as e:
            raise MultiplexerUnavailable(f"Cannot execute tmux: {e}") from e

    def _check(self, what: str, *args: str) -> CommandResult:
        """Run and raise NotFound / MultiplexerError on failure."""
        result = self._run(*args)
        if not result.ok:
            if _is_missing(result.stderr):
                raise NotFound(f"{what}: {result.stderr.strip()}")
            raise MultiplexerError(what, result.stderr, self._base() + list(args))
        return result

    def _tolerant(self, what: str, *args: str) -> None:
        """Run where a missing target counts as success (idempotent kills)."""
        result = self._run(*args)
        if not result.ok and not _is_missing(result.stderr):
            raise MultiplexerError(what, result.stderr, self._base() + list(args))

    @staticmethod
    def _session_target(name: str) -> str:
        return f"={name}"

    @staticmethod
    def _window_target(name: str, index: int) -> str:
        return f"={name}:{index}"

    # ── Sessions ──────────────────────────────────────────────────────

    def has_session(self, name: str) -> bool:
        result = self._run("has-session", "-t", self._session_target(name))
        if result.ok:
            return True
        if _is_missing(result.stderr):
            return False
        raise MultiplexerError("has-session failed", result.stderr)

    def new_session(self, name: str, cmd: List[str], cwd: str,
                    cols: int, rows: int, window_name: Optional[str] = None) -> None:
        args = ["new-session", "-d", "-s", name, "-c", cwd, "-x", str(cols), "-y", str(rows)]
        if window_name:
            args += ["-n", window_name]
        shell_cmd = _shell_command(cmd)
        if shell_cmd:
            args.append(shell_cmd)
        result = self._run(*args)
        if not result.ok:
            raise MultiplexerError(f"Failed to create session {name}", result.stderr, args)
        logger.info("Created tmux session %s in %s", name, cwd)

    def kill_session(self, name: str) -> None:
        self._tolerant(f"Failed to kill session {name}", "kill-session", "-t", self._session_target(name))

    def list_sessions(self, prefix: str = "") -> List[str]:
        result = self._run("list-sessions", "-F", "#{session_name}")
        if not result.ok:
            # A server that is not running has no sessions; anything else
            # is not an answer about which sessions exist.
            if _no_server(result.stderr):
                return []
            raise MultiplexerError("Failed to list sessions", result.stderr)
        names = (line.strip() for line in result.stdout.splitlines())
        return sorted(n for n in names if n and n.startswith(prefix))

    # ── Windows ───────────────────────────────────────────────────────

    def list_windows(self, name: str) -> List[WindowInfo]:
        result = self._check(
            f"Failed to list windows of {name}",
            "list-windows", "-t", self._session_target(name), "-F", WINDOW_FORMAT,
        )
        windows = []
        for line in result.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) < 4:
                continue
            try:
                index = int(parts[0])
            except ValueError:
                continue
            windows.append(WindowInfo(
                index=index,
                name=parts[1],
                active=parts[2] == "1",
                dead=parts[3] == "1",
            ))
        windows.sort(key=lambda w: w.index)
        return windows

    def new_window(self, name: str, window_name: str, cmd: List[str], cwd: str) -> int:
        args = [
            "new-window", "-d", "-P", "-F", "#{window_index}",
            "-t", f"={name}:", "-n", window_name, "-c", cwd,
        ]
        shell_cmd = _shell_command(cmd)
        if shell_cmd:
            args.append(shell_cmd)
        result = self._check(f"Failed to create window in {name}", *args)
        try:
            return int(result.stdout.strip().splitlines()[-1])
        except (IndexError, ValueError) as e:
            raise MultiplexerError(f"Unexpected new-window output: {result.stdout!r}") from e

    def kill_window(self, name: str, index: int) -> None:
        self._tolerant(
            f"Failed to kill window {index} of {name}",
            "kill-window", "-t", self._window_target(name, index),
        )

    def rename_window(self, name: str, index: int, window_name: str) -> None:
        self._check(
            f"Failed to rename window {index} of {name}",
            "rename-window", "-t", self._window_target(name, index), window_name,
        )

    def select_window(self, name: str, index: int) -> None:
        self._check(
            f"Failed to select window {index} of {name}",
            "select-window", "-t", self._window_target(name, index),
        )

    def respawn_window(self, name: str, index: int, cmd: List[str], cwd: str) -> None:
        args = ["respawn-pane", "-k", "-t", self._window_target(name, index), "-c", cwd]
        shell_cmd = _shell_command(cmd)
        if shell_cmd:
            args.append(shell_cmd)
        self._check(f"Failed to respawn window {index} of {name}", *args)

    # ── Input / output ────────────────────────────────────────────────

    def send_keys(self, name: str, index: int, text: str) -> None:
        target = self._window_target(name, index)
        if text:
            self._check(f"Failed to send keys to {name}", "send-keys", "-t", target, "-l", "--", text)
            if self.enter_delay:
                time.sleep(self.enter_delay)
        self._check(f"Failed to send Enter to {name}", "send-keys", "-t", target, "Enter")

    def send_key(self, name: str, index: int, key: str) -> None:
        self._check(
            f"Failed to send {key} to {name}",
            "send-keys", "-t", self._window_target(name, index), key,
        )

    def capture_pane(self, name: str, index: int, lines: int) -> str:
        result = self._check(
            f"Failed to capture {name}:{index}",
            "capture-pane", "-p", "-e", "-J",
            "-t", self._window_target(name, index),
            "-S", f"-{max(lines, 1)}",
        )
        captured = result.stdout.rstrip("\n").split("\n")
        while captured and not captured[-1].strip():
            captured.pop()
        return "\n".join(captured[-lines:])

    def resize_pane(self, name: str, cols: int, rows: int) -> None:
        self._check(
            f"Failed to resize {name}",
            "resize-window", "-t", self._session_target(name), "-x", str(cols), "-y", str(rows),
        )

    def bind_detach(self, name: str, key_seq: str, cmd: str) -> None:
        # Key bindings are server-wide, so the binding itself is the same for
        # every session; a per-session user option decides where it fires and
        # the key passes through to the pane everywhere else.
        marker = _binding_option(key_seq)
        self._check(f"Failed to mark {name} for {key_seq}",
                    "set-option", "-t", self._session_target(name), marker, "1")
        self._check(
            f"Failed to bind {key_seq} for {name}",
            "bind-key", "-n", key_seq,
            "if-shell", "-F", f"#{{{marker}}}", cmd, f"send-keys {key_seq}",
        )

    def set_option(self, name: str, option: str, value: str,
                   index: Optional[int] = None) -> None:
        if index is None:
            args = ["set-option", "-t", self._session_target(name), option, value]
        else:
            args = ["set-option", "-w", "-t", self._window_target(name, index), option, value]
        self._check(f"Failed to set {option} on {name}", *args)

    def attach_command(self, name: str) -> List[str]:
        if os.environ.get("TMUX"):
            return self._base() + ["switch-client", "-t", self._session_target(name)]
        return self._base() + ["attach-session", "-t", self._session_target(name)]
