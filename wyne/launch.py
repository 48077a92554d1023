# wyne/launch.py
from __future__ import annotations

import os
import queue
import shlex
import signal
import subprocess
import threading
import time
import uuid
from collections import OrderedDict
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple, Union

from .environment import EnvironmentSnapshot, OSFamily, expand_variables
from .errors import LaunchSpawnFailed, RecordNotLaunchable
from .logger import get_logger
from .models import GameRecord

logger = get_logger(__name__)

DEFAULT_PROFILE = "Play"

DEFAULT_SHELLS: Dict[OSFamily, Tuple[str, str]] = {
    OSFamily.WINDOWS: ("cmd.exe", "/C"),
    OSFamily.MACOS: ("/bin/zsh", "-c"),
    OSFamily.LINUX: ("/bin/bash", "-c"),
}
POSIX_FALLBACK_SHELL = "/bin/sh"

# the child shell sees these in its own (augmented) environment
SHELL_VARIABLES = frozenset({"PATH", "HOME", "USER", "USERPROFILE", "SHELL"})

EXTRA_PATHS: Dict[OSFamily, List[str]] = {
    OSFamily.MACOS: ["/usr/local/bin", "/usr/local/sbin", "/opt/homebrew/bin", "/opt/homebrew/sbin",
                     "/opt/local/bin"],
    OSFamily.LINUX: ["/usr/bin", "/usr/local/bin", "/usr/sbin", "/usr/local/sbin"],
}


class StreamTag(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"
    COMMAND = "command"


class OutputBuffer:
    """Thread-safe sink that keeps every tagged line for later polling."""

    def __init__(self):
        self._lock = threading.Lock()
        self._lines: List[Tuple[StreamTag, str]] = []

    def append(self, line: str, stream: StreamTag) -> None:
        with self._lock:
            self._lines.append((StreamTag(stream), line))

    def since(self, index: int = 0) -> List[Tuple[StreamTag, str]]:
        with self._lock:
            return self._lines[max(index, 0):]

    def stream(self, tag: StreamTag) -> List[str]:
        with self._lock:
            return [line for t, line in self._lines if t is tag]

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)


# ──────────────────────────────────────────────────────────────────────────────
# Command building
# ──────────────────────────────────────────────────────────────────────────────

def _quote(parts: List[str], windows: bool) -> str:
    if windows:
        return subprocess.list2cmdline(parts)
    return " ".join(shlex.quote(p) for p in parts)


def command_variables(snapshot: Optional[EnvironmentSnapshot]) -> Dict[str, str]:
    """Snapshot variables to expand in a profile command before it reaches the shell."""
    if snapshot is None:
        return {}
    return {k: v for k, v in snapshot.variables.items() if k not in SHELL_VARIABLES}


def launch_profiles_for(record: GameRecord, snapshot: Optional[EnvironmentSnapshot] = None) -> "OrderedDict[str, str]":
    """Every runnable command of a record, keyed by profile name."""
    if record.launch_profiles:
        return OrderedDict(record.launch_profiles)
    parts = [p for p in (record.runner, record.runner_command, record.executable_path()) if p]
    if not parts:
        return OrderedDict()
    # quoted parts are not expanded by the shell
    variables = snapshot.variables if snapshot is not None else {}
    parts = [expand_variables(p, variables) for p in parts]
    windows = snapshot.is_windows if snapshot is not None else os.name == "nt"
    return OrderedDict([(DEFAULT_PROFILE, _quote(parts, windows))])


def command_line(record: GameRecord, profile: Optional[str] = None,
                 snapshot: Optional[EnvironmentSnapshot] = None) -> str:
    if not record.is_valid:
        raise RecordNotLaunchable(f"'{record.name}' has no valid manifest.")
    profiles = launch_profiles_for(record, snapshot)
    if not profiles:
        raise RecordNotLaunchable(f"'{record.name}' declares no launch command.")
    if profile is None:
        name, cmd = next(iter(profiles.items()))
    elif profile in profiles:
        name, cmd = profile, profiles[profile]
    else:
        raise RecordNotLaunchable(f"'{record.name}' has no profile '{profile}'.")
    if record.launch_profiles and snapshot is not None:
        cmd = expand_variables(cmd, command_variables(snapshot))
    logger.debug("Profile %s of %s -> %s", name, record.name, cmd)
    return cmd


# ──────────────────────────────────────────────────────────────────────────────
# Environment
# ──────────────────────────────────────────────────────────────────────────────

def augment_path(path: str, os_family: OSFamily) -> str:
    entries = [p for p in path.split(os.pathsep) if p] if path else []
    for extra in EXTRA_PATHS.get(os_family, []):
        if extra not in entries:
            entries.append(extra)
    return os.pathsep.join(entries)


def launch_environment(snapshot: EnvironmentSnapshot, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    env = dict(os.environ if base is None else base)
    env["PATH"] = augment_path(env.get("PATH", ""), snapshot.os_family)
    return env


# ──────────────────────────────────────────────────────────────────────────────
# Sessions
# ──────────────────────────────────────────────────────────────────────────────

_EOF = object()


class LaunchSession:
    """One running process. Lines from both pipes reach ``sink`` through a queue.

    Two reader threads (one per pipe) only enqueue, so a slow sink never stalls
    the child. A dispatcher thread forwards queued lines to the sink in arrival
    order and marks the session ended once both pipes hit EOF and the process
    has exited. ``group`` ("posix" or "windows") selects how ``terminate`` reaches
    the processes the shell started.
    """

    def __init__(self, command: str, process: subprocess.Popen, sink, group: Optional[str] = None):
        self.id = uuid.uuid4().hex
        self.command = command
        self.process = process
        self.sink = sink
        self.started_at = time.time()
        self.ended_at: Optional[float] = None
        self._group = group
        self._queue: "queue.Queue" = queue.Queue()
        self._done = threading.Event()
        self._cancelled = False

        self._readers = [
            threading.Thread(target=self._drain, args=(process.stdout, StreamTag.STDOUT),
                             name=f"wyne-stdout-{self.id[:8]}", daemon=True),
            threading.Thread(target=self._drain, args=(process.stderr, StreamTag.STDERR),
                             name=f"wyne-stderr-{self.id[:8]}", daemon=True),
        ]
        self._dispatcher = threading.Thread(target=self._dispatch, name=f"wyne-sink-{self.id[:8]}", daemon=True)
        for t in self._readers:
            t.start()
        self._dispatcher.start()

    def _drain(self, pipe, tag: StreamTag) -> None:
        try:
            for raw in iter(pipe.readline, ""):
                self._queue.put((tag, raw.rstrip("\r\n")))
        except (OSError, ValueError) as e:
            logger.debug("Pipe %s closed early: %s", tag.value, e)
        finally:
            try:
                pipe.close()
            except OSError:
                pass
            self._queue.put((tag, _EOF))

    def _dispatch(self) -> None:
        open_streams = len(self._readers)
        while open_streams:
            tag, line = self._queue.get()
            if line is _EOF:
                open_streams -= 1
                continue
            if self._cancelled:
                continue
            try:
                self.sink.append(line, tag)
            except Exception:  # a broken sink must not stop draining
                logger.exception("Output sink rejected a line")
        self.process.wait()
        self.ended_at = time.time()
        logger.info("Process exited with %s: %s", self.process.returncode, self.command)
        self._done.set()

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode if self._done.is_set() else None

    @property
    def is_running(self) -> bool:
        return not self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Block until the process has exited and all output was delivered."""
        self._done.wait(timeout)
        return self.returncode

    def terminate(self, grace: float = 5.0) -> Optional[int]:
        """Stop the process (and everything it started), drop undelivered output, end the session."""
        if self._done.is_set():
            return self.returncode
        self._cancelled = True
        logger.info("Terminating session %s (%s)", self.id, self.command)
        self._signal(force=False)
        if not self._done.wait(grace):
            self._signal(force=True)
            self._done.wait(grace)
        return self.returncode

    def _signal(self, force: bool) -> None:
        pid = self.process.pid
        try:
            if self._group == "posix":
                os.killpg(pid, signal.SIGKILL if force else signal.SIGTERM)
            elif self._group == "windows":
                if force:
                    # children of cmd.exe hold the pipes open, so kill the whole tree
                    subprocess.run(["taskkill", "/T", "/F", "/PID", str(pid)],
                                   stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, timeout=10)
                else:
                    self.process.send_signal(getattr(signal, "CTRL_BREAK_EVENT", signal.SIGTERM))
            elif force:
                self.process.kill()
            else:
                self.process.terminate()
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug("Stopping %s (force=%s) failed: %s", pid, force, e)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "command": self.command,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "running": self.is_running,
            "returncode": self.returncode,
        }


class Launcher:
    def __init__(self, snapshot: EnvironmentSnapshot, shells: Optional[Mapping[OSFamily, Union[str, Tuple[str, str]]]] = None,
                 environ: Optional[Mapping[str, str]] = None):
        self.snapshot = snapshot
        self.environ = dict(os.environ if environ is None else environ)
        self.shells: Dict[OSFamily, Tuple[str, str]] = dict(DEFAULT_SHELLS)
        for family, shell in (shells or {}).items():
            if isinstance(shell, str):
                shell = (shell, DEFAULT_SHELLS[family][1])
            self.shells[family] = shell

    def shell_argv(self, command: str) -> List[str]:
        family = self.snapshot.os_family
        exe, flag = self.shells[family]
        override = self.environ.get("WYNE_SHELL")
        if override:
            exe = override
        elif family is not OSFamily.WINDOWS and exe == DEFAULT_SHELLS[family][0] and not os.path.exists(exe):
            exe = POSIX_FALLBACK_SHELL
        return [exe, flag, command]

    def launch(self, command: str, sink, cwd: Union[str, Path, None] = None,
               echo: bool = False) -> Optional[LaunchSession]:
        """Run ``command`` through the platform shell. On spawn failure one stderr line goes to ``sink``.

        With ``echo`` the command itself is appended first, tagged ``command``.
        """
        if echo:
            sink.append(command, StreamTag.COMMAND)
        try:
            session = self._spawn(command, sink, cwd)
        except LaunchSpawnFailed as e:
            logger.error("Launch failed: %s", e)
            sink.append(f"Launch failed: {e}", StreamTag.STDERR)
            return None
        logger.info("Launched [%s] pid=%s: %s", session.id[:8], session.process.pid, command)
        return session

    def launch_record(self, record: GameRecord, sink, profile: Optional[str] = None,
                      echo: bool = False) -> Optional[LaunchSession]:
        cmd = command_line(record, profile, self.snapshot)
        return self.launch(cmd, sink, cwd=record.install_path, echo=echo)

    def _spawn(self, command: str, sink, cwd) -> LaunchSession:
        argv = self.shell_argv(command)
        group = None
        kwargs = {}
        if os.name == "nt":
            group = "windows"
            kwargs["creationflags"] = getattr(subprocess, "CREATE_NO_WINDOW", 0) | getattr(
                subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        elif not self.snapshot.is_windows:
            group = "posix"
            kwargs["start_new_session"] = True
        if cwd is not None and not Path(cwd).is_dir():
            raise LaunchSpawnFailed(f"working directory '{cwd}' does not exist")
        try:
            process = subprocess.Popen(
                argv,
                cwd=str(cwd) if cwd is not None else None,
                env=launch_environment(self.snapshot, self.environ),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                **kwargs,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            raise LaunchSpawnFailed(f"{argv[0]}: {e}") from e
        return LaunchSession(command, process, sink, group=group)
