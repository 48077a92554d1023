import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from .catalog import LibraryCatalog, RescanSignal
from .environment import EnvironmentSnapshot, probe
from .launch import Launcher, LaunchSession, OutputBuffer, StreamTag
from .logger import get_logger
from .paths import StorageLayout
from .settings import SettingsStore

logger = get_logger(__name__)

SESSION_RETENTION = 300.0


class WyneContext:
    """Owns the state shared by the launcher components for one process lifetime.

    The environment snapshot is probed lazily, once. The catalog and settings
    are only mutated from the owning control flow.
    """

    def __init__(self, layout: StorageLayout, probe_fn: Callable[[], EnvironmentSnapshot] = probe,
                 session_retention: float = SESSION_RETENTION):
        self.layout = layout.ensure()
        self.rescan = RescanSignal()
        self.catalog = LibraryCatalog(self.layout.games, self.layout, self.rescan)
        self.settings = SettingsStore.load(self.layout.settings_file)
        self.sessions: Dict[str, LaunchSession] = {}
        self.outputs: Dict[str, OutputBuffer] = {}
        self._probe_fn = probe_fn
        self._snapshot: Optional[EnvironmentSnapshot] = None
        self._launcher: Optional[Launcher] = None
        self._lock = threading.Lock()
        self._sessions_lock = threading.Lock()
        self.session_retention = session_retention

    @classmethod
    def create(cls, root: Union[str, Path, None] = None, **kwargs) -> "WyneContext":
        layout = StorageLayout(Path(root).expanduser().resolve()) if root else StorageLayout.from_env()
        logger.info("Managed storage: %s", layout.prefix)
        return cls(layout, **kwargs)

    @property
    def environment(self) -> EnvironmentSnapshot:
        if self._snapshot is None:
            with self._lock:
                if self._snapshot is None:
                    self._snapshot = self._probe_fn()
        return self._snapshot

    @property
    def launcher(self) -> Launcher:
        if self._launcher is None:
            self._launcher = Launcher(self.environment)
        return self._launcher

    def track(self, session: LaunchSession, output: OutputBuffer) -> None:
        with self._sessions_lock:
            self._prune_locked(time.time())
            self.sessions[session.id] = session
            self.outputs[session.id] = output

    def poll(self, session_id: str, since: int = 0,
             limit: Optional[int] = None) -> Optional[Tuple[LaunchSession, List[Tuple[StreamTag, str]]]]:
        """Lines of a tracked session from ``since`` on.

        An ended session is forgotten once a caller polls past its last line.
        """
        with self._sessions_lock:
            session = self.sessions.get(session_id)
            if session is None:
                return None
            output = self.outputs[session_id]
            ended = not session.is_running
            chunk = output.since(since)
            if limit is not None:
                chunk = chunk[:limit]
            if ended and since >= len(output):
                self._forget_locked(session_id)
                logger.debug("Session %s ended and fully read, dropped", session_id)
        return session, chunk

    def prune(self, now: Optional[float] = None) -> int:
        """Forget sessions that ended more than ``session_retention`` seconds ago."""
        with self._sessions_lock:
            return self._prune_locked(time.time() if now is None else now)

    def _prune_locked(self, now: float) -> int:
        stale = [sid for sid, s in self.sessions.items()
                 if s.ended_at is not None and now - s.ended_at > self.session_retention]
        for sid in stale:
            self._forget_locked(sid)
        if stale:
            logger.debug("Dropped %d ended session(s)", len(stale))
        return len(stale)

    def _forget_locked(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)
        self.outputs.pop(session_id, None)

    def shutdown(self) -> None:
        for session in list(self.sessions.values()):
            if session.is_running:
                session.terminate()
