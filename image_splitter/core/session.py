import itertools
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field

from image_splitter.core.handles import DisplayHandleRegistry
from image_splitter.core.types import CropAsset

logger = logging.getLogger('image_splitter.session')

DEFAULT_MAX_SESSIONS = 64


@dataclass
class _SessionState:
    generation: int = 0
    assets: list[CropAsset] = field(default_factory=list)


class SessionStore:
    """Committed crop result sets per session.

    A run is identified by the generation token returned from ``begin_run``.
    Starting another run or resetting the session invalidates older tokens,
    so a late commit from a superseded run is discarded instead of replacing
    what the session currently shows.

    At most ``max_sessions`` sessions are kept. Starting a run for a new
    session beyond that evicts the least recently used one and revokes its
    handles.
    """

    def __init__(self, handles: DisplayHandleRegistry, max_sessions: int = DEFAULT_MAX_SESSIONS):
        if max_sessions < 1:
            raise ValueError('max_sessions must be at least 1')
        self._handles = handles
        self._max_sessions = max_sessions
        self._sessions: OrderedDict[str, _SessionState] = OrderedDict()
        # Tokens are unique across sessions so a token from before a reset never matches a later run.
        self._generations = itertools.count(1)
        self._lock = threading.Lock()

    def _revoke(self, assets: list[CropAsset]) -> None:
        for asset in assets:
            self._handles.revoke(asset.display_handle)

    def _evict_overflow(self) -> None:
        while len(self._sessions) > self._max_sessions:
            session_id, state = self._sessions.popitem(last=False)
            self._revoke(state.assets)
            logger.info('Evicted idle session session_id=%s released=%s', session_id, len(state.assets))

    def begin_run(self, session_id: str) -> int:
        with self._lock:
            state = self._sessions.get(session_id)
            if state is None:
                state = self._sessions[session_id] = _SessionState()
            self._sessions.move_to_end(session_id)
            state.generation = next(self._generations)
            self._evict_overflow()
            return state.generation

    def is_current(self, session_id: str, token: int) -> bool:
        with self._lock:
            state = self._sessions.get(session_id)
            return state is not None and state.generation == token

    def commit(self, session_id: str, token: int, assets: list[CropAsset]) -> bool:
        with self._lock:
            state = self._sessions.get(session_id)
            if state is None or state.generation != token:
                self._revoke(assets)
                logger.info('Discarded stale run session_id=%s token=%s assets=%s', session_id, token, len(assets))
                return False
            previous = state.assets
            self._revoke(previous)
            state.assets = list(assets)
            self._sessions.move_to_end(session_id)
        logger.debug('Committed run session_id=%s token=%s assets=%s released=%s', session_id, token, len(assets), len(previous))
        return True

    def reset(self, session_id: str) -> int:
        with self._lock:
            state = self._sessions.pop(session_id, None)
            if state is None:
                return 0
            released = len(state.assets)
            self._revoke(state.assets)
        logger.info('Reset session session_id=%s released=%s', session_id, released)
        return released

    def has_session(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get_assets(self, session_id: str) -> list[CropAsset]:
        with self._lock:
            state = self._sessions.get(session_id)
            if state is None:
                return []
            self._sessions.move_to_end(session_id)
            return list(state.assets)

    def find_asset(self, asset_id: str) -> CropAsset | None:
        with self._lock:
            for state in self._sessions.values():
                for asset in state.assets:
                    if asset.id == asset_id:
                        return asset
        return None
