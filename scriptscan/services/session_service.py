"""Per-browser-session UI state.

A session holds at most one upload, one extraction result and one error
message. States are immutable: every transition returns a new state which the
store swaps in wholesale.
"""
import threading
import time
import uuid
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from scriptscan.core.config import settings
from scriptscan.core.errors import AnalysisInProgressError, InputError
from scriptscan.schemas.prescription import PrescriptionRecord
from scriptscan.services.intake_service import ImageUpload

SESSION_COOKIE = "scriptscan_session"


class SessionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    upload: Optional[ImageUpload] = None
    record: Optional[PrescriptionRecord] = None
    error: Optional[str] = None
    analyzing: bool = False

    @property
    def has_file(self) -> bool:
        return self.upload is not None


INITIAL_STATE = SessionState()


def select_file(state: SessionState, upload: ImageUpload) -> SessionState:
    if state.analyzing:
        raise AnalysisInProgressError("An analysis is already running.")
    return SessionState(upload=upload)


def begin_analysis(state: SessionState) -> SessionState:
    if state.upload is None:
        raise InputError("No file selected.")
    if state.analyzing:
        raise AnalysisInProgressError("An analysis is already running.")
    # A previous result stays visible until the new one replaces it
    return state.model_copy(update={"analyzing": True, "error": None})


def complete(state: SessionState, record: PrescriptionRecord) -> SessionState:
    return state.model_copy(update={"record": record, "error": None, "analyzing": False})


def fail(state: SessionState, message: str) -> SessionState:
    # The upload stays so the user can retry without selecting the file again
    return state.model_copy(update={"error": message, "analyzing": False})


def read_failed(message: str) -> SessionState:
    return SessionState(error=message)


def reset() -> SessionState:
    return INITIAL_STATE


class SessionStore:
    """In-memory session states keyed by the session cookie value.

    Sessions idle for longer than ``ttl_seconds`` are evicted on the next store
    access, and at most ``max_sessions`` are kept (least recently used go first).
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        max_sessions: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = settings.SESSION_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.max_sessions = settings.MAX_SESSIONS if max_sessions is None else max_sessions
        self._clock = clock
        self._states: "OrderedDict[str, Tuple[SessionState, float]]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    def _evict(self, now: float) -> None:
        # Entries are ordered by last access, so expired ones sit at the front
        while self._states:
            session_id, (_, touched) = next(iter(self._states.items()))
            if now - touched <= self.ttl_seconds:
                break
            del self._states[session_id]
        while len(self._states) > self.max_sessions:
            self._states.popitem(last=False)

    def _lookup(self, session_id: str) -> SessionState:
        entry = self._states.get(session_id)
        return entry[0] if entry is not None else INITIAL_STATE

    def _store(self, session_id: str, state: SessionState, now: float) -> None:
        if state == INITIAL_STATE:
            self._states.pop(session_id, None)
        else:
            self._states[session_id] = (state, now)
            self._states.move_to_end(session_id)
        self._evict(now)

    def get(self, session_id: Optional[str]) -> SessionState:
        if not session_id:
            return INITIAL_STATE
        with self._lock:
            now = self._clock()
            self._evict(now)
            entry = self._states.get(session_id)
            if entry is None:
                return INITIAL_STATE
            self._states[session_id] = (entry[0], now)
            self._states.move_to_end(session_id)
            return entry[0]

    def put(self, session_id: str, state: SessionState) -> None:
        with self._lock:
            now = self._clock()
            self._evict(now)
            self._store(session_id, state, now)

    def replace(self, session_id: str, transition: Callable[[SessionState], SessionState]) -> SessionState:
        """Apply a transition atomically; exceptions from the transition leave the state untouched."""
        with self._lock:
            now = self._clock()
            self._evict(now)
            new_state = transition(self._lookup(session_id))
            self._store(session_id, new_state, now)
            return new_state

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._states.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            self._evict(self._clock())
            return len(self._states)


store = SessionStore()
