import json
import threading
from pathlib import Path
from typing import Callable, Dict, List, NamedTuple, Optional, Union

from loguru import logger

from app.client.schemas import UserInfo


class SessionState(NamedTuple):
    token: Optional[str]
    user: Optional[UserInfo]

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    @property
    def role(self):
        return self.user.role if self.user else None


Listener = Callable[[SessionState], None]


class SessionStore:
    """
    The one place holding the bearer token and the signed-in user.

    Consumers read through `get()` and register with `subscribe()`; every
    change is pushed to all listeners, so nobody re-reads a stale copy.
    With `path` set, the state is persisted as JSON under the keys
    "token" and "user".
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._state = SessionState(None, None)

        if self._path and self._path.exists():
            self._state = self._load()

    def _load(self) -> SessionState:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning(f"Ignoring unreadable session file {self._path}")
            return SessionState(None, None)

        user = data.get("user")
        return SessionState(
            token=data.get("token"),
            user=UserInfo.model_validate(user) if user else None
        )

    def _persist(self, state: SessionState) -> None:
        if not self._path:
            return
        payload: Dict[str, object] = {
            "token": state.token,
            "user": state.user.model_dump(mode="json") if state.user else None,
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload), encoding="utf-8")

    def get(self) -> SessionState:
        return self._state

    def set(self, token: str, user: Optional[UserInfo] = None) -> None:
        self._update(SessionState(token, user))

    def clear(self) -> None:
        self._update(SessionState(None, None))

    def _update(self, state: SessionState) -> None:
        with self._lock:
            self._state = state
            self._persist(state)
            listeners = list(self._listeners)

        for listener in listeners:
            listener(state)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Registers `listener` for every change. Returns the unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe
