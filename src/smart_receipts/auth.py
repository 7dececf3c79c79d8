"""Auth session state with explicit subscription instead of global listeners."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Literal, Optional

AuthEvent = Literal["SIGNED_IN", "SIGNED_OUT", "TOKEN_REFRESHED"]
AuthListener = Callable[[AuthEvent, Optional["AuthSession"]], None]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthSession:
    user_id: str
    access_token: Optional[str] = None


class AuthStateNotifier:
    """Deliver auth changes to listeners the caller registered.

    ``subscribe`` returns a callable that removes the listener; calling it
    twice is harmless.
    """

    def __init__(self) -> None:
        self._listeners: Dict[int, AuthListener] = {}
        self._next_id = 0
        self._lock = threading.Lock()
        self._session: Optional[AuthSession] = None

    @property
    def session(self) -> Optional[AuthSession]:
        return self._session

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        with self._lock:
            token = self._next_id
            self._next_id += 1
            self._listeners[token] = listener

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return unsubscribe

    def publish(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        self._session = session if event != "SIGNED_OUT" else None
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(event, self._session)
            except Exception:  # pragma: no cover - one listener must not starve the others
                logger.exception("Auth listener failed for event %s", event)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)


__all__ = ["AuthEvent", "AuthListener", "AuthSession", "AuthStateNotifier"]
