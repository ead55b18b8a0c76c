from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Callable, List, Optional
from uuid import uuid4

from cryptography.fernet import Fernet, InvalidToken

from .models import Session


logger = logging.getLogger(__name__)

DEFAULT_SESSION_FILE_ENV = "SESSION_FILE"

SessionListener = Callable[[Optional[Session]], None]


def _default_session_file() -> Path:
    base = os.environ.get(DEFAULT_SESSION_FILE_ENV)
    if base:
        return Path(base)
    return Path(".cache") / "auth-session.json"


def _to_fernet(key: str | bytes) -> Fernet:
    """Construct a Fernet instance from a urlsafe base64-encoded 32-byte key."""
    if isinstance(key, str):
        key_bytes = key.encode("utf-8")
    else:
        key_bytes = key
    return Fernet(key_bytes)


def _dump_session_json(session: Session) -> bytes:
    # Deterministic JSON: stable key order, no extra whitespace
    return json.dumps(
        session.model_dump(), separators=(",", ":"), sort_keys=True
    ).encode("utf-8")


class FileSessionStorage:
    """
    Durable copy of the session: one file holding one serialized blob.

    - `read()` never raises on bad content. A missing, undecryptable or
      malformed file reads as "no session".
    - `write()` replaces the file in a single `os.replace`, so a concurrent
      reader sees either the old blob or the new one, never a mix.
    - When `fernet_key` is given the blob is encrypted at rest.
    """

    def __init__(
        self,
        path: Optional[os.PathLike[str] | str] = None,
        *,
        fernet_key: Optional[str | bytes] = None,
    ) -> None:
        self._path = Path(path) if path else _default_session_file()
        self._fernet = _to_fernet(fernet_key) if fernet_key else None

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> Optional[Session]:
        try:
            if not self._path.exists():
                return None
            data = self._path.read_bytes()
        except OSError as exc:
            logger.warning("Session file unreadable at %s: %s", self._path, exc)
            return None

        if self._fernet is not None:
            try:
                data = self._fernet.decrypt(data)
            except InvalidToken:
                logger.warning("Session file at %s failed to decrypt; ignoring", self._path)
                return None

        try:
            raw = json.loads(data.decode("utf-8"))
            return Session.model_validate(raw)
        except Exception:
            # Corrupt blob: treat as absence, not as a fatal error
            logger.warning("Session file at %s is malformed; ignoring", self._path)
            return None

    def write(self, session: Session) -> None:
        payload = _dump_session_json(session)
        if self._fernet is not None:
            payload = self._fernet.encrypt(payload)

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(f"{self._path.name}.tmp-{uuid4().hex}")
        try:
            tmp.write_bytes(payload)
            os.replace(tmp, self._path)
        finally:
            if tmp.exists():
                tmp.unlink()

    def delete(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass


class SessionProvider:
    """
    Process-wide owner of the current session.

    The durable copy is consulted once, on the first `get()` (cold start).
    From then on the in-memory copy is authoritative and every `set()` /
    `clear()` updates memory and the durable copy together, then notifies
    subscribers.

    `storage=None` keeps the session in memory only.
    """

    def __init__(self, storage: Optional[FileSessionStorage] = None) -> None:
        self._storage = storage
        self._session: Optional[Session] = None
        self._loaded = storage is None
        self._listeners: List[SessionListener] = []

    def get(self) -> Optional[Session]:
        if not self._loaded and self._storage is not None:
            self._loaded = True
            self._session = self._storage.read()
            if self._session is not None:
                logger.info("Restored session for user %s from durable copy", self._session.user_id)
        return self._session

    def set(self, session: Session) -> None:
        if self._storage is not None:
            self._storage.write(session)
        self._session = session
        self._loaded = True
        self._notify(session)

    def clear(self) -> None:
        if self._storage is not None:
            self._storage.delete()
        self._session = None
        self._loaded = True
        self._notify(None)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register `listener` for session changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, session: Optional[Session]) -> None:
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception:
                logger.exception("Session listener failed")


__all__ = ["FileSessionStorage", "SessionProvider"]
