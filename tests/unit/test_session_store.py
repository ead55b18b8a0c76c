from __future__ import annotations

from cryptography.fernet import Fernet

from state.models import Session
from state.session_store import FileSessionStorage, SessionProvider


def _session(token: str = "access-1") -> Session:
    return Session(user_id="u-1", access_token=token, refresh_token="refresh-1", expires_at=2000)


def test_encrypted_round_trip(tmp_path):
    key = Fernet.generate_key()
    path = tmp_path / "session.json"
    storage = FileSessionStorage(path, fernet_key=key.decode("utf-8"))

    storage.write(_session())

    assert b"access-1" not in path.read_bytes()
    assert storage.read() == _session()
    assert list(tmp_path.iterdir()) == [path]


def test_plain_round_trip_and_delete(tmp_path):
    storage = FileSessionStorage(tmp_path / "nested" / "session.json")
    assert storage.read() is None

    storage.write(_session())
    assert storage.read().refresh_token == "refresh-1"

    storage.delete()
    storage.delete()
    assert storage.read() is None


def test_bad_content_reads_as_no_session(tmp_path):
    path = tmp_path / "session.json"
    path.write_bytes(b"{not json")
    assert FileSessionStorage(path).read() is None

    path.write_text('{"user_id": "u-1"}')
    assert FileSessionStorage(path).read() is None

    FileSessionStorage(path, fernet_key=Fernet.generate_key()).write(_session())
    assert FileSessionStorage(path, fernet_key=Fernet.generate_key()).read() is None


def test_default_path_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SESSION_FILE", str(tmp_path / "env-session.json"))
    assert FileSessionStorage().path == tmp_path / "env-session.json"


def test_provider_reads_durable_copy_once(tmp_path):
    storage = FileSessionStorage(tmp_path / "session.json")
    storage.write(_session("cold"))
    provider = SessionProvider(storage)

    assert provider.get().access_token == "cold"
    # Later changes to the file are not picked up; memory is authoritative
    storage.write(_session("external"))
    assert provider.get().access_token == "cold"


def test_set_and_clear_update_both_copies_and_notify(tmp_path):
    storage = FileSessionStorage(tmp_path / "session.json")
    provider = SessionProvider(storage)
    seen = []

    def broken(_session):
        raise RuntimeError("listener bug")

    provider.subscribe(broken)
    unsubscribe = provider.subscribe(seen.append)

    provider.set(_session("fresh"))
    assert storage.read().access_token == "fresh"
    assert provider.get().access_token == "fresh"

    provider.clear()
    assert storage.read() is None
    assert provider.get() is None

    unsubscribe()
    provider.set(_session("after"))

    assert [s.access_token if s else None for s in seen] == ["fresh", None]


def test_memory_only_provider():
    provider = SessionProvider()
    assert provider.get() is None
    provider.set(_session())
    assert provider.get().user_id == "u-1"


def test_session_expiry():
    s = _session()
    assert s.is_expired(now=1999) is False
    assert s.is_expired(now=1990, leeway=30) is True
    assert Session(access_token="t").is_expired(now=10**12) is False
