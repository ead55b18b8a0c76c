from __future__ import annotations

import pytest

from common import config
from common.config import Settings


_ENV_NAMES = (
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "VITE_SUPABASE_URL",
    "VITE_SUPABASE_ANON_KEY",
    "SESSION_FILE",
    "SESSION_FERNET_KEY",
    "READ_DEADLINE",
    "CONTENT_DEADLINE",
    "WRITE_DEADLINE",
    "PARAM_PREFIX",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_from_env_reads_required_and_defaults(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://db.example.test/")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")

    s = Settings.from_env()

    assert s.url == "https://db.example.test"
    assert s.auth_url == "https://db.example.test/auth/v1"
    assert s.functions_url == "https://db.example.test/functions/v1"
    assert s.deadlines() == {"read": 5.0, "content": 15.0, "write": 10.0}
    assert s.session_file is None
    assert s.session_fernet_key is None


def test_frontend_variable_names_are_accepted(monkeypatch):
    monkeypatch.setenv("VITE_SUPABASE_URL", "https://vite.example.test")
    monkeypatch.setenv("VITE_SUPABASE_ANON_KEY", "vite-anon")
    monkeypatch.setenv("READ_DEADLINE", "2.5")
    monkeypatch.setenv("SESSION_FILE", "/tmp/session.json")

    s = Settings.from_env()

    assert s.url == "https://vite.example.test"
    assert s.anon_key == "vite-anon"
    assert s.read_deadline == 2.5
    assert s.session_file == "/tmp/session.json"


def test_missing_required_values_raise(monkeypatch):
    with pytest.raises(RuntimeError, match="SUPABASE_URL"):
        Settings.from_env()

    monkeypatch.setenv("SUPABASE_URL", "https://db.example.test")
    with pytest.raises(RuntimeError, match="SUPABASE_ANON_KEY"):
        Settings.from_env()


def test_invalid_deadline_raises(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://db.example.test")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
    monkeypatch.setenv("WRITE_DEADLINE", "soon")

    with pytest.raises(RuntimeError, match="WRITE_DEADLINE"):
        Settings.from_env()


def test_ssm_parameters_override_env(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://db.example.test")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "env-anon")
    monkeypatch.setenv("SESSION_FERNET_KEY", "env-key")
    monkeypatch.setenv("PARAM_PREFIX", "/blog/prod/")
    requested = {}

    def fake_load(prefix, names):
        requested["prefix"] = prefix
        requested["names"] = tuple(names)
        return {"supabase_anon_key": "ssm-anon", "session_fernet_key": None}

    monkeypatch.setattr(config, "_load_ssm_params", fake_load)

    s = Settings.from_env()

    assert requested == {"prefix": "/blog/prod/", "names": ("supabase_anon_key", "session_fernet_key")}
    assert s.anon_key == "ssm-anon"
    assert s.session_fernet_key == "env-key"
