from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Iterable, Optional


ENV_URL = "SUPABASE_URL"
ENV_ANON_KEY = "SUPABASE_ANON_KEY"
ENV_SESSION_FILE = "SESSION_FILE"
ENV_SESSION_FERNET_KEY = "SESSION_FERNET_KEY"
ENV_READ_DEADLINE = "READ_DEADLINE"
ENV_CONTENT_DEADLINE = "CONTENT_DEADLINE"
ENV_WRITE_DEADLINE = "WRITE_DEADLINE"
ENV_PARAM_PREFIX = "PARAM_PREFIX"

# Backward-compatible fallbacks (frontend build naming)
FALLBACK_ENV_URL = "VITE_SUPABASE_URL"
FALLBACK_ENV_ANON_KEY = "VITE_SUPABASE_ANON_KEY"

SSM_SECRET_NAMES = ("supabase_anon_key", "session_fernet_key")


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.environ.get(name)
    return v if v not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise RuntimeError(f"Missing required configuration: {what}")
    return v


def _getfloat(name: str, default: float) -> float:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid number in {name}: {raw!r}") from exc


def _load_ssm_params(prefix: str, names: Iterable[str]) -> Dict[str, Optional[str]]:
    import boto3
    from botocore.exceptions import ClientError

    ssm = boto3.client("ssm")
    out: Dict[str, Optional[str]] = {k: None for k in names}
    for name in names:
        full = f"{prefix}{name}"
        try:
            resp = ssm.get_parameter(Name=full, WithDecryption=True)
        except ClientError as e:
            # Leave as None if parameter missing or access denied
            code = e.response.get("Error", {}).get("Code")
            if code in ("ParameterNotFound", "AccessDeniedException"):
                out[name] = None
                continue
            raise
        val = resp.get("Parameter", {}).get("Value")
        out[name] = val if isinstance(val, str) and val != "" else None
    return out


@dataclass(frozen=True)
class Settings:
    """
    Connection settings for the hosted backend.

    Environment variables
    - `SUPABASE_URL` / `SUPABASE_ANON_KEY` (required; `VITE_`-prefixed names accepted)
    - `SESSION_FILE`: path of the durable session copy
    - `SESSION_FERNET_KEY`: encrypts the durable session copy when set
    - `READ_DEADLINE`, `CONTENT_DEADLINE`, `WRITE_DEADLINE`: primary-path deadlines (s)
    - `PARAM_PREFIX`: when set, `supabase_anon_key` and `session_fernet_key` are
      read from SSM Parameter Store under this prefix and win over env values
    """

    url: str
    anon_key: str
    session_file: Optional[str] = None
    session_fernet_key: Optional[str] = None
    read_deadline: float = 5.0
    content_deadline: float = 15.0
    write_deadline: float = 10.0
    http_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "Settings":
        url = _getenv(ENV_URL) or _getenv(FALLBACK_ENV_URL)
        anon_key = _getenv(ENV_ANON_KEY) or _getenv(FALLBACK_ENV_ANON_KEY)
        fernet_key = _getenv(ENV_SESSION_FERNET_KEY)

        prefix = _getenv(ENV_PARAM_PREFIX)
        if prefix:
            params = _load_ssm_params(prefix, SSM_SECRET_NAMES)
            anon_key = params.get("supabase_anon_key") or anon_key
            fernet_key = params.get("session_fernet_key") or fernet_key

        return cls(
            url=_require(url, ENV_URL).rstrip("/"),
            anon_key=_require(anon_key, ENV_ANON_KEY),
            session_file=_getenv(ENV_SESSION_FILE),
            session_fernet_key=fernet_key,
            read_deadline=_getfloat(ENV_READ_DEADLINE, 5.0),
            content_deadline=_getfloat(ENV_CONTENT_DEADLINE, 15.0),
            write_deadline=_getfloat(ENV_WRITE_DEADLINE, 10.0),
        )

    @property
    def auth_url(self) -> str:
        return f"{self.url}/auth/v1"

    @property
    def functions_url(self) -> str:
        return f"{self.url}/functions/v1"

    def deadlines(self) -> Dict[str, float]:
        return {
            "read": self.read_deadline,
            "content": self.content_deadline,
            "write": self.write_deadline,
        }


__all__ = ["Settings"]
