from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type

import httpx
from pydantic import BaseModel, ValidationError

from state.models import Session
from state.session_store import SessionProvider

from .errors import BackendError, NoRefreshTokenError, RefreshError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Bearer token to attach to a REST call, and whether it is the public key."""

    token: str
    anonymous: bool
    user_id: Optional[str] = None


class TokenResponse(BaseModel):
    """Body returned by the auth token endpoint (refresh and password grants)."""

    access_token: str
    refresh_token: str
    expires_in: int
    user: Optional[Dict[str, Any]] = None

    def to_session(self, *, now: float, user_id: Optional[str] = None) -> Session:
        uid = user_id
        if isinstance(self.user, dict) and self.user.get("id"):
            uid = str(self.user["id"])
        return Session(
            user_id=uid,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=int(now) + self.expires_in,
        )


def parse_token_response(
    resp: httpx.Response, *, error: Type[BackendError] = RefreshError
) -> TokenResponse:
    try:
        return TokenResponse.model_validate(resp.json())
    except (ValueError, ValidationError) as exc:
        raise error("Malformed response from auth token endpoint") from exc


class CredentialResolver:
    """
    Decides which bearer credential goes on a REST call.

    Resolution order
    - the session held by `SessionProvider` (in-memory copy, or the durable
      copy on cold start, which the provider reads defensively);
    - otherwise the anonymous public key, which the backend only accepts for
      reads.

    `refresh()` swaps the stored token pair for a new one. The provider writes
    memory and durable copies together, so the next `resolve()` sees the new
    token.
    """

    def __init__(
        self,
        sessions: SessionProvider,
        anon_key: str,
        *,
        auth_url: str,
        http: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not anon_key:
            raise ValueError("anon_key is required")
        self._sessions = sessions
        self._anon_key = anon_key
        self._auth_url = auth_url.rstrip("/")
        self._http = http
        self._clock = clock

    @property
    def anon_key(self) -> str:
        return self._anon_key

    def anonymous(self) -> Credential:
        return Credential(token=self._anon_key, anonymous=True)

    def resolve(self) -> Credential:
        session = self._sessions.get()
        if session is not None and session.access_token:
            return Credential(token=session.access_token, anonymous=False, user_id=session.user_id)
        return self.anonymous()

    async def refresh(self) -> Credential:
        session = self._sessions.get()
        if session is None or not session.refresh_token:
            logger.error("Token refresh requested but no refresh token is stored")
            raise NoRefreshTokenError("No refresh token available")

        logger.info("Refreshing access token for user %s", session.user_id)
        try:
            resp = await self._http.post(
                f"{self._auth_url}/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": session.refresh_token},
                headers={"apikey": self._anon_key},
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise RefreshError("Token refresh request failed") from exc

        if resp.status_code != 200:
            logger.error("Token refresh failed: HTTP %s %s", resp.status_code, resp.text[:200])
            raise RefreshError(f"Token refresh failed: HTTP {resp.status_code}")

        tokens = parse_token_response(resp)
        renewed = tokens.to_session(now=self._clock(), user_id=session.user_id)
        self._sessions.set(renewed)
        logger.info("Access token refreshed; expires at %s", renewed.expires_at)
        return Credential(token=renewed.access_token, anonymous=False, user_id=renewed.user_id)


__all__ = ["Credential", "CredentialResolver", "TokenResponse", "parse_token_response"]
