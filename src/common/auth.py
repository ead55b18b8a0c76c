from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from state.models import Session
from state.session_store import SessionProvider

from .credentials import parse_token_response
from .errors import BackendError, ConnectionFailedError, HttpError, UnauthorizedError
from .fetcher import DualPathFetcher
from .rest import Operation


logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"

GuestOrderLinker = Callable[[str, str], Awaitable[int]]


class AuthClient:
    """
    Password sign-up, sign-in and sign-out against the backend auth endpoints.

    When `link_guest_orders` is given, orders placed as a guest under the
    same e-mail are attached to the user after sign-in and sign-up. A failed
    link is logged and never fails the sign-in itself.
    """

    def __init__(
        self,
        sessions: SessionProvider,
        anon_key: str,
        *,
        auth_url: str,
        http: httpx.AsyncClient,
        fetcher: Optional[DualPathFetcher] = None,
        link_guest_orders: Optional[GuestOrderLinker] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sessions = sessions
        self._anon_key = anon_key
        self._auth_url = auth_url.rstrip("/")
        self._http = http
        self._fetcher = fetcher
        self._link_guest_orders = link_guest_orders
        self._clock = clock

    async def sign_up(
        self,
        email: str,
        password: str,
        *,
        full_name: str,
        phone: str = "",
        city: str = "",
        district: str = "",
        tax_office: str = "",
        tax_number: str = "",
    ) -> str:
        """
        Register a user, create their profile row and return the new user id.

        When the backend answers with a session (no e-mail confirmation
        pending) the session is stored, the profile is inserted through the
        fetcher and guest orders are linked. Without a session there is no
        credential to write with, so both steps are skipped.

        Raises HttpError when the backend refuses the registration and lets a
        failed profile insert propagate.
        """
        logger.info("Signing up %s", email)
        try:
            resp = await self._http.post(
                f"{self._auth_url}/signup",
                json={"email": email, "password": password, "data": {"full_name": full_name}},
                headers={"apikey": self._anon_key},
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise ConnectionFailedError("Sign-up request failed") from exc

        if resp.status_code != 200:
            logger.warning("Sign-up rejected for %s: HTTP %s", email, resp.status_code)
            raise HttpError(resp.status_code, resp.text)

        try:
            body = resp.json()
        except ValueError as exc:
            raise BackendError("Malformed response from sign-up endpoint") from exc
        if not isinstance(body, dict):
            raise BackendError("Malformed response from sign-up endpoint")

        if not body.get("access_token"):
            user_id = _user_id_of(body)
            logger.info("User %s created; e-mail confirmation pending, profile deferred", user_id)
            return user_id

        session = parse_token_response(resp, error=BackendError).to_session(now=self._clock())
        if session.user_id is None:
            raise BackendError("Sign-up response carried no user id")
        self._sessions.set(session)
        logger.info("Created user %s", session.user_id)

        if self._fetcher is not None:
            profile: Dict[str, Any] = {
                "id": session.user_id,
                "full_name": full_name,
                "phone": phone,
                "city": city,
                "district": district,
                "tax_office": tax_office,
                "tax_number": tax_number,
                "email": email,
                "role": "user",
            }
            await self._fetcher.execute(Operation.insert(PROFILES_TABLE, profile, returning=False))
            logger.info("Created profile for user %s", session.user_id)

        await self._link_orders(email, session.user_id)
        return session.user_id

    async def sign_in(self, email: str, password: str) -> Session:
        """
        Exchange credentials for a session and store it.

        Raises UnauthorizedError on rejected credentials, HttpError on other
        non-2xx answers.
        """
        logger.info("Signing in %s", email)
        try:
            resp = await self._http.post(
                f"{self._auth_url}/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
                headers={"apikey": self._anon_key},
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise ConnectionFailedError("Sign-in request failed") from exc

        if resp.status_code in (400, 401):
            logger.warning("Sign-in rejected for %s: HTTP %s", email, resp.status_code)
            raise UnauthorizedError("Invalid e-mail or password")
        if resp.status_code != 200:
            raise HttpError(resp.status_code, resp.text)

        tokens = parse_token_response(resp, error=BackendError)
        session = tokens.to_session(now=self._clock())
        self._sessions.set(session)
        logger.info("Signed in user %s", session.user_id)
        if session.user_id is not None:
            await self._link_orders(email, session.user_id)
        return session

    async def sign_out(self) -> None:
        """Revoke the session server-side (best effort) and always clear it locally."""
        session = self._sessions.get()
        if session is not None:
            try:
                resp = await self._http.post(
                    f"{self._auth_url}/logout",
                    headers={
                        "apikey": self._anon_key,
                        "Authorization": f"Bearer {session.access_token}",
                    },
                )
                if resp.status_code >= 400:
                    logger.warning("Server-side sign-out returned HTTP %s", resp.status_code)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                logger.warning("Server-side sign-out failed: %s", exc)
        self._sessions.clear()
        logger.info("Signed out")

    async def _link_orders(self, email: str, user_id: str) -> None:
        if self._link_guest_orders is None:
            return
        try:
            await self._link_guest_orders(email, user_id)
        except BackendError as exc:
            logger.warning("Linking guest orders of %s to user %s failed: %s", email, user_id, exc)


def _user_id_of(body: Dict[str, Any]) -> str:
    user = body.get("user") if isinstance(body.get("user"), dict) else body
    user_id = user.get("id")
    if not user_id:
        raise BackendError("Sign-up response carried no user id")
    return str(user_id)


__all__ = ["AuthClient", "PROFILES_TABLE"]
