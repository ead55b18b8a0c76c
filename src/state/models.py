from __future__ import annotations

import time
from typing import Optional

from pydantic import BaseModel, Field


class Session(BaseModel):
    """
    Signed-in user session as persisted between runs.

    Fields
    - user_id: backend auth user id (None for sessions restored without user info).
    - access_token: bearer token attached to authenticated REST calls.
    - refresh_token: token exchanged for a new pair at the auth endpoint.
    - expires_at: unix timestamp (seconds) when `access_token` stops being valid.

    Notes
    - The serialized form of this model is the single durable blob kept by
      `state.session_store.FileSessionStorage`.
    """

    user_id: Optional[str] = Field(default=None, description="Auth user id")
    access_token: str = Field(..., description="Bearer token for REST calls")
    refresh_token: Optional[str] = Field(default=None, description="Refresh token")
    expires_at: Optional[int] = Field(
        default=None,
        description="Unix timestamp (s) when the access token expires",
    )

    def is_expired(self, *, now: Optional[float] = None, leeway: float = 0.0) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return current + leeway >= self.expires_at
