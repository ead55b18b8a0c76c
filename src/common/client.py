from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from .credentials import Credential
from .errors import ConnectionFailedError
from .rest import Operation, decode_response


DEFAULT_APP_NAME = "gonca-yoldas-blog"


class ManagedClient:
    """
    Primary path: long-lived pooled client bound to the backend's REST root.

    Notes
    - Keeps one `httpx.AsyncClient` with the REST base URL and default headers
      (`apikey`, `x-application-name`); per-call auth comes from the
      credential handed in by the fetcher.
    - Cancelling the coroutine cancels the in-flight request, so the fetcher
      may cancel it when the deadline passes (`cancellable = True`).
    """

    cancellable = True

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        timeout: float = 30.0,
        app_name: str = DEFAULT_APP_NAME,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not url:
            raise ValueError("url is required")
        if not anon_key:
            raise ValueError("anon_key is required")
        self._anon_key = anon_key
        self._rest_url = f"{url.rstrip('/')}/rest/v1"
        self._default_headers = {"apikey": anon_key, "x-application-name": app_name}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self._rest_url,
            headers=self._default_headers,
            timeout=timeout,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ManagedClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def execute(self, op: Operation, credential: Credential) -> Any:
        headers: Dict[str, str] = {**self._default_headers, **op.headers(self._anon_key, credential)}
        try:
            resp = await self._client.request(
                op.method,
                f"{self._rest_url}/{op.table}",
                params=op.query_params(),
                headers=headers,
                json=op.body,
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise ConnectionFailedError(f"{op.describe()} failed: {exc}") from exc
        return decode_response(resp)


__all__ = ["ManagedClient"]
