from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple
from urllib.parse import quote

import httpx

from .credentials import Credential
from .errors import ConnectionFailedError, DecodeError, HttpError


logger = logging.getLogger(__name__)

Method = Literal["GET", "POST", "PATCH", "DELETE"]
PayloadClass = Literal["read", "content", "write"]

SINGLE_OBJECT_MEDIA_TYPE = "application/vnd.pgrst.object+json"


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class Filter:
    """Row filter rendered as `column=op.value` (e.g. `page_key=eq.home`)."""

    column: str
    value: Any
    op: str = "eq"

    def render(self) -> Tuple[str, str]:
        return self.column, f"{self.op}.{_format_value(self.value)}"


@dataclass(frozen=True)
class Operation:
    """
    One read or write against a REST resource collection.

    Both the managed client and the raw fallback render the same operation,
    so the two paths issue equivalent requests (method, filters, ordering).

    - `order` holds `(column, ascending)` pairs, rendered as `order=a.asc,b.desc`.
    - `single=True` asks for one object instead of a list.
    - `returning=True` sends `Prefer: return=representation` on writes.
    - `payload_class` picks the fetcher deadline when none is given explicitly.
    """

    table: str
    method: Method = "GET"
    filters: Tuple[Filter, ...] = ()
    order: Tuple[Tuple[str, bool], ...] = ()
    body: Optional[Any] = None
    columns: str = "*"
    single: bool = False
    limit: Optional[int] = None
    returning: bool = True
    payload_class: Optional[PayloadClass] = None

    @property
    def is_write(self) -> bool:
        return self.method != "GET"

    @property
    def deadline_class(self) -> PayloadClass:
        if self.payload_class is not None:
            return self.payload_class
        return "write" if self.is_write else "read"

    def describe(self) -> str:
        return f"{self.method} {self.table}"

    def query_params(self) -> List[Tuple[str, str]]:
        params: List[Tuple[str, str]] = []
        if self.method == "GET" or self.returning:
            params.append(("select", self.columns))
        params.extend(f.render() for f in self.filters)
        if self.order:
            rendered = ",".join(f"{col}.{'asc' if asc else 'desc'}" for col, asc in self.order)
            params.append(("order", rendered))
        if self.limit is not None:
            params.append(("limit", str(self.limit)))
        return params

    def headers(self, anon_key: str, credential: Credential) -> Dict[str, str]:
        headers = {
            "apikey": anon_key,
            "Authorization": f"Bearer {credential.token}",
            "Content-Type": "application/json",
        }
        if self.is_write:
            headers["Prefer"] = "return=representation" if self.returning else "return=minimal"
        if self.single:
            headers["Accept"] = SINGLE_OBJECT_MEDIA_TYPE
        return headers

    # --------------- Constructors ---------------
    @classmethod
    def select(cls, table: str, **kwargs: Any) -> "Operation":
        return cls(table=table, method="GET", **kwargs)

    @classmethod
    def insert(cls, table: str, body: Any, **kwargs: Any) -> "Operation":
        return cls(table=table, method="POST", body=body, **kwargs)

    @classmethod
    def update(cls, table: str, body: Any, filters: Tuple[Filter, ...], **kwargs: Any) -> "Operation":
        return cls(table=table, method="PATCH", body=body, filters=filters, **kwargs)

    @classmethod
    def delete(cls, table: str, filters: Tuple[Filter, ...], **kwargs: Any) -> "Operation":
        return cls(table=table, method="DELETE", filters=filters, **kwargs)


def decode_response(resp: httpx.Response) -> Any:
    """Return decoded JSON for a 2xx answer, None for an empty body; raise HttpError otherwise."""
    if not 200 <= resp.status_code < 300:
        raise HttpError(resp.status_code, resp.text)
    if not resp.content.strip():
        return None
    try:
        return resp.json()
    except ValueError as exc:
        raise DecodeError(f"Invalid JSON body (HTTP {resp.status_code})") from exc


@dataclass
class RawRestClient:
    """
    Fallback path: hand-built REST request against the same endpoint.

    Builds the full URL and query string itself instead of relying on a
    client base URL, so it still works when the managed client is wedged.
    """

    http: httpx.AsyncClient
    base_url: str
    anon_key: str
    extra_headers: Dict[str, str] = field(default_factory=dict)

    def url_for(self, op: Operation) -> str:
        url = f"{self.base_url.rstrip('/')}/rest/v1/{op.table}"
        params = op.query_params()
        if params:
            query = "&".join(f"{k}={quote(v, safe='.,*()')}" for k, v in params)
            url = f"{url}?{query}"
        return url

    async def request(self, op: Operation, credential: Credential) -> Any:
        url = self.url_for(op)
        headers = {**self.extra_headers, **op.headers(self.anon_key, credential)}
        logger.info("REST fallback %s (anonymous=%s)", op.describe(), credential.anonymous)
        try:
            resp = await self.http.request(op.method, url, headers=headers, json=op.body)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise ConnectionFailedError(f"REST fallback {op.describe()} failed: {exc}") from exc
        if not 200 <= resp.status_code < 300:
            logger.error("REST fallback %s: HTTP %s %s", op.describe(), resp.status_code, resp.text[:200])
        return decode_response(resp)


__all__ = ["Filter", "Operation", "RawRestClient", "decode_response", "SINGLE_OBJECT_MEDIA_TYPE"]
