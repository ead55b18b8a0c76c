from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional, Protocol

from .credentials import Credential, CredentialResolver
from .errors import (
    BackendError,
    ConnectionFailedError,
    FetchTimeoutError,
    HttpError,
    RefreshError,
    UnauthorizedError,
)
from .rest import Operation, RawRestClient


logger = logging.getLogger(__name__)

# Seconds; "content" covers bulk page-content payloads
DEFAULT_DEADLINES: Dict[str, float] = {
    "read": 5.0,
    "content": 15.0,
    "write": 10.0,
}


class PrimaryClient(Protocol):
    cancellable: bool

    async def execute(self, op: Operation, credential: Credential) -> Any: ...


def _discard_late_result(op: Operation):
    def _callback(task: "asyncio.Future[Any]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.info("Abandoned primary %s failed late: %s", op.describe(), exc)
        else:
            logger.info("Abandoned primary %s settled late; result discarded", op.describe())

    return _callback


class DualPathFetcher:
    """
    Runs an `Operation` on the managed client under a deadline, falling back
    to the raw REST call when the primary does not deliver.

    Notes
    - The primary call races a timer. When the timer wins the primary is
      cancelled if the client supports it; otherwise it keeps running and
      whatever it produces later is dropped. Results only leave this class
      through the return value of `execute`, so a late primary answer can
      never overwrite what the fallback already returned.
    - Reads fall back on any `BackendError` from the primary; other
      exceptions are bugs and propagate. Writes fall back only on a timeout
      or a transport failure; any other answer from the server is surfaced
      as-is so a write is never sent twice by accident.
    - Writes need a signed-in credential; with only the anonymous key they
      fail with `UnauthorizedError` before any request is made.
    - A 401 from either path triggers exactly one session refresh and one
      fallback call with the new credential; a second 401 is
      `UnauthorizedError`. A failed refresh downgrades reads to the
      anonymous key and fails writes.
    """

    def __init__(
        self,
        primary: PrimaryClient,
        fallback: RawRestClient,
        resolver: CredentialResolver,
        *,
        deadlines: Optional[Mapping[str, float]] = None,
    ) -> None:
        self._primary = primary
        self._fallback = fallback
        self._resolver = resolver
        self._deadlines = {**DEFAULT_DEADLINES, **(deadlines or {})}

    def deadline_for(self, op: Operation) -> float:
        return self._deadlines[op.deadline_class]

    async def execute(self, op: Operation, deadline: Optional[float] = None) -> Any:
        credential = self._resolver.resolve()
        if op.is_write and credential.anonymous:
            logger.error("Refusing %s without a signed-in session", op.describe())
            raise UnauthorizedError(f"{op.describe()} requires a signed-in session")

        timeout = deadline if deadline is not None else self.deadline_for(op)
        try:
            return await self._race_primary(op, credential, timeout)
        except FetchTimeoutError:
            logger.warning("Primary %s exceeded %.1fs; using REST fallback", op.describe(), timeout)
        except HttpError as exc:
            if exc.status == 401:
                # Skip the fallback with the rejected credential
                logger.warning("401 from primary for %s; refreshing session once", op.describe())
                return await self._retry_after_refresh(op)
            if op.is_write:
                logger.error("Primary %s rejected: %s", op.describe(), exc)
                raise
            logger.warning("Primary %s failed (%s); using REST fallback", op.describe(), exc)
        except ConnectionFailedError as exc:
            logger.warning("Primary %s failed (%s); using REST fallback", op.describe(), exc)
        except BackendError as exc:
            if op.is_write:
                raise
            logger.warning("Primary %s failed (%s); using REST fallback", op.describe(), exc)

        return await self._run_fallback(op, credential)

    # --------------- Internal ---------------
    async def _race_primary(self, op: Operation, credential: Credential, timeout: float) -> Any:
        task = asyncio.ensure_future(self._primary.execute(op, credential))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task in done:
            return task.result()

        if getattr(self._primary, "cancellable", False):
            task.cancel()
        else:
            task.add_done_callback(_discard_late_result(op))
        raise FetchTimeoutError(f"{op.describe()} timed out after {timeout:.1f}s")

    async def _run_fallback(self, op: Operation, credential: Credential) -> Any:
        try:
            return await self._fallback.request(op, credential)
        except HttpError as exc:
            if exc.status != 401:
                raise
            logger.warning("401 from REST fallback for %s; refreshing session once", op.describe())
        return await self._retry_after_refresh(op)

    async def _retry_after_refresh(self, op: Operation) -> Any:
        try:
            credential = await self._resolver.refresh()
        except RefreshError as exc:
            if op.is_write:
                raise UnauthorizedError("Session expired; sign in again") from exc
            logger.warning("Session refresh failed (%s); retrying %s anonymously", exc, op.describe())
            credential = self._resolver.anonymous()

        try:
            return await self._fallback.request(op, credential)
        except HttpError as exc:
            if exc.status == 401:
                raise UnauthorizedError(f"{op.describe()} unauthorized after session refresh") from exc
            raise


__all__ = ["DualPathFetcher", "PrimaryClient", "DEFAULT_DEADLINES"]
