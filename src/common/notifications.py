from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from .credentials import CredentialResolver
from .errors import NotificationDeliveryError


logger = logging.getLogger(__name__)

PURCHASE_EVENT_FUNCTION = "send-purchase-event"
CONTACT_EVENT_FUNCTION = "send-contact-event"


class NotificationResult(BaseModel):
    """Relay answer: `{success, error?, details?}` plus whatever else it reports."""

    model_config = ConfigDict(extra="allow")

    success: bool
    error: Optional[str] = None
    details: Optional[Any] = None
    message: Optional[str] = None


class NotificationClient:
    """
    Client for the notification relay functions.

    The relay forwards the payload to the marketing webhook and reports that
    webhook's outcome back. A single call here is one delivery attempt: any
    transport error, non-2xx status or `success: false` answer raises
    `NotificationDeliveryError`, leaving retries to the caller.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        functions_url: str,
        resolver: CredentialResolver,
    ) -> None:
        self._http = http
        self._functions_url = functions_url.rstrip("/")
        self._resolver = resolver

    async def send_purchase_event(self, order_data: Dict[str, Any], order_id: str) -> NotificationResult:
        return await self._invoke(
            PURCHASE_EVENT_FUNCTION,
            {"orderData": order_data, "orderId": order_id},
        )

    async def send_contact_event(self, contact_data: Dict[str, Any], submission_id: str) -> NotificationResult:
        return await self._invoke(
            CONTACT_EVENT_FUNCTION,
            {"contactData": contact_data, "submissionId": submission_id},
        )

    # --------------- Internal ---------------
    async def _invoke(self, function: str, payload: Dict[str, Any]) -> NotificationResult:
        credential = self._resolver.resolve()
        url = f"{self._functions_url}/{function}"
        started = time.monotonic()
        try:
            resp = await self._http.post(
                url,
                json=payload,
                headers={
                    "apikey": self._resolver.anon_key,
                    "Authorization": f"Bearer {credential.token}",
                },
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise NotificationDeliveryError(f"{function} request failed: {exc}") from exc

        elapsed = time.monotonic() - started
        logger.info("%s answered HTTP %s in %.2fs", function, resp.status_code, elapsed)
        if not 200 <= resp.status_code < 300:
            raise NotificationDeliveryError(
                f"{function} responded with HTTP {resp.status_code}",
                details=resp.text[:500],
            )

        try:
            result = NotificationResult.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise NotificationDeliveryError(f"Malformed response from {function}") from exc

        # The relay may accept the call yet report the webhook itself failed
        webhook_sent = (result.model_extra or {}).get("sendpulse_sent", True)
        if not result.success or webhook_sent is False:
            raise NotificationDeliveryError(
                result.error or result.message or f"{function} reported failure",
                details=None if result.details is None else str(result.details),
            )
        return result


__all__ = [
    "NotificationClient",
    "NotificationResult",
    "CONTACT_EVENT_FUNCTION",
    "PURCHASE_EVENT_FUNCTION",
]
