from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Dict, List, Mapping, Optional

from common.fetcher import DualPathFetcher
from common.rest import Filter, Operation
from entities.models import Order, PaymentStatus, decode_record, decode_records


logger = logging.getLogger(__name__)

ORDERS_TABLE = "orders"


def _by_id(order_id: str) -> tuple[Filter, ...]:
    return (Filter("id", order_id),)


class OrderService:
    """Order persistence; every call goes through the dual-path fetcher."""

    def __init__(self, fetcher: DualPathFetcher) -> None:
        self._fetcher = fetcher

    async def create(self, record: Mapping[str, Any]) -> Order:
        """Insert one order row (id assigned by the caller) and return it as stored."""
        logger.info("Creating order %s for %s", record.get("id"), record.get("email"))
        raw = await self._fetcher.execute(Operation.insert(ORDERS_TABLE, dict(record)))
        return decode_record(Order, raw)

    async def get(self, order_id: str) -> Order:
        raw = await self._fetcher.execute(
            Operation.select(ORDERS_TABLE, filters=_by_id(order_id), single=True)
        )
        return decode_record(Order, raw)

    async def list_for_email(self, email: str) -> List[Order]:
        """Orders placed with `email`, newest first."""
        raw = await self._fetcher.execute(
            Operation.select(
                ORDERS_TABLE,
                filters=(Filter("email", email),),
                order=(("created_at", False),),
            )
        )
        return decode_records(Order, raw)

    async def update_status(self, order_id: str, payment_status: PaymentStatus) -> Order:
        status = "completed" if payment_status is PaymentStatus.COMPLETED else payment_status.value
        raw = await self._fetcher.execute(
            Operation.update(
                ORDERS_TABLE,
                {"status": status, "payment_status": payment_status.value},
                _by_id(order_id),
            )
        )
        return decode_record(Order, raw)

    async def delete(self, order_id: str) -> None:
        await self._fetcher.execute(Operation.delete(ORDERS_TABLE, _by_id(order_id), returning=False))

    async def link_guest_orders(self, email: str, user_id: str) -> int:
        """Attach orders placed as a guest with `email` to `user_id`; returns how many."""
        raw = await self._fetcher.execute(
            Operation.update(
                ORDERS_TABLE,
                {"user_id": user_id},
                (Filter("email", email), Filter("user_id", None, op="is")),
            )
        )
        linked = len(raw) if isinstance(raw, list) else 0
        logger.info("Linked %d guest orders of %s to user %s", linked, email, user_id)
        return linked

    async def record_notification(
        self,
        order_id: str,
        *,
        sent: bool,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Order:
        """Write the notification delivery outcome onto the order."""
        sent_at = (now or datetime.now(UTC)).isoformat(timespec="seconds") if sent else None
        patch: Dict[str, Any] = {
            "sendpulse_sent": sent,
            "sendpulse_sent_at": sent_at,
            "sendpulse_error": None if sent else error,
        }
        raw = await self._fetcher.execute(Operation.update(ORDERS_TABLE, patch, _by_id(order_id)))
        return decode_record(Order, raw)


__all__ = ["OrderService", "ORDERS_TABLE"]
