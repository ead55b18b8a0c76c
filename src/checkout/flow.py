from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from common.errors import BackendError, CheckoutValidationError, NotificationDeliveryError
from common.notifications import NotificationClient
from common.retry import RetryPolicy, run_with_retry
from entities.models import Order, PaymentStatus, Program

from .orders import OrderService


logger = logging.getLogger(__name__)

TAX_RATE_PERCENT = 20

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^5\d{9}$")
_TC_NO_RE = re.compile(r"^[1-9][0-9]{10}$")
_TAX_NUMBER_RE = re.compile(r"^\d{10,11}$")


class CheckoutForm(BaseModel):
    full_name: str = ""
    email: str = ""
    phone: str = ""
    customer_type: Literal["individual", "corporate"] = "individual"
    tc_no: str = ""
    company_name: str = ""
    tax_office: str = ""
    tax_number: str = ""
    billing_address: str = ""
    city: str = ""
    district: str = ""
    card_name: str = ""
    card_number: str = ""
    installment: int = 1
    kvkk_consent: bool = False
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


def validate_checkout(form: CheckoutForm, *, invoice_enabled: bool = True) -> Dict[str, str]:
    """
    Field name -> message for every invalid field; empty when the form is valid.

    Billing identity rules only apply while invoicing is enabled: individuals
    need an 11-digit national ID, companies need company name, tax office,
    a 10-11 digit tax number and a billing address.
    """
    errors: Dict[str, str] = {}
    if not form.full_name.strip():
        errors["full_name"] = "Full name is required"
    if not _EMAIL_RE.match(form.email):
        errors["email"] = "Enter a valid e-mail address"
    if not _PHONE_RE.match(re.sub(r"\D", "", form.phone)):
        errors["phone"] = "Enter a valid phone number"
    if not form.kvkk_consent:
        errors["kvkk_consent"] = "Consent is required"

    if invoice_enabled:
        if not form.city.strip():
            errors["city"] = "City is required"
        if not form.district.strip():
            errors["district"] = "District is required"
        if form.customer_type == "individual":
            if not _TC_NO_RE.match(form.tc_no):
                errors["tc_no"] = "Enter a valid 11-digit national ID"
        else:
            if not form.company_name.strip():
                errors["company_name"] = "Company name is required"
            if not form.tax_office.strip():
                errors["tax_office"] = "Tax office is required"
            if not _TAX_NUMBER_RE.match(form.tax_number):
                errors["tax_number"] = "Enter a valid tax number"
            if not form.billing_address.strip():
                errors["billing_address"] = "Billing address is required"
    return errors


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: float
    tax_amount: float
    total: float


def compute_totals(
    base_total: float,
    *,
    prices_include_vat: bool = True,
    tax_rate_percent: float = TAX_RATE_PERCENT,
) -> PriceBreakdown:
    """Split or add VAT depending on whether listed prices already include it."""
    rate = tax_rate_percent / 100
    if prices_include_vat:
        subtotal = base_total / (1 + rate)
        return PriceBreakdown(round(subtotal, 2), round(base_total - subtotal, 2), round(base_total, 2))
    tax = base_total * rate
    return PriceBreakdown(round(base_total, 2), round(tax, 2), round(base_total + tax, 2))


def build_order_record(
    form: CheckoutForm,
    program: Program,
    *,
    order_id: str,
    payment_method: str,
    totals: PriceBreakdown,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    payment_status = PaymentStatus.COMPLETED if payment_method == "credit_card" else PaymentStatus.PENDING
    digits = re.sub(r"\D", "", form.card_number)
    return {
        "id": order_id,
        "program_id": program.id,
        "program_slug": program.slug,
        "program_title": program.title,
        "program_price": program.price,
        "full_name": form.full_name,
        "email": form.email,
        "phone": form.phone,
        "customer_type": form.customer_type,
        "tc_no": form.tc_no or None,
        "company_name": form.company_name or None,
        "tax_office": form.tax_office or None,
        "tax_number": form.tax_number or None,
        "address": form.billing_address or None,
        "city": form.city or None,
        "district": form.district or None,
        "subtotal": totals.subtotal,
        "tax_amount": totals.tax_amount,
        "total_amount": totals.total,
        "payment_method": payment_method,
        "payment_status": payment_status.value,
        "status": "completed" if payment_status is PaymentStatus.COMPLETED else "pending",
        "installment": form.installment,
        "card_name": form.card_name or None,
        "card_last_four": digits[-4:] or None,
        "metadata": {"custom_fields": form.custom_fields, "description": f"Program: {program.title}"},
        "user_id": user_id,
    }


def build_purchase_payload(order: Order, program: Program) -> Dict[str, Any]:
    """Marketing webhook payload for a completed purchase."""
    return {
        "email": order.email,
        "phone": order.phone,
        "name": order.full_name,
        "order_id": order.id,
        "product_id": program.sendpulse_id or program.id,
        "product_name": order.program_title,
        "product_slug": order.program_slug,
        "product_price": order.program_price,
        "total_amount": order.total_amount,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status.value,
    }


class SubmissionState(str, Enum):
    DRAFT = "draft"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationState(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class CheckoutSubmission:
    """
    One checkout attempt: DRAFT -> SUBMITTING -> COMPLETED | FAILED.

    - Validation happens before any network call; an invalid form raises
      `CheckoutValidationError` and the submission stays in DRAFT.
    - A failed order write moves to FAILED and re-raises the fetch error, so
      the caller can show its message.
    - Once COMPLETED, the purchase notification is delivered with retries and
      its outcome written back onto the order. Notification trouble only
      changes `notification_state`; it never fails the submission.
    - Without an explicit `user_id` the order is owned by whoever
      `current_user_id()` names at submit time.
    """

    def __init__(
        self,
        orders: OrderService,
        notifier: NotificationClient,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        id_factory: Callable[[], str] = lambda: str(uuid4()),
        current_user_id: Optional[Callable[[], Optional[str]]] = None,
    ) -> None:
        self._orders = orders
        self._notifier = notifier
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._id_factory = id_factory
        self._current_user_id = current_user_id
        self.state = SubmissionState.DRAFT
        self.notification_state: Optional[NotificationState] = None
        self.order: Optional[Order] = None
        self.error: Optional[str] = None

    async def submit(
        self,
        form: CheckoutForm,
        program: Program,
        *,
        payment_method: str = "credit_card",
        invoice_enabled: bool = True,
        prices_include_vat: bool = True,
        user_id: Optional[str] = None,
    ) -> Order:
        if self.state is not SubmissionState.DRAFT:
            raise RuntimeError(f"Submission already {self.state.value}")

        errors = validate_checkout(form, invoice_enabled=invoice_enabled)
        if errors:
            logger.info("Checkout blocked by validation: %s", sorted(errors))
            raise CheckoutValidationError(errors)

        if user_id is None and self._current_user_id is not None:
            user_id = self._current_user_id()

        self.state = SubmissionState.SUBMITTING
        record = build_order_record(
            form,
            program,
            order_id=self._id_factory(),
            payment_method=payment_method,
            totals=compute_totals(program.price, prices_include_vat=prices_include_vat),
            user_id=user_id,
        )
        try:
            order = await self._orders.create(record)
        except BackendError as exc:
            self.state = SubmissionState.FAILED
            self.error = str(exc)
            logger.error("Order %s could not be created: %s", record["id"], exc)
            raise

        self.state = SubmissionState.COMPLETED
        self.order = order
        logger.info("Order %s completed (%s)", order.id, order.payment_status.value)
        await self._deliver_notification(order, program)
        return order

    async def _deliver_notification(self, order: Order, program: Program) -> None:
        self.notification_state = NotificationState.PENDING
        payload = build_purchase_payload(order, program)
        error: Optional[str] = None
        try:
            await run_with_retry(
                lambda: self._notifier.send_purchase_event(payload, order.id),
                self._retry_policy,
                label=f"purchase notification for order {order.id}",
                sleep=self._sleep,
            )
        except Exception as exc:
            failure = NotificationDeliveryError(
                f"Purchase notification failed after {self._retry_policy.max_retries + 1} attempts: {exc}"
            )
            error = str(failure)
            logger.error("Order %s: %s", order.id, failure)

        sent = error is None
        self.notification_state = NotificationState.SENT if sent else NotificationState.FAILED
        self.order = order.model_copy(update={"sendpulse_sent": sent, "sendpulse_error": error})
        try:
            self.order = await self._orders.record_notification(order.id, sent=sent, error=error)
        except BackendError as exc:
            logger.error("Order %s: could not record notification outcome: %s", order.id, exc)


__all__ = [
    "CheckoutForm",
    "CheckoutSubmission",
    "NotificationState",
    "PriceBreakdown",
    "SubmissionState",
    "build_order_record",
    "build_purchase_payload",
    "compute_totals",
    "validate_checkout",
]
