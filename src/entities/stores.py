from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from common.errors import HttpError
from common.fetcher import DualPathFetcher
from common.rest import Filter, Operation

from .models import (
    AgeGroup,
    GeneralSettings,
    PageContent,
    PaymentMethod,
    Program,
    Testimonial,
    decode_record,
)
from .store import EntityStore


class AgeGroupStore(EntityStore[AgeGroup]):
    table = "age_groups"
    model = AgeGroup
    ordering = (("sort_order", True),)
    position_field = "sort_order"


class PageContentStore(EntityStore[PageContent]):
    """Content blocks of one page; bulk payload, so it gets the long deadline."""

    table = "page_content"
    model = PageContent
    ordering = (("display_order", True),)
    position_field = "display_order"
    payload_class = "content"

    def __init__(self, fetcher: DualPathFetcher, page_key: str, *, active_only: bool = False, **kwargs: Any) -> None:
        if not page_key:
            raise ValueError("page_key is required")
        super().__init__(fetcher, **kwargs)
        self.page_key = page_key
        self.active_only = active_only

    def filters(self) -> Tuple[Filter, ...]:
        out: Tuple[Filter, ...] = (Filter("page_key", self.page_key),)
        if self.active_only:
            out += (Filter("is_active", True),)
        return out

    def matches(self, record: PageContent) -> bool:
        if record.page_key != self.page_key:
            return False
        return record.is_active or not self.active_only

    def content_map(self) -> Dict[str, str]:
        """section_key -> content value ('' when empty), as pages read it."""
        return {item.section_key: item.content_value or "" for item in self.items}

    async def create(self, fields: Mapping[str, Any]) -> PageContent:
        return await super().create({"page_key": self.page_key, **fields})


class TestimonialStore(EntityStore[Testimonial]):
    """Parent testimonials; new entries go to the end of the list."""

    table = "parent_testimonials"
    model = Testimonial
    ordering = (("display_order", True), ("created_at", False))
    position_field = "display_order"

    def __init__(self, fetcher: DualPathFetcher, *, active_only: bool = False, **kwargs: Any) -> None:
        super().__init__(fetcher, **kwargs)
        self.active_only = active_only

    def filters(self) -> Tuple[Filter, ...]:
        return (Filter("is_active", True),) if self.active_only else ()

    def matches(self, record: Testimonial) -> bool:
        return record.is_active or not self.active_only

    def featured(self) -> List[Testimonial]:
        return [t for t in self.items if t.is_featured]


class PaymentMethodStore(EntityStore[PaymentMethod]):
    """All payment methods for admins, active ones only for checkout."""

    table = "payment_settings"
    model = PaymentMethod
    ordering = (("payment_method", True),)

    def __init__(self, fetcher: DualPathFetcher, *, active_only: bool = False, **kwargs: Any) -> None:
        super().__init__(fetcher, **kwargs)
        self.active_only = active_only

    def filters(self) -> Tuple[Filter, ...]:
        return (Filter("is_active", True),) if self.active_only else ()

    def matches(self, record: PaymentMethod) -> bool:
        return record.is_active or not self.active_only


class GeneralSettingsStore(EntityStore[GeneralSettings]):
    """
    Single-row site settings.

    The flag helpers fall back to `True` while settings are missing or failed
    to load, so checkout keeps coupons, invoice fields and VAT-inclusive
    prices on by default.
    """

    table = "general_settings"
    model = GeneralSettings

    def list_operation(self) -> Operation:
        return Operation.select(self.table, limit=1)

    @property
    def settings(self) -> Optional[GeneralSettings]:
        return self.items[0] if self.items else None

    def _flag(self, name: str) -> bool:
        s = self.settings
        return True if s is None else bool(getattr(s, name))

    @property
    def coupon_enabled(self) -> bool:
        return self._flag("coupon_enabled")

    @property
    def invoice_enabled(self) -> bool:
        return self._flag("invoice_enabled")

    @property
    def show_prices_with_vat(self) -> bool:
        return self._flag("show_prices_with_vat")


class ProgramStore(EntityStore[Program]):
    table = "programs"
    model = Program
    ordering = (("created_at", False),)

    def __init__(self, fetcher: DualPathFetcher, *, status: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(fetcher, **kwargs)
        self.status = status

    def filters(self) -> Tuple[Filter, ...]:
        return (Filter("status", self.status),) if self.status else ()

    def matches(self, record: Program) -> bool:
        return self.status is None or record.status == self.status

    async def get_by_slug(self, slug: str) -> Optional[Program]:
        """Single program by slug; None when no row matches."""
        op = Operation.select(self.table, filters=(Filter("slug", slug),), single=True)
        try:
            raw = await self._fetcher.execute(op)
        except HttpError as exc:
            # Single-object reads answer 406 when zero rows match
            if exc.status in (404, 406):
                return None
            raise
        if raw is None:
            return None
        return decode_record(Program, raw)


__all__ = [
    "AgeGroupStore",
    "PageContentStore",
    "TestimonialStore",
    "PaymentMethodStore",
    "GeneralSettingsStore",
    "ProgramStore",
]
