from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from checkout.flow import CheckoutSubmission
from checkout.orders import OrderService
from entities.stores import (
    AgeGroupStore,
    GeneralSettingsStore,
    PageContentStore,
    PaymentMethodStore,
    ProgramStore,
    TestimonialStore,
)
from state.session_store import FileSessionStorage, SessionProvider

from .auth import AuthClient
from .client import ManagedClient
from .config import Settings
from .credentials import CredentialResolver
from .errors import BackendError
from .fetcher import DualPathFetcher, PrimaryClient
from .notifications import NotificationClient
from .rest import Operation, RawRestClient


logger = logging.getLogger(__name__)


class Backend:
    """
    Wires settings into the session provider, credential resolver, fetcher,
    auth and notification clients, and hands out entity stores.

    Usage
    - `async with Backend(Settings.from_env()) as backend: ...`
    - Inject `http` (and optionally `primary`, `sessions`) in tests; clients
      created here are closed by `aclose()`.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        http: Optional[httpx.AsyncClient] = None,
        primary: Optional[PrimaryClient] = None,
        sessions: Optional[SessionProvider] = None,
    ) -> None:
        self.settings = settings
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=settings.http_timeout)
        self.sessions = sessions or SessionProvider(
            FileSessionStorage(settings.session_file, fernet_key=settings.session_fernet_key)
        )
        self.resolver = CredentialResolver(
            self.sessions, settings.anon_key, auth_url=settings.auth_url, http=self.http
        )
        self._owned_primary: Optional[ManagedClient] = None
        if primary is None:
            self._owned_primary = ManagedClient(
                settings.url,
                settings.anon_key,
                timeout=settings.http_timeout,
                client=None if self._owns_http else self.http,
            )
            primary = self._owned_primary
        self.primary = primary
        self.fallback = RawRestClient(self.http, settings.url, settings.anon_key)
        self.fetcher = DualPathFetcher(primary, self.fallback, self.resolver, deadlines=settings.deadlines())
        self.auth = AuthClient(
            self.sessions,
            settings.anon_key,
            auth_url=settings.auth_url,
            http=self.http,
            fetcher=self.fetcher,
            link_guest_orders=self.orders().link_guest_orders,
        )
        self.notifier = NotificationClient(self.http, settings.functions_url, self.resolver)

    async def aclose(self) -> None:
        if self._owned_primary is not None:
            await self._owned_primary.aclose()
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "Backend":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # --------------- Stores and flows ---------------
    def age_groups(self, **kwargs: Any) -> AgeGroupStore:
        return AgeGroupStore(self.fetcher, **kwargs)

    def page_content(self, page_key: str, *, active_only: bool = True, **kwargs: Any) -> PageContentStore:
        return PageContentStore(self.fetcher, page_key, active_only=active_only, **kwargs)

    def testimonials(self, *, active_only: bool = False, **kwargs: Any) -> TestimonialStore:
        return TestimonialStore(self.fetcher, active_only=active_only, **kwargs)

    def payment_methods(self, *, active_only: bool = False, **kwargs: Any) -> PaymentMethodStore:
        return PaymentMethodStore(self.fetcher, active_only=active_only, **kwargs)

    def general_settings(self, **kwargs: Any) -> GeneralSettingsStore:
        return GeneralSettingsStore(self.fetcher, **kwargs)

    def programs(self, *, status: Optional[str] = None, **kwargs: Any) -> ProgramStore:
        return ProgramStore(self.fetcher, status=status, **kwargs)

    def orders(self) -> OrderService:
        return OrderService(self.fetcher)

    def checkout(self, **kwargs: Any) -> CheckoutSubmission:
        kwargs.setdefault("current_user_id", lambda: self.resolver.resolve().user_id)
        return CheckoutSubmission(self.orders(), self.notifier, **kwargs)

    async def check_connection(self, table: str = "programs") -> bool:
        """Cheap one-row read to confirm the backend answers; never raises."""
        try:
            await self.fetcher.execute(Operation.select(table, columns="id", limit=1))
        except BackendError as exc:
            logger.error("Backend connection check failed: %s", exc)
            return False
        logger.info("Backend connection check succeeded")
        return True


__all__ = ["Backend"]
