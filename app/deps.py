from dataclasses import dataclass, field
from functools import lru_cache
from urllib.parse import quote, unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status

from app import settings
from app.pricing import PromoCatalog
from app.scopes import BookingScope


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        """May override booking and service status on any booking."""
        return (
            BookingScope.ADMIN in self.scopes
            or BookingScope.ADMIN_WRITE in self.scopes
        )

    @property
    def can_read_any(self) -> bool:
        return (
            BookingScope.ADMIN in self.scopes
            or BookingScope.ADMIN_READ in self.scopes
        )

    @property
    def is_provider(self) -> bool:
        return BookingScope.MANAGE in self.scopes


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
) -> CurrentUser:
    """
    Reads the headers injected by Traefik after forwardAuth validation.
    The JWT has already been verified — we just trust these headers.
    NOTE: This only works behind Traefik. Run with that assumption.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    scopes = x_user_scopes.split(" ") if x_user_scopes else []

    return CurrentUser(id=user_id, username=unquote(x_username), scopes=scopes)


def require_scopes(*required: str):
    """
    Factory that returns a dependency enforcing one or more scopes.

    Usage:
        @router.get("/protected")
        async def route(user = Depends(require_scopes("bookings:read"))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        missing = [s for s in required if s not in current_user.scopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(missing)}",
            )
        return current_user

    return _dep


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_write_booking = require_scopes(BookingScope.WRITE)


async def can_read_or_manage_booking(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """
    Passes if the user can read bookings (customer/admin) OR manage bookings (provider).
    - bookings:read   → customer sees own bookings
    - bookings:manage → provider sees bookings for their services
    - admin:bookings* → admin sees all
    """
    has_read = BookingScope.READ in current_user.scopes
    if not (has_read or current_user.is_provider or current_user.can_read_any):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.READ}' (customers), "
                f"'{BookingScope.MANAGE}' (providers), "
                f"or '{BookingScope.ADMIN_READ}' (admin)."
            ),
        )
    return current_user


async def require_booking_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Requires '{BookingScope.ADMIN_WRITE}' scope.",
        )
    return current_user


# ---------------------------------------------------------------------------
# Promo catalog, injected so tests and environments can swap the table
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_promo_catalog() -> PromoCatalog:
    return PromoCatalog.from_mapping(settings.PROMO_CODES)


# ---------------------------------------------------------------------------
# CatalogClient — thin async wrapper around catalog-ms internal API
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_catalog_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.catalog_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class CatalogClient:
    """
    Thin async wrapper around the catalog-ms internal API.
    Forwards Traefik-injected user headers so catalog-ms auth deps work normally.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_catalog_http_client()

    def _headers(self, user: CurrentUser) -> dict[str, str]:
        return {
            "X-User-Id": str(user.id),
            "X-Username": quote(user.username),
            "X-User-Scopes": " ".join(user.scopes),
        }

    async def get_service(self, service_id: UUID, user: CurrentUser) -> dict | None:
        """
        Returns the service dict ({id, is_active, price, provider_id}) or None if 404.
        Raises HTTPException on other errors.
        """
        try:
            resp = await self._client.get(
                f"/services/{service_id}", headers=self._headers(user)
            )
        except httpx.RequestError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"catalog-ms unreachable: {exc.__class__.__name__}",
            ) from exc
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"catalog-ms returned {resp.status_code}",
            )
        return resp.json()


_catalog_client = CatalogClient()


def get_catalog_client() -> CatalogClient:
    return _catalog_client
