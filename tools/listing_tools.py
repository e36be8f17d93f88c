from __future__ import annotations

import html
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from agents.text_utils import normalize
from models.schemas import Currency, Listing, ListingQuery, PropertyOperation
from settings import SETTINGS

logger = logging.getLogger(__name__)

_USD_PREFIX = re.compile(r"U\$S|USD|US\$")
_TAGS = re.compile(r"<[^>]+>")


class ListingProviderError(RuntimeError):
    pass


def canonical_type(text: str) -> str:
    t = normalize(text)
    if re.search(r"\b(dep|dpto|depto|departamento|monoambiente)", t):
        return "depto"
    for kind in ("casa", "ph", "local", "oficina", "cochera", "terreno", "lote", "galpon", "quinta"):
        if re.search(rf"\b{kind}", t):
            return "terreno" if kind == "lote" else kind
    return t


class ListingProvider(ABC):
    @abstractmethod
    async def search(self, query: ListingQuery) -> List[Listing]:
        raise NotImplementedError

    @staticmethod
    def matches(listing: Listing, query: ListingQuery) -> bool:
        low, high = query.price_band()
        if listing.currency != query.currency or not (low <= listing.price <= high):
            return False
        if listing.operation is not None and listing.operation != query.operation:
            return False
        if query.property_type and listing.property_type:
            if canonical_type(query.property_type) != canonical_type(listing.property_type):
                return False
        if query.zone:
            haystack = normalize(f"{listing.zone or ''} {listing.title} {listing.excerpt}")
            if normalize(query.zone) not in haystack:
                return False
        return True

    @staticmethod
    def rank(listings: List[Listing], query: ListingQuery) -> List[Listing]:
        return sorted(listings, key=lambda item: abs(item.price - query.budget))


class MockListingProvider(ListingProvider):
    """Seeded catalogue for development and tests."""

    def __init__(self, listings: Optional[List[Listing]] = None) -> None:
        self._listings = list(listings) if listings is not None else _seed_catalogue()
        self.queries: List[ListingQuery] = []

    async def search(self, query: ListingQuery) -> List[Listing]:
        self.queries.append(query)
        return self.rank([item for item in self._listings if self.matches(item, query)], query)


class WordPressListingProvider(ListingProvider):
    """Reads ``/wp-json/wp/v2/propiedades`` and filters by price band locally."""

    FIELDS = ["id", "link", "title", "excerpt", "property_meta", "tipos-propiedad", "operaciones-propiedad", "ciudades-propiedad"]

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        per_page: int = 50,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or SETTINGS.wp_base_url).rstrip("/")
        self.timeout = timeout or SETTINGS.wp_timeout_seconds
        self.per_page = per_page
        self.transport = transport

    async def search(self, query: ListingQuery) -> List[Listing]:
        params: Dict[str, Any] = {"per_page": self.per_page, "page": 1, "_fields": ",".join(self.FIELDS)}
        if query.zone:
            params["search"] = query.zone
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, headers={"User-Agent": "ServiceDeskBot/1.0"}, transport=self.transport
            ) as client:
                resp = await client.get(f"{self.base_url}/wp-json/wp/v2/propiedades", params=params)
                resp.raise_for_status()
                rows = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ListingProviderError(repr(exc)) from exc
        if not isinstance(rows, list):
            raise ListingProviderError("unexpected_payload")
        listings = [self.map_property(row) for row in rows if isinstance(row, dict)]
        # The REST search already filtered by zone text; do not filter it again.
        unzoned = query.model_copy(update={"zone": None})
        return self.rank([item for item in listings if self.matches(item, unzoned)], query)

    @staticmethod
    def map_property(row: Dict[str, Any]) -> Listing:
        meta = row.get("property_meta") or {}
        prefix = str(meta.get("REAL_HOMES_property_price_prefix") or "").upper()
        try:
            price = float(meta.get("REAL_HOMES_property_price") or 0)
        except (TypeError, ValueError):
            price = 0.0
        images = [img.get("full_url") for img in meta.get("REAL_HOMES_property_images") or [] if isinstance(img, dict)]
        title = html.unescape(str((row.get("title") or {}).get("rendered") or "Propiedad"))
        excerpt = _TAGS.sub("", html.unescape(str((row.get("excerpt") or {}).get("rendered") or ""))).strip()
        return Listing(
            id=str(row.get("id")),
            title=title,
            price=price,
            currency=Currency.USD if _USD_PREFIX.search(prefix) else Currency.ARS,
            excerpt=excerpt,
            image_url=next((url for url in images if url), None),
            link=str(row.get("link") or ""),
            zone=str(meta.get("REAL_HOMES_property_address") or "") or None,
        )


def build_listing_provider(kind: str | None = None) -> ListingProvider:
    kind = (kind or SETTINGS.listing_provider or "mock").lower()
    if kind == "wordpress":
        return WordPressListingProvider()
    return MockListingProvider()


def _seed_catalogue() -> List[Listing]:
    rows = [
        ("P-101", "Depto 2 amb. c/balcón", 210000, Currency.ARS, "Centro", "depto", PropertyOperation.RENT),
        ("P-102", "PH 3 amb. c/patio", 235000, Currency.ARS, "Barrio Norte", "ph", PropertyOperation.RENT),
        ("P-103", "Casa 3 dorm. c/cochera", 260000, Currency.ARS, "Oeste", "casa", PropertyOperation.RENT),
        ("P-104", "Monoambiente luminoso", 150000, Currency.ARS, "Centro", "depto", PropertyOperation.RENT),
        ("P-201", "Casa 4 dorm. con pileta", 185000, Currency.USD, "Palihue", "casa", PropertyOperation.BUY),
        ("P-202", "Depto 3 amb. a estrenar", 98000, Currency.USD, "Centro", "depto", PropertyOperation.BUY),
        ("P-301", "Cabaña para 4 personas", 45000, Currency.ARS, "Sierra de la Ventana", "casa", PropertyOperation.TEMPORARY),
    ]
    return [
        Listing(
            id=listing_id,
            title=f"{title} – {zone}",
            price=float(price),
            currency=currency,
            excerpt=f"{title} en {zone}.",
            link=f"https://example.com/propiedades/{listing_id.lower()}",
            zone=zone,
            property_type=kind,
            operation=operation,
        )
        for listing_id, title, price, currency, zone, kind, operation in rows
    ]
