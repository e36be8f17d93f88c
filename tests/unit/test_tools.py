from __future__ import annotations

import asyncio

import httpx
import pytest

from models.schemas import AgentIdentity, Currency, EscalationPayload, Listing, ListingQuery, MessageAuthor, PropertyOperation, TranscriptMessage
from tools.analytics_tools import AnalyticsTools
from tools.listing_tools import (
    ListingProviderError,
    MockListingProvider,
    WordPressListingProvider,
    build_listing_provider,
    canonical_type,
)
from tools.ticket_tools import TicketStore


def _query(**overrides) -> ListingQuery:
    values = {
        "operation": PropertyOperation.RENT,
        "property_type": "departamento",
        "zone": "centro",
        "budget": 200000,
        "currency": Currency.ARS,
    }
    values.update(overrides)
    return ListingQuery(**values)


def test_canonical_type_folds_synonyms():
    assert canonical_type("Departamento") == "depto"
    assert canonical_type("dpto 2 amb") == "depto"
    assert canonical_type("Lote en barrio") == "terreno"
    assert canonical_type("Galpón") == "galpon"


def test_mock_provider_filters_by_band_type_zone_and_ranks_by_distance():
    async def _run():
        provider = MockListingProvider(
            [
                Listing(id="a", title="Depto Centro", price=225000, currency=Currency.ARS, zone="Centro", property_type="depto"),
                Listing(id="b", title="Depto Centro", price=205000, currency=Currency.ARS, zone="Centro", property_type="depto"),
                Listing(id="c", title="Casa Centro", price=200000, currency=Currency.ARS, zone="Centro", property_type="casa"),
                Listing(id="d", title="Depto Centro", price=200000, currency=Currency.USD, zone="Centro", property_type="depto"),
                Listing(id="e", title="Depto Centro", price=240000, currency=Currency.ARS, zone="Centro", property_type="depto"),
                Listing(
                    id="f",
                    title="Depto Centro",
                    price=200000,
                    currency=Currency.ARS,
                    zone="Centro",
                    property_type="depto",
                    operation=PropertyOperation.BUY,
                ),
            ]
        )
        results = await provider.search(_query())
        assert [item.id for item in results] == ["b", "a"]
        assert len(provider.queries) == 1

    asyncio.run(_run())


def test_default_provider_is_seeded_mock():
    async def _run():
        provider = build_listing_provider("mock")
        assert isinstance(provider, MockListingProvider)
        results = await provider.search(_query(operation=PropertyOperation.BUY, budget=100000, currency=Currency.USD))
        assert [item.id for item in results] == ["P-202"]

    asyncio.run(_run())


def test_wordpress_mapping_reads_usd_prefix_and_strips_markup():
    listing = WordPressListingProvider.map_property(
        {
            "id": 77,
            "link": "https://inmo.example/propiedad/77",
            "title": {"rendered": "Casa &amp; jard&iacute;n"},
            "excerpt": {"rendered": "<p>Amplia casa</p>"},
            "property_meta": {
                "REAL_HOMES_property_price": "95000",
                "REAL_HOMES_property_price_prefix": "U$S",
                "REAL_HOMES_property_address": "Palihue",
                "REAL_HOMES_property_images": [{"full_url": "https://inmo.example/77.jpg"}],
            },
        }
    )
    assert listing.id == "77"
    assert listing.title == "Casa & jardín"
    assert listing.excerpt == "Amplia casa"
    assert listing.currency == Currency.USD
    assert listing.price == 95000.0
    assert listing.image_url == "https://inmo.example/77.jpg"
    assert listing.zone == "Palihue"


def test_wordpress_search_sends_zone_and_filters_price_locally():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["search"] = request.url.params.get("search")
        rows = [
            {"id": 1, "title": {"rendered": "Depto"}, "property_meta": {"REAL_HOMES_property_price": "210000"}},
            {"id": 2, "title": {"rendered": "Depto caro"}, "property_meta": {"REAL_HOMES_property_price": "900000"}},
        ]
        return httpx.Response(200, json=rows)

    async def _run():
        provider = WordPressListingProvider(base_url="https://inmo.example", transport=httpx.MockTransport(handler))
        results = await provider.search(_query())
        assert seen["search"] == "centro"
        assert [item.id for item in results] == ["1"]

    asyncio.run(_run())


def test_wordpress_failure_is_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"code": "unavailable"})

    async def _run():
        provider = WordPressListingProvider(base_url="https://inmo.example", transport=httpx.MockTransport(handler))
        with pytest.raises(ListingProviderError):
            await provider.search(_query())

    asyncio.run(_run())


def test_ticket_store_lifecycle_survives_reload(tmp_path):
    path = str(tmp_path / "tickets.json")
    store = TicketStore(path=path)
    store.save_message("c1", TranscriptMessage(who=MessageAuthor.USER, text="hola", timestamp=1.0))
    ticket = store.create_ticket("c1", "🛠 Plomería", AgentIdentity(agent_id="ag-1", name="Ana"), EscalationPayload(category="Plomería"))
    assert ticket["ticket_id"] == "TCK-00001"
    assert ticket["status"] == "OPEN"
    store.save_rating("c1", 5)

    reloaded = TicketStore(path=path)
    assert reloaded.messages_for("c1")[0]["text"] == "hola"
    closed = reloaded.close_ticket("c1", "agent")
    assert closed["status"] == "CLOSED"
    assert closed["closed_reason"] == "agent"
    assert reloaded.close_ticket("c1", "agent") is None
    assert reloaded.ratings_for("c1")[0]["stars"] == 5


def test_skipped_rating_stores_no_stars():
    store = TicketStore(path="")
    row = store.save_rating("c2", 4, skipped=True)
    assert row["stars"] is None
    assert row["skipped"] is True


def test_analytics_dashboard_counts_finish_reasons():
    async def _run():
        analytics = AnalyticsTools(path="")
        await analytics.log_event("handoff_enqueued", {"conversation_id": "a"})
        await analytics.log_event("handoff_finished", {"conversation_id": "a", "reason": "timeout"})
        await analytics.log_event("handoff_finished", {"conversation_id": "b", "reason": "agent"})
        await analytics.log_event("handoff_finished", {"conversation_id": "c", "reason": "timeout"})
        metrics = await analytics.dashboard_metrics()
        assert metrics["total_events"] == 4
        assert metrics["events_by_type"]["handoff_finished"] == 3
        assert metrics["handoff_finish_reasons"] == {"timeout": 2, "agent": 1}
        assert len(await analytics.events("handoff_enqueued")) == 1

    asyncio.run(_run())


def test_analytics_jsonl_file(tmp_path):
    async def _run():
        analytics = AnalyticsTools(path=str(tmp_path / "events.jsonl"))
        await analytics.log_event("ai_assist_expired", {"conversation_id": "x"})
        rows = await AnalyticsTools(path=str(tmp_path / "events.jsonl")).events()
        assert rows[0]["event_type"] == "ai_assist_expired"

    asyncio.run(_run())
