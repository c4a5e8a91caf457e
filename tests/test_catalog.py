"""
Tests for the market catalog fetcher.
"""

import json

import pytest
from unittest.mock import AsyncMock, patch

from polyscan.clients.gamma_client import GammaClient
from polyscan.config import ScanConfig
from polyscan.errors import ParseError, TransientFetchError, TransientNetworkError


def record(condition_id: str, created_at: str = "2024-01-01T00:00:00Z", **overrides) -> dict:
    data = {
        "conditionId": condition_id,
        "question": f"Will {condition_id} happen?",
        "clobTokenIds": json.dumps([f"{condition_id}-yes", f"{condition_id}-no"]),
        "outcomes": json.dumps(["Yes", "No"]),
        "liquidityNum": 1500.0,
        "volumeNum": 9000.0,
        "createdAt": created_at,
        "enableOrderBook": True,
    }
    data.update(overrides)
    return data


@pytest.fixture
def gamma_client():
    return GammaClient(scan=ScanConfig(
        page_size=2,
        page_delay_seconds=0,
        max_retries=3,
        retry_base_delay=0
    ))


class TestParseMarket:
    """Tests for listing record parsing."""

    def test_parses_json_string_fields(self, gamma_client):
        market = gamma_client.parse_market(record("m1"))

        assert market.condition_id == "m1"
        assert market.token_ids == ["m1-yes", "m1-no"]
        assert market.get_yes_token().token_id == "m1-yes"
        assert market.get_no_token().token_id == "m1-no"
        assert market.liquidity == 1500.0
        assert market.volume == 9000.0

    def test_parses_tokens_array(self, gamma_client):
        data = record("m1", tokens=[
            {"token_id": "a", "outcome": "Trump"},
            {"token_id": "b", "outcome": "Harris"},
            {"token_id": "c", "outcome": "Other"},
        ])

        market = gamma_client.parse_market(data)

        assert market.outcome_count == 3
        assert [t.outcome for t in market.tokens] == ["Trump", "Harris", "Other"]

    def test_parses_comma_separated_ids(self, gamma_client):
        market = gamma_client.parse_market(record("m1", clobTokenIds="x,y", outcomes="Yes,No"))

        assert market.token_ids == ["x", "y"]

    def test_single_token_market_skipped(self, gamma_client):
        assert gamma_client.parse_market(record("m1", clobTokenIds='["only"]')) is None

    def test_order_book_disabled_skipped(self, gamma_client):
        assert gamma_client.parse_market(record("m1", enableOrderBook=False)) is None

    def test_missing_condition_id_raises(self, gamma_client):
        with pytest.raises(ParseError):
            gamma_client.parse_market({"question": "no id"})

    def test_non_object_raises(self, gamma_client):
        with pytest.raises(ParseError):
            gamma_client.parse_market(["not", "a", "dict"])


class TestFetchAllActiveMarkets:
    """Tests for pagination, dedup and degradation."""

    @pytest.mark.asyncio
    async def test_paginates_until_short_page(self, gamma_client):
        pages = [
            [record("a"), record("b")],
            [record("c")],
        ]

        with patch.object(gamma_client, "_request", AsyncMock(side_effect=pages)) as request:
            markets = await gamma_client.fetch_all_active_markets()

        assert len(markets) == 3
        assert request.call_count == 2
        offsets = [call.kwargs["params"]["offset"] for call in request.call_args_list]
        assert offsets == [0, 2]
        params = request.call_args_list[0].kwargs["params"]
        assert params["active"] == "true"
        assert params["closed"] == "false"
        assert params["limit"] == 2

    @pytest.mark.asyncio
    async def test_stops_on_empty_page(self, gamma_client):
        pages = [[record("a"), record("b")], []]

        with patch.object(gamma_client, "_request", AsyncMock(side_effect=pages)):
            markets = await gamma_client.fetch_all_active_markets()

        assert len(markets) == 2
        assert gamma_client.last_stats.pages_fetched == 2

    @pytest.mark.asyncio
    async def test_sorted_newest_first(self, gamma_client):
        pages = [[
            record("old", created_at="2023-01-01T00:00:00Z"),
            record("new", created_at="2024-06-01T00:00:00Z"),
        ], [
            record("undated", createdAt=None),
        ]]

        with patch.object(gamma_client, "_request", AsyncMock(side_effect=pages)):
            markets = await gamma_client.fetch_all_active_markets()

        assert [m.condition_id for m in markets] == ["new", "old", "undated"]

    @pytest.mark.asyncio
    async def test_deduplicates_by_condition_id(self, gamma_client):
        pages = [[record("a"), record("b")], [record("a")]]

        with patch.object(gamma_client, "_request", AsyncMock(side_effect=pages)):
            markets = await gamma_client.fetch_all_active_markets()

        assert sorted(m.condition_id for m in markets) == ["a", "b"]
        assert gamma_client.last_stats.duplicates == 1

    @pytest.mark.asyncio
    async def test_malformed_record_skipped(self, gamma_client):
        pages = [[record("a"), {"question": "missing id"}], [record("b")]]

        with patch.object(gamma_client, "_request", AsyncMock(side_effect=pages)):
            markets = await gamma_client.fetch_all_active_markets()

        assert sorted(m.condition_id for m in markets) == ["a", "b"]
        assert gamma_client.last_stats.parse_errors == 1

    @pytest.mark.asyncio
    async def test_retries_transient_failure(self, gamma_client):
        side_effect = [
            TransientNetworkError("timeout"),
            [record("a")],
        ]

        with patch.object(gamma_client, "_request", AsyncMock(side_effect=side_effect)) as request:
            markets = await gamma_client.fetch_all_active_markets()

        assert len(markets) == 1
        assert request.call_count == 2
        assert gamma_client.last_stats.retries == 1

    @pytest.mark.asyncio
    async def test_first_page_exhaustion_raises(self, gamma_client):
        failing = AsyncMock(side_effect=TransientNetworkError("down"))

        with patch.object(gamma_client, "_request", failing):
            with pytest.raises(TransientFetchError):
                await gamma_client.fetch_all_active_markets()

        assert failing.call_count == 3

    @pytest.mark.asyncio
    async def test_later_page_failure_returns_partial(self, gamma_client):
        side_effect = [
            [record("a"), record("b")],
            TransientNetworkError("down"),
            TransientNetworkError("down"),
            TransientNetworkError("down"),
        ]

        with patch.object(gamma_client, "_request", AsyncMock(side_effect=side_effect)):
            markets = await gamma_client.fetch_all_active_markets()

        assert len(markets) == 2
        assert gamma_client.last_stats.partial is True
