"""
Unit Tests for HttpCardFeedSource

Uses httpx.MockTransport in place of the provider.

Run with: pytest tests/test_http_feed.py -v
"""

import httpx
import pytest
from datetime import date

from card_reconciliation.errors import DownstreamUnavailableError
from card_reconciliation.repositories.http_feed import HttpCardFeedSource

FROM_DATE = date(2024, 3, 1)
TO_DATE = date(2024, 3, 31)


def _source(handler, **kwargs):
    return HttpCardFeedSource(
        "https://feed.example.com/v1/",
        transport=httpx.MockTransport(handler),
        **kwargs
    )


class TestHttpCardFeedSource:

    @pytest.mark.asyncio
    async def test_list_response(self, make_card):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{"id": "prov-1"}, {"id": "prov-2"}])

        records = await _source(handler, api_key="secret").fetch_transactions(make_card(), FROM_DATE, TO_DATE)

        assert [r["id"] for r in records] == ["prov-1", "prov-2"]
        assert seen[0].url.path == "/v1/cards/card-1/transactions"
        assert seen[0].url.params["from"] == "2024-03-01"
        assert seen[0].url.params["to"] == "2024-03-31"
        assert seen[0].headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_follows_cursor(self, make_card):
        def handler(request):
            if request.url.params.get("cursor") == "page-2":
                return httpx.Response(200, json={"transactions": [{"id": "prov-2"}]})
            return httpx.Response(200, json={"transactions": [{"id": "prov-1"}], "next_cursor": "page-2"})

        records = await _source(handler).fetch_transactions(make_card(), FROM_DATE, TO_DATE)

        assert [r["id"] for r in records] == ["prov-1", "prov-2"]

    @pytest.mark.asyncio
    async def test_server_error(self, make_card):
        def handler(request):
            return httpx.Response(500, text="boom")

        with pytest.raises(DownstreamUnavailableError) as exc_info:
            await _source(handler).fetch_transactions(make_card(), FROM_DATE, TO_DATE)

        assert exc_info.value.component == "card feed"

    @pytest.mark.asyncio
    async def test_timeout(self, make_card):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(DownstreamUnavailableError):
            await _source(handler).fetch_transactions(make_card(), FROM_DATE, TO_DATE)

    @pytest.mark.asyncio
    async def test_connection_error(self, make_card):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(DownstreamUnavailableError):
            await _source(handler).fetch_transactions(make_card(), FROM_DATE, TO_DATE)

    @pytest.mark.asyncio
    async def test_invalid_json(self, make_card):
        def handler(request):
            return httpx.Response(200, text="not json")

        with pytest.raises(DownstreamUnavailableError):
            await _source(handler).fetch_transactions(make_card(), FROM_DATE, TO_DATE)

    @pytest.mark.asyncio
    async def test_not_configured(self, make_card):
        with pytest.raises(DownstreamUnavailableError):
            await HttpCardFeedSource("").fetch_transactions(make_card(), FROM_DATE, TO_DATE)
