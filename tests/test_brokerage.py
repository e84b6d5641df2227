"""
Tests for HttpBrokerageClient against an in-process httpx transport.
"""

import json
from decimal import Decimal

import httpx
import pytest

from gridarb.core.errors import BrokerageError
from gridarb.execution.brokerage import HttpBrokerageClient, OrderRequest, OrderStatus
from gridarb.state.models import OrderAction

D = Decimal


def make_client(handler):
    transport = httpx.MockTransport(handler)
    http = httpx.AsyncClient(base_url="http://broker.test/v1", transport=transport)
    return HttpBrokerageClient("http://broker.test/v1", client=http), http


class TestHttpBrokerageClient:

    @pytest.mark.asyncio
    async def test_quote(self):
        def handler(request):
            assert request.url.path == "/v1/quotes/PARA-ID"
            return httpx.Response(200, json={"bid": "10.29", "ask": 10.30, "timestamp": "t0"})

        client, http = make_client(handler)
        snap = await client.get_snapshot("PARA-ID")
        await http.aclose()

        assert snap.bid == D("10.29")
        assert snap.ask == D("10.3")
        assert snap.timestamp == "t0"

    @pytest.mark.asyncio
    async def test_place_order_and_status(self):
        seen = []

        def handler(request):
            if request.method == "POST":
                seen.append(json.loads(request.content))
                return httpx.Response(200, json={"orderId": 991})
            return httpx.Response(200, json={"status": "filled", "filledQuantity": 20, "averagePrice": "10.31"})

        client, http = make_client(handler)
        order_id = await client.place_order(OrderRequest("PARA-ID", OrderAction.BUY, 20, D("10.30")))
        report = await client.get_order_status(order_id)
        await http.aclose()

        assert order_id == "991"
        assert seen == [{"id": "PARA-ID", "action": "BUY", "quantity": 20, "type": "MARKET"}]
        assert report.status is OrderStatus.FILLED
        assert report.filled_quantity == 20
        assert report.average_price == D("10.31")

    @pytest.mark.asyncio
    async def test_http_error_wrapped(self):
        client, http = make_client(lambda request: httpx.Response(503, text="down"))
        with pytest.raises(BrokerageError):
            await client.get_snapshot("PARA-ID")
        await http.aclose()

    @pytest.mark.asyncio
    async def test_missing_order_id(self):
        client, http = make_client(lambda request: httpx.Response(200, json={"accepted": True}))
        with pytest.raises(BrokerageError):
            await client.place_order(OrderRequest("PARA-ID", OrderAction.SELL, 10))
        await http.aclose()

    @pytest.mark.asyncio
    async def test_unknown_status(self):
        client, http = make_client(lambda request: httpx.Response(200, json={"status": "LOST"}))
        with pytest.raises(BrokerageError):
            await client.get_order_status("1")
        await http.aclose()

    @pytest.mark.asyncio
    async def test_borrowed_client_not_closed(self):
        client, http = make_client(lambda request: httpx.Response(200, json={}))
        await client.close()
        assert not http.is_closed
        await http.aclose()
