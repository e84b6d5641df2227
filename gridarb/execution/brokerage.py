"""
Brokerage capability interface and a minimal httpx REST adapter.

The engine only needs three calls: a quote, a market order and an order
status. Authentication and session keep-alive live outside this package; the
adapter accepts an optional bearer token and nothing more.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Protocol

import httpx

from gridarb.core import decimal_math as dm
from gridarb.core.errors import BrokerageError, FillQuantityMismatchError, OrderNotFilledError
from gridarb.infra.logging_cfg import log_event
from gridarb.state.models import OrderAction, Snapshot

log = logging.getLogger("gridarb")


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class OrderRequest:
    brokerage_id: str
    action: OrderAction
    quantity: int
    price: Optional[Decimal] = None


@dataclass(frozen=True)
class OrderStatusReport:
    status: OrderStatus
    filled_quantity: int = 0
    average_price: Optional[Decimal] = None

    @property
    def is_terminal_failure(self) -> bool:
        return self.status in (OrderStatus.CANCELLED, OrderStatus.REJECTED)


class BrokerageClient(Protocol):
    async def get_snapshot(self, brokerage_id: str) -> Snapshot: ...

    async def place_order(self, order: OrderRequest) -> str: ...

    async def get_order_status(self, order_id: str) -> OrderStatusReport: ...


async def set_security_position(
    client: BrokerageClient,
    brokerage_id: str,
    current_position: int,
    new_position: int,
    snapshot: Snapshot,
    poll_interval: float = 1.0,
    timeout: float = 120.0,
) -> Decimal:
    """
    Move the brokerage position from `current_position` to `new_position` with
    one market order and wait until it is filled. Returns the average fill
    price. The order is never resubmitted.
    """
    action = OrderAction.BUY if new_position > current_position else OrderAction.SELL
    quantity = abs(new_position - current_position)
    if quantity == 0:
        raise BrokerageError(f"{brokerage_id}: refusing to place a zero-quantity order")
    quoted = snapshot.ask if action is OrderAction.BUY else snapshot.bid

    order_id = await client.place_order(
        OrderRequest(brokerage_id=brokerage_id, action=action, quantity=quantity, price=quoted)
    )
    log_event(log, "order_placed", brokerage_id=brokerage_id, order_id=order_id,
              action=action.value, quantity=quantity, price=quoted)

    deadline = time.monotonic() + timeout
    while True:
        await asyncio.sleep(poll_interval)
        report = await client.get_order_status(order_id)
        if report.status is OrderStatus.FILLED:
            break
        if report.is_terminal_failure:
            raise OrderNotFilledError(f"order {order_id} for {brokerage_id} ended {report.status.value}")
        if time.monotonic() >= deadline:
            raise OrderNotFilledError(f"order {order_id} for {brokerage_id} not filled within {timeout}s")
        log_event(log, "fill_pending", logging.DEBUG, stock=brokerage_id, order_id=order_id,
                  status=report.status.value)

    if report.filled_quantity != quantity:
        raise FillQuantityMismatchError(
            f"order {order_id} for {brokerage_id}: requested {quantity}, filled {report.filled_quantity}"
        )
    fill_price = report.average_price if report.average_price is not None else quoted
    log_event(log, "order_filled", brokerage_id=brokerage_id, order_id=order_id,
              quantity=quantity, fill_price=fill_price)
    return fill_price


class HttpBrokerageClient:
    """
    REST adapter:

        GET  /quotes/{id}   -> {"bid": .., "ask": .., "timestamp": ..}
        POST /orders        -> {"orderId": ..}
        GET  /orders/{id}   -> {"status": .., "filledQuantity": .., "averagePrice": ..}
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            headers = {"Authorization": f"Bearer {token}"} if token else None
            self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, headers=headers)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def get_snapshot(self, brokerage_id: str) -> Snapshot:
        data = await self._request("GET", f"/quotes/{brokerage_id}")
        try:
            return Snapshot.from_dict(data)
        except (ArithmeticError, AttributeError, TypeError) as exc:
            raise BrokerageError(f"unparseable quote for {brokerage_id}: {data!r}") from exc

    async def place_order(self, order: OrderRequest) -> str:
        payload: dict[str, Any] = {
            "id": order.brokerage_id,
            "action": order.action.value,
            "quantity": order.quantity,
            "type": "MARKET",
        }
        data = await self._request("POST", "/orders", json=payload)
        order_id = data.get("orderId") if isinstance(data, dict) else None
        if order_id is None:
            raise BrokerageError(f"order response without orderId: {data!r}")
        return str(order_id)

    async def get_order_status(self, order_id: str) -> OrderStatusReport:
        data = await self._request("GET", f"/orders/{order_id}")
        try:
            avg = data.get("averagePrice")
            return OrderStatusReport(
                status=OrderStatus(str(data["status"]).upper()),
                filled_quantity=int(data.get("filledQuantity", 0)),
                average_price=None if avg is None else dm.to_decimal(avg),
            )
        except (KeyError, ValueError, ArithmeticError, AttributeError) as exc:
            raise BrokerageError(f"unparseable order status for {order_id}: {data!r}") from exc

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = await self.client.request(method, path, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as exc:
            raise BrokerageError(f"{method} {path} failed: {exc}") from exc
        except ValueError as exc:
            raise BrokerageError(f"{method} {path} returned invalid JSON") from exc
