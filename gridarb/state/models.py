"""
Stock strategy state: the interval ladder, trading log and PnL ledger.

A StockState is mutated only by the reconciliation engine of its own stock
loop. Every model converts to and from plain dicts for the state store;
decimals are written as strings so a JSON round trip is exact.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from gridarb.core import decimal_math as dm
from gridarb.core.errors import PreconditionViolation


class IntervalType(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class OrderAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class StateStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class CloseReason(str, Enum):
    WIN = "W"
    LOSS = "L"
    TIME_EXPIRED = "N"


def _dec(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return dm.to_decimal(value)


def _str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class IntervalSide:
    price: Decimal
    active: bool = False
    crossed: bool = False

    def activate(self) -> None:
        self.active = True
        self.crossed = False

    def deactivate(self) -> None:
        self.active = False
        self.crossed = False

    def to_dict(self) -> Dict[str, Any]:
        return {"price": str(self.price), "active": self.active, "crossed": self.crossed}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntervalSide":
        return cls(price=dm.to_decimal(data["price"]), active=bool(data["active"]), crossed=bool(data["crossed"]))


@dataclass
class Interval:
    """One rung of the ladder."""
    type: IntervalType
    position_limit: int
    buy: IntervalSide
    sell: IntervalSide

    def shift(self, amount: Decimal) -> None:
        self.buy.price = dm.add(self.buy.price, amount)
        self.sell.price = dm.add(self.sell.price, amount)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "positionLimit": self.position_limit,
            "buy": self.buy.to_dict(),
            "sell": self.sell.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Interval":
        return cls(
            type=IntervalType(data["type"]),
            position_limit=int(data["positionLimit"]),
            buy=IntervalSide.from_dict(data["buy"]),
            sell=IntervalSide.from_dict(data["sell"]),
        )


@dataclass(frozen=True)
class TradingLogEntry:
    action: OrderAction
    timestamp: str
    price: Decimal
    fill_price: Decimal
    previous_position: int
    new_position: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "timestamp": self.timestamp,
            "price": str(self.price),
            "fillPrice": str(self.fill_price),
            "previousPosition": self.previous_position,
            "newPosition": self.new_position,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradingLogEntry":
        return cls(
            action=OrderAction(data["action"]),
            timestamp=str(data["timestamp"]),
            price=dm.to_decimal(data["price"]),
            fill_price=dm.to_decimal(data["fillPrice"]),
            previous_position=int(data["previousPosition"]),
            new_position=int(data["newPosition"]),
        )


@dataclass(frozen=True)
class Snapshot:
    """A bid/ask quote. Either side may be missing."""
    bid: Optional[Decimal]
    ask: Optional[Decimal]
    timestamp: Optional[str] = None

    @property
    def has_both_sides(self) -> bool:
        return not dm.is_zero(self.bid) and not dm.is_zero(self.ask)

    @property
    def spread(self) -> Optional[Decimal]:
        if not self.has_both_sides:
            return None
        return dm.subtract(self.ask, self.bid)

    def to_dict(self) -> Dict[str, Any]:
        return {"bid": _str(self.bid), "ask": _str(self.ask), "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        ts = data.get("timestamp")
        return cls(bid=_dec(data.get("bid")), ask=_dec(data.get("ask")), timestamp=None if ts is None else str(ts))


@dataclass
class StockState:
    """Aggregate root for one stock's strategy instance."""
    stock: str
    date: str
    brokerage_id: str
    initial_price: Decimal
    shares_per_interval: int
    space_between_intervals: Decimal
    target_position: int
    interval_profit: Decimal
    is_static_intervals: bool = False
    brokerage_trading_cost_per_share: Decimal = Decimal(0)
    num_contracts: int = 1
    profit_threshold: Optional[Decimal] = None
    loss_threshold: Optional[Decimal] = None
    position: int = 0
    last_bid: Optional[Decimal] = None
    last_ask: Optional[Decimal] = None
    realized_pnl: Optional[Decimal] = None
    realized_pnl_as_percentage: Optional[Decimal] = None
    exit_pnl: Optional[Decimal] = None
    exit_pnl_as_percentage: Optional[Decimal] = None
    max_moving_profit_as_percentage: Optional[Decimal] = None
    max_moving_loss_as_percentage: Optional[Decimal] = None
    net_position_value: Decimal = Decimal(0)
    intervals: List[Interval] = field(default_factory=list)
    trading_logs: List[TradingLogEntry] = field(default_factory=list)
    status: StateStatus = StateStatus.OPEN
    close_reason: Optional[CloseReason] = None

    @property
    def is_open(self) -> bool:
        return self.status is StateStatus.OPEN

    @property
    def has_thresholds(self) -> bool:
        return self.profit_threshold is not None or self.loss_threshold is not None

    @property
    def capital_base(self) -> Decimal:
        """Value of the largest reachable position at the initial price."""
        return dm.multiply(self.target_position + self.shares_per_interval, self.initial_price)

    def append_log(self, entry: TradingLogEntry) -> None:
        self.trading_logs.append(entry)

    def close(self, reason: CloseReason) -> None:
        if not self.is_open:
            raise PreconditionViolation(f"{self.stock}: state is already closed ({self.close_reason})")
        if self.position != 0:
            raise PreconditionViolation(f"{self.stock}: cannot close with open position {self.position}")
        self.status = StateStatus.CLOSED
        self.close_reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stock": self.stock,
            "date": self.date,
            "brokerageId": self.brokerage_id,
            "initialPrice": str(self.initial_price),
            "sharesPerInterval": self.shares_per_interval,
            "spaceBetweenIntervals": str(self.space_between_intervals),
            "targetPosition": self.target_position,
            "intervalProfit": str(self.interval_profit),
            "isStaticIntervals": self.is_static_intervals,
            "brokerageTradingCostPerShare": str(self.brokerage_trading_cost_per_share),
            "numContracts": self.num_contracts,
            "profitThreshold": _str(self.profit_threshold),
            "lossThreshold": _str(self.loss_threshold),
            "position": self.position,
            "lastBid": _str(self.last_bid),
            "lastAsk": _str(self.last_ask),
            "realizedPnL": _str(self.realized_pnl),
            "realizedPnLAsPercentage": _str(self.realized_pnl_as_percentage),
            "exitPnL": _str(self.exit_pnl),
            "exitPnLAsPercentage": _str(self.exit_pnl_as_percentage),
            "maxMovingProfitAsPercentage": _str(self.max_moving_profit_as_percentage),
            "maxMovingLossAsPercentage": _str(self.max_moving_loss_as_percentage),
            "netPositionValue": str(self.net_position_value),
            "status": self.status.value,
            "closeReason": None if self.close_reason is None else self.close_reason.value,
            "intervals": [i.to_dict() for i in self.intervals],
            "tradingLogs": [t.to_dict() for t in self.trading_logs],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StockState":
        close_reason = data.get("closeReason")
        return cls(
            stock=str(data["stock"]),
            date=str(data["date"]),
            brokerage_id=str(data.get("brokerageId", data["stock"])),
            initial_price=dm.to_decimal(data["initialPrice"]),
            shares_per_interval=int(data["sharesPerInterval"]),
            space_between_intervals=dm.to_decimal(data["spaceBetweenIntervals"]),
            target_position=int(data["targetPosition"]),
            interval_profit=dm.to_decimal(data["intervalProfit"]),
            is_static_intervals=bool(data.get("isStaticIntervals", False)),
            brokerage_trading_cost_per_share=dm.to_decimal(data.get("brokerageTradingCostPerShare", "0")),
            num_contracts=int(data.get("numContracts", 1)),
            profit_threshold=_dec(data.get("profitThreshold")),
            loss_threshold=_dec(data.get("lossThreshold")),
            position=int(data.get("position", 0)),
            last_bid=_dec(data.get("lastBid")),
            last_ask=_dec(data.get("lastAsk")),
            realized_pnl=_dec(data.get("realizedPnL")),
            realized_pnl_as_percentage=_dec(data.get("realizedPnLAsPercentage")),
            exit_pnl=_dec(data.get("exitPnL")),
            exit_pnl_as_percentage=_dec(data.get("exitPnLAsPercentage")),
            max_moving_profit_as_percentage=_dec(data.get("maxMovingProfitAsPercentage")),
            max_moving_loss_as_percentage=_dec(data.get("maxMovingLossAsPercentage")),
            net_position_value=dm.to_decimal(data.get("netPositionValue", "0")),
            intervals=[Interval.from_dict(i) for i in data.get("intervals", [])],
            trading_logs=[TradingLogEntry.from_dict(t) for t in data.get("tradingLogs", [])],
            status=StateStatus(data.get("status", StateStatus.OPEN.value)),
            close_reason=None if close_reason is None else CloseReason(close_reason),
        )
