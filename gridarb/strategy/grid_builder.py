"""
Grid builder - pure construction of the interval ladder.

Layout, top to bottom:

    [long_n, ..., long_1, short_1, ..., short_n]

with n = target_position / shares_per_interval + 1. Long rungs sit above the
initial price and start with their buy side armed (active and pre-crossed), so
the first tick that reaches a long buy price enters immediately. Short rungs
mirror this below the initial price with the sell side armed.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List

from gridarb.config.config import StrategyParams
from gridarb.core import decimal_math as dm
from gridarb.core.errors import PreconditionViolation
from gridarb.state.models import Interval, IntervalSide, IntervalType, StockState


def rungs_per_side(target_position: int, shares_per_interval: int) -> int:
    if shares_per_interval <= 0 or target_position <= 0:
        raise PreconditionViolation("target_position and shares_per_interval must be positive")
    if target_position % shares_per_interval != 0:
        raise PreconditionViolation(
            f"target_position {target_position} is not a multiple of shares_per_interval {shares_per_interval}"
        )
    return target_position // shares_per_interval + 1


def build_intervals(
    initial_price: Decimal,
    target_position: int,
    shares_per_interval: int,
    space_between_intervals: Decimal,
    interval_profit: Decimal,
) -> List[Interval]:
    count = rungs_per_side(target_position, shares_per_interval)

    longs: List[Interval] = []
    for i in range(1, count + 1):
        sell_price = dm.add(initial_price, dm.multiply(i, space_between_intervals))
        longs.append(
            Interval(
                type=IntervalType.LONG,
                position_limit=shares_per_interval * i,
                buy=IntervalSide(price=dm.subtract(sell_price, interval_profit), active=True, crossed=True),
                sell=IntervalSide(price=sell_price),
            )
        )

    shorts: List[Interval] = []
    for i in range(1, count + 1):
        buy_price = dm.subtract(initial_price, dm.multiply(i, space_between_intervals))
        shorts.append(
            Interval(
                type=IntervalType.SHORT,
                position_limit=-shares_per_interval * i,
                buy=IntervalSide(price=buy_price),
                sell=IntervalSide(price=dm.add(buy_price, interval_profit), active=True, crossed=True),
            )
        )

    longs.reverse()
    return longs + shorts


def new_stock_state(
    stock: str,
    date: str,
    brokerage_id: str,
    initial_price: Decimal,
    params: StrategyParams,
) -> StockState:
    """Build a fresh, flat StockState around `initial_price`."""
    initial_price = dm.to_decimal(initial_price)
    if dm.compare(initial_price, 0) <= 0:
        raise PreconditionViolation(f"{stock}: initial price must be > 0, got {initial_price}")
    return StockState(
        stock=stock,
        date=date,
        brokerage_id=brokerage_id,
        initial_price=initial_price,
        shares_per_interval=params.shares_per_interval,
        space_between_intervals=params.space_between_intervals,
        target_position=params.target_position,
        interval_profit=params.interval_profit,
        is_static_intervals=params.is_static_intervals,
        brokerage_trading_cost_per_share=params.brokerage_trading_cost_per_share,
        num_contracts=params.num_contracts,
        profit_threshold=params.profit_threshold,
        loss_threshold=params.loss_threshold,
        intervals=build_intervals(
            initial_price,
            params.target_position,
            params.shares_per_interval,
            params.space_between_intervals,
            params.interval_profit,
        ),
    )
