"""
Tests for the grid builder - interval ladder construction.

Tests cover:
- Rung count and ordering
- Long/short price relationships and position limits
- Initial armed sides
- Rejection of non-multiple targets
- Stock state onboarding
"""

from decimal import Decimal

import pytest

from gridarb.core.errors import PreconditionViolation
from gridarb.state.models import IntervalType, StateStatus
from gridarb.strategy.grid_builder import build_intervals, new_stock_state, rungs_per_side

D = Decimal


class TestBuildIntervals:

    @pytest.fixture
    def ladder(self):
        return build_intervals(D("10.00"), 50, 10, D("0.50"), D("0.20"))

    def test_rung_count(self, ladder):
        assert rungs_per_side(50, 10) == 6
        assert len(ladder) == 12
        assert [i.type for i in ladder] == [IntervalType.LONG] * 6 + [IntervalType.SHORT] * 6

    def test_first_long_rung(self, ladder):
        rung = ladder[5]
        assert rung.sell.price == D("10.50")
        assert rung.buy.price == D("10.30")
        assert rung.position_limit == 10

    def test_first_short_rung(self, ladder):
        rung = ladder[6]
        assert rung.buy.price == D("9.50")
        assert rung.sell.price == D("9.70")
        assert rung.position_limit == -10

    def test_outer_rungs(self, ladder):
        assert ladder[0].sell.price == D("13.00")
        assert ladder[0].position_limit == 60
        assert ladder[-1].buy.price == D("7.00")
        assert ladder[-1].position_limit == -60

    def test_ordered_by_descending_sell_price(self, ladder):
        sells = [i.sell.price for i in ladder]
        assert sells == sorted(sells, reverse=True)
        assert all(i.sell.price > D("10.00") for i in ladder if i.type is IntervalType.LONG)
        assert all(i.buy.price < D("10.00") for i in ladder if i.type is IntervalType.SHORT)

    def test_profit_relationship(self, ladder):
        for interval in ladder:
            assert interval.sell.price - interval.buy.price == D("0.20")

    def test_position_limit_magnitude_matches_rung_index(self, ladder):
        longs = ladder[:6]
        shorts = ladder[6:]
        assert [i.position_limit for i in longs] == [60, 50, 40, 30, 20, 10]
        assert [i.position_limit for i in shorts] == [-10, -20, -30, -40, -50, -60]

    def test_initial_flags(self, ladder):
        for interval in ladder[:6]:
            assert interval.buy.active and interval.buy.crossed
            assert not interval.sell.active and not interval.sell.crossed
        for interval in ladder[6:]:
            assert interval.sell.active and interval.sell.crossed
            assert not interval.buy.active and not interval.buy.crossed

    def test_exact_decimal_prices_for_small_spacing(self):
        ladder = build_intervals(D("9.00"), 100, 50, D("0.09"), D("0.05"))
        assert len(ladder) == 6
        assert ladder[2].sell.price == D("9.09")
        assert ladder[2].buy.price == D("9.04")
        assert ladder[0].sell.price == D("9.27")
        assert ladder[3].buy.price == D("8.91")
        assert ladder[3].sell.price == D("8.96")

    def test_non_multiple_target_rejected(self):
        with pytest.raises(PreconditionViolation):
            build_intervals(D("10.00"), 55, 10, D("0.50"), D("0.20"))

    def test_non_positive_sizes_rejected(self):
        with pytest.raises(PreconditionViolation):
            rungs_per_side(50, 0)


class TestNewStockState:

    def test_copies_parameters(self, example_params):
        state = new_stock_state("PARA", "2025-03-21", "PARA-ID", D("10.00"), example_params)
        assert state.stock == "PARA"
        assert state.brokerage_id == "PARA-ID"
        assert state.position == 0
        assert state.net_position_value == D("0")
        assert state.status is StateStatus.OPEN
        assert state.shares_per_interval == 10
        assert state.target_position == 50
        assert len(state.intervals) == 12
        assert state.trading_logs == []

    def test_capital_base(self, make_state):
        assert make_state().capital_base == D("600.00")

    def test_rejects_non_positive_price(self, example_params):
        with pytest.raises(PreconditionViolation):
            new_stock_state("PARA", "2025-03-21", "PARA", D("0"), example_params)
