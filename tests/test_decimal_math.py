from decimal import Decimal

import pytest

from gridarb.core import decimal_math as dm


def test_add_is_exact():
    assert dm.add(0.1, 0.2) == Decimal("0.3")
    assert dm.compare(dm.add(0.1, 0.2), 0.3) == 0


def test_alternating_ticks_return_to_start():
    price = Decimal("9.00")
    for i in range(1000):
        price = dm.add(price, 0.01) if i % 2 == 0 else dm.subtract(price, 0.01)
    assert price == Decimal("9.00")


def test_many_ticks_one_way_stay_exact():
    price = Decimal("9.00")
    for _ in range(1000):
        price = dm.subtract(price, "0.01")
    assert price == Decimal("-1.00")


def test_compare_returns_sign():
    assert dm.compare("1.10", "1.1") == 0
    assert dm.compare(1, 2) == -1
    assert dm.compare(Decimal("2.5"), 2) == 1
    assert isinstance(dm.compare(1, 2), int)


def test_round_half_up():
    assert dm.round_to_places("2.345", 2) == Decimal("2.35")
    assert dm.round_to_places("-1.03335", 4) == Decimal("-1.0334")
    assert dm.round_to_places(1, 2) == Decimal("1.00")


def test_divide_and_percentage():
    assert dm.divide(1, 4) == Decimal("0.25")
    assert dm.percentage_of(3, 600) == Decimal("0.5")
    with pytest.raises(ZeroDivisionError):
        dm.divide(1, 0)


def test_to_decimal():
    assert dm.to_decimal(0.1) == Decimal("0.1")
    assert dm.to_decimal(" 10.30 ") == Decimal("10.30")
    with pytest.raises(TypeError):
        dm.to_decimal(True)


def test_is_zero():
    assert dm.is_zero(None)
    assert dm.is_zero("0.00")
    assert not dm.is_zero("0.01")
