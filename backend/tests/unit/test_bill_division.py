"""
tests/unit/test_bill_division.py — Unit tests for bill_service.compute_shares.

What this file proves:
  - sum(shares) == total exactly, for any total and resident count
  - every resident gets floor(total_cents / n); the leftover cents all go
    to the lowest user id
  - input order does not matter
  - amounts are Decimal with two places, never float

Pure Decimal arithmetic: no database, no Flask.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from backend.app.services.bill_service import compute_shares


def _assert_sums_to(shares: dict, expected: Decimal) -> None:
    total = sum(shares.values())
    assert total == expected, f"division sum {total} != bill total {expected}"


def test_even_split_two_residents():
    shares = compute_shares(Decimal("100.00"), [1, 2])
    assert shares == {1: Decimal("50.00"), 2: Decimal("50.00")}


def test_residual_goes_to_lowest_user_id():
    shares = compute_shares(Decimal("100.01"), [2, 3, 4])
    assert shares == {
        2: Decimal("33.35"),
        3: Decimal("33.33"),
        4: Decimal("33.33"),
    }
    _assert_sums_to(shares, Decimal("100.01"))


def test_input_order_is_irrelevant():
    assert compute_shares(Decimal("10.00"), [9, 3, 5]) == compute_shares(
        Decimal("10.00"), [3, 5, 9]
    )
    assert compute_shares(Decimal("10.00"), [9, 3, 5])[3] == Decimal("3.34")


def test_duplicate_ids_are_counted_once():
    shares = compute_shares(Decimal("9.00"), [7, 7, 8])
    assert shares == {7: Decimal("4.50"), 8: Decimal("4.50")}


def test_single_resident_pays_everything():
    assert compute_shares(Decimal("42.17"), [5]) == {5: Decimal("42.17")}


def test_one_cent_over_many_residents():
    shares = compute_shares(Decimal("0.01"), [4, 5, 6])
    assert shares == {4: Decimal("0.01"), 5: Decimal("0.00"), 6: Decimal("0.00")}


def test_total_is_quantised_half_even_first():
    # 10.005 → 10.00, 10.015 → 10.02
    _assert_sums_to(compute_shares(Decimal("10.005"), [1, 2]), Decimal("10.00"))
    _assert_sums_to(compute_shares(Decimal("10.015"), [1, 2]), Decimal("10.02"))


def test_amounts_are_two_place_decimals():
    for amount in compute_shares(Decimal("7.00"), [1, 2, 3]).values():
        assert isinstance(amount, Decimal)
        assert amount.as_tuple().exponent == -2


@pytest.mark.parametrize("total", ["0.01", "1.00", "99.99", "100.01", "1234.56", "99999.97"])
@pytest.mark.parametrize("count", [1, 2, 3, 6, 7, 11])
def test_sum_equals_total(total, count):
    shares = compute_shares(Decimal(total), list(range(10, 10 + count)))
    _assert_sums_to(shares, Decimal(total))
    base = min(shares.values())
    assert all(amount == base for uid, amount in shares.items() if uid != 10)
    assert shares[10] - base < Decimal("0.01") * count


def test_empty_resident_list_raises():
    with pytest.raises(ValueError):
        compute_shares(Decimal("10.00"), [])
