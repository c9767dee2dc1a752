from datetime import datetime, timezone

import mongomock
import pytest

from pricing import (
    ORDER_NUMBER_RE,
    compute_totals,
    estimated_delivery,
    generate_order_number,
    kebab_case,
    normalize_categories,
    totals_match,
)


def test_totals_for_two_mugs_with_standard_shipping():
    totals = compute_totals([(20, 2)], "standard")
    assert totals.subtotal == 40.0
    assert totals.shipping_cost == 8.0
    assert totals.tax == 3.2
    assert totals.total == 51.2


def test_total_is_sum_of_rounded_components():
    totals = compute_totals([(19.99, 3), (4.35, 1)], "express")
    assert totals.subtotal == 64.32
    assert totals.tax == 5.15
    assert totals.total == round(totals.subtotal + totals.shipping_cost + totals.tax, 2)


@pytest.mark.parametrize("method,cost", [("free", 0.0), ("standard", 8.0), ("express", 15.0)])
def test_shipping_rates(method, cost):
    assert compute_totals([(10, 1)], method).shipping_cost == cost


def test_unknown_shipping_method():
    with pytest.raises(ValueError):
        compute_totals([(10, 1)], "overnight")


def test_totals_match_tolerates_one_cent():
    assert totals_match(51.2, 51.2)
    assert totals_match(51.21, 51.2)
    assert not totals_match(50.0, 51.2)


def test_fifth_order_of_the_day():
    db = mongomock.MongoClient().db
    day = datetime(2025, 6, 1, 15, 30, tzinfo=timezone.utc)
    numbers = [generate_order_number(db, day) for _ in range(5)]
    assert numbers[-1] == "ORD-250601-0005"
    assert len(set(numbers)) == 5
    assert all(ORDER_NUMBER_RE.match(n) for n in numbers)


def test_order_sequence_restarts_each_day():
    db = mongomock.MongoClient().db
    generate_order_number(db, datetime(2025, 6, 1, tzinfo=timezone.utc))
    assert generate_order_number(db, datetime(2025, 6, 2, tzinfo=timezone.utc)) == "ORD-250602-0001"


@pytest.mark.parametrize("method,days", [("free", 10), ("standard", 5), ("express", 2)])
def test_estimated_delivery(method, days):
    placed = datetime(2025, 6, 1, tzinfo=timezone.utc)
    assert (estimated_delivery(method, placed) - placed).days == days


def test_kebab_case():
    assert kebab_case("Home Decor") == "home-decor"
    assert kebab_case("homeDecor") == "home-decor"
    assert kebab_case("  Jewelry & Accessories ") == "jewelry-accessories"


def test_normalize_categories_drops_duplicates_and_blanks():
    assert normalize_categories(["Ceramics", "ceramics", " ", "Wall Art"]) == ["ceramics", "wall-art"]
