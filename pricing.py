"""Money, order numbering and delivery estimates shared by the API and the storefront."""
import re
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, NamedTuple

from pymongo import ReturnDocument

from config import DELIVERY_DAYS, SHIPPING_RATES, TAX_RATE

CENT = Decimal("0.01")


class OrderTotals(NamedTuple):
    subtotal: float
    shipping_cost: float
    tax: float
    total: float


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def shipping_cost(method: str) -> Decimal:
    if method not in SHIPPING_RATES:
        raise ValueError(f"Unknown shipping method: {method}")
    return to_money(SHIPPING_RATES[method])


def compute_totals(lines: Iterable, shipping_method: str = "standard") -> OrderTotals:
    """Totals for ``(unit_price, quantity)`` pairs.

    Every component is rounded half-up to cents before summing, so
    ``total == subtotal + shipping_cost + tax`` holds exactly on the stored values.
    """
    subtotal = sum((Decimal(str(price)) * int(qty) for price, qty in lines), Decimal("0"))
    subtotal = to_money(subtotal)
    shipping = shipping_cost(shipping_method)
    tax = to_money(subtotal * Decimal(TAX_RATE))
    total = subtotal + shipping + tax
    return OrderTotals(float(subtotal), float(shipping), float(tax), float(total))


def totals_match(client_total, server_total) -> bool:
    return abs(to_money(client_total) - to_money(server_total)) <= CENT


def estimated_delivery(shipping_method: str, placed_at: datetime) -> datetime:
    return placed_at + timedelta(days=DELIVERY_DAYS[shipping_method])


def generate_order_number(db, placed_at: datetime) -> str:
    """Next ``ORD-YYMMDD-####`` number for the day of ``placed_at``.

    The per-day sequence lives in the ``counter`` collection and is bumped
    atomically, so concurrent checkouts never share a number.
    """
    day = placed_at.strftime("%y%m%d")
    counter = db["counter"].find_one_and_update(
        {"_id": f"order:{day}"},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return f"ORD-{day}-{counter['seq']:04d}"


ORDER_NUMBER_RE = re.compile(r"^ORD-\d{6}-\d{4}$")


def kebab_case(value: str) -> str:
    value = re.sub(r"([a-z0-9])([A-Z])", r"\1-\2", value.strip())
    value = re.sub(r"[^A-Za-z0-9]+", "-", value)
    return value.strip("-").lower()


def normalize_categories(categories: Iterable[str]) -> list:
    seen = []
    for category in categories:
        slug = kebab_case(category)
        if slug and slug not in seen:
            seen.append(slug)
    return seen
