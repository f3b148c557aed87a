from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple, Union

CENTS = Decimal("0.01")
FREE_SHIPPING_THRESHOLD = Decimal("50.00")
FLAT_SHIPPING = Decimal("5.99")
TAX_RATE = Decimal("0.08")

Number = Union[str, int, float, Decimal]


def to_money(value: Number) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def format_money(value: Number) -> str:
    return str(to_money(value))


@dataclass
class OrderTotals:
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal


def shipping_for(subtotal: Decimal) -> Decimal:
    return Decimal("0.00") if subtotal >= FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING


def compute_totals(lines: Iterable[Tuple[Number, int]]) -> OrderTotals:
    """Totals for (unit price, quantity) lines.

    Shipping is waived at 50.00 and above, tax is a flat 8% of the subtotal.
    """
    subtotal = to_money(sum((Decimal(str(price)) * qty for price, qty in lines), Decimal("0")))
    shipping = shipping_for(subtotal)
    tax = to_money(subtotal * TAX_RATE)
    return OrderTotals(subtotal=subtotal, shipping=shipping, tax=tax, total=subtotal + shipping + tax)


PRICE_RANGES = {
    "under25": (None, Decimal("25")),
    "25to50": (Decimal("25"), Decimal("50")),
    "50to100": (Decimal("50"), Decimal("100")),
    "over100": (Decimal("100"), None),
}


def in_price_range(price: Number, name: str) -> bool:
    if name not in PRICE_RANGES:
        return True
    low, high = PRICE_RANGES[name]
    value = Decimal(str(price))
    if low is not None and value < low:
        return False
    if high is not None and value >= high:
        return False
    return True
