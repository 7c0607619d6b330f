"""
Pricing helpers shared by carts and orders.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from config import DELIVERY_CHARGE, FREE_DELIVERY_THRESHOLD, TAX_RATE


def _as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def final_price(product: Dict[str, Any], now: Optional[datetime] = None) -> float:
    """Unit price after an active discount.

    The discount applies only while `now` is strictly before `valid_till`.
    """
    price = float(product.get("price", 0))
    discount = product.get("discount") or {}
    percentage = float(discount.get("percentage") or 0)
    valid_till = discount.get("valid_till")
    if percentage <= 0 or not isinstance(valid_till, datetime):
        return price
    now = now or datetime.now(timezone.utc)
    if _as_utc(now) < _as_utc(valid_till):
        return round(price * (1 - percentage / 100), 2)
    return price


def delivery_charge(subtotal: float) -> float:
    if subtotal <= 0:
        return 0.0
    if subtotal > FREE_DELIVERY_THRESHOLD:
        return 0.0
    return DELIVERY_CHARGE


def calc_taxes(subtotal: float) -> int:
    return round_half_up(subtotal * TAX_RATE)


def summarize(line_totals: Iterable[float]) -> Dict[str, float]:
    subtotal = round(sum(line_totals), 2)
    delivery = delivery_charge(subtotal)
    taxes = calc_taxes(subtotal)
    return {
        "subtotal": subtotal,
        "delivery_charges": delivery,
        "taxes": taxes,
        "total": round(subtotal + delivery + taxes, 2),
    }
