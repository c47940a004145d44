"""Per-kind booking policy and price quotes.

All amounts are integers in the currency's minor unit.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional, Sequence

from ..models.inventory import ItemKind

# ISO 4217 currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND", "CLP", "ISK", "UGX"})


class PricingError(ValueError):
    """Quote request cannot be priced."""


@dataclass(frozen=True)
class KindPolicy:
    """How a kind of inventory is reserved and priced."""
    dated: bool
    per_unit: bool
    per_day: bool
    unit_label: str


KIND_POLICIES: dict[ItemKind, KindPolicy] = {
    ItemKind.HOTEL: KindPolicy(dated=True, per_unit=True, per_day=True, unit_label="room-night"),
    ItemKind.TOUR: KindPolicy(dated=True, per_unit=True, per_day=False, unit_label="participant"),
    ItemKind.GUIDE: KindPolicy(dated=True, per_unit=False, per_day=True, unit_label="guide-day"),
    ItemKind.VEHICLE: KindPolicy(dated=False, per_unit=True, per_day=True, unit_label="vehicle-day"),
    ItemKind.CUSTOM_TRIP: KindPolicy(dated=False, per_unit=True, per_day=False, unit_label="traveller"),
}


def policy_for(kind: ItemKind) -> KindPolicy:
    return KIND_POLICIES[kind]


@dataclass(frozen=True)
class CatalogEntry:
    """Pricing and bounds for one inventory item."""
    item_id: Any
    kind: ItemKind
    unit_price: int
    currency: str
    max_quantity: int
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    addons: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class Quote:
    base: int
    surcharges: dict[str, int]
    total: int
    currency: str
    billable_days: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "base": self.base,
            "surcharges": dict(self.surcharges),
            "total": self.total,
            "currency": self.currency,
            "billable_days": self.billable_days,
        }


def billable_days(window_start: Optional[date], window_end: Optional[date]) -> int:
    if window_start is None or window_end is None:
        return 1
    return max((window_end - window_start).days, 1)


def _round_minor(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _surcharge(name: str, spec: Mapping[str, Any], base: int, quantity: int, days: int) -> int:
    addon_type = spec.get("type", "fixed")
    if addon_type == "fixed":
        amount = int(spec["amount"])
        if spec.get("per_day"):
            amount *= days
        if spec.get("per_unit"):
            amount *= quantity
        return amount
    if addon_type == "percentage":
        return _round_minor(Decimal(str(spec["rate"])) * base)
    raise PricingError(f"Add-on '{name}' has unsupported type '{addon_type}'")


def quote(
    entry: CatalogEntry,
    quantity: int,
    window_start: Optional[date] = None,
    window_end: Optional[date] = None,
    addons: Sequence[str] = (),
) -> Quote:
    """
    Price a booking request.

    Fixed add-ons are applied before percentage add-ons, and percentages are
    taken of the base price only.

    Raises:
        PricingError: Unknown add-on or non-positive quantity
    """
    if quantity <= 0:
        raise PricingError("quantity must be positive")

    policy = policy_for(entry.kind)
    days = billable_days(window_start, window_end)

    base = entry.unit_price
    if policy.per_unit:
        base *= quantity
    if policy.per_day:
        base *= days

    surcharges: dict[str, int] = {}
    for name in dict.fromkeys(addons):
        spec = entry.addons.get(name)
        if spec is None:
            raise PricingError(f"Add-on '{name}' is not offered for this item")
        surcharges[name] = _surcharge(name, spec, base, quantity, days)

    return Quote(
        base=base,
        surcharges=surcharges,
        total=base + sum(surcharges.values()),
        currency=entry.currency,
        billable_days=days,
    )


def currency_exponent(currency: str) -> int:
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


def minor_to_major(amount: int, currency: str) -> Decimal:
    """Convert minor units to a major-unit Decimal, e.g. 150000 LKR -> 1500.00."""
    exponent = currency_exponent(currency)
    return (Decimal(amount) / (Decimal(10) ** exponent)).quantize(Decimal(1).scaleb(-exponent))


def major_to_minor(amount: Decimal | str, currency: str) -> int:
    exponent = currency_exponent(currency)
    return _round_minor(Decimal(str(amount)) * (Decimal(10) ** exponent))
