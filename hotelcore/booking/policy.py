from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Union

from pydantic import BaseModel, Field

from hotelcore.booking.extent import DateRange, TemporalExtent
from hotelcore.catalog.models import ResourceCategory, ResourceInstance

Amount = Union[int, float, str, Decimal]


def to_minor(amount: Amount) -> int:
    """Rupees to paisa, rounded half up: round(amount * 100)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor(amount_minor: int) -> float:
    return float(Decimal(amount_minor) / 100)


def _ratio_of(amount_minor: int, ratio: Decimal) -> int:
    return int((Decimal(amount_minor) * ratio).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PricingPolicy(BaseModel):
    """
    Pricing rules applied when a booking is created.
    - deposit_ratio: share of the total a partial booking pays up front
    - service_fee_ratio, tax_ratio: surcharges on the room/hall subtotal
    - table_fee_per_guest_minor: restaurant reservation fee per guest, in paisa
    """
    deposit_ratio: Decimal = Field(default=Decimal("0.10"), ge=0, le=1)
    service_fee_ratio: Decimal = Field(default=Decimal("0.10"), ge=0)
    tax_ratio: Decimal = Field(default=Decimal("0.12"), ge=0)
    table_fee_per_guest_minor: int = Field(default=50000, ge=0)

    @classmethod
    def from_settings(cls, settings: Any) -> "PricingPolicy":
        return cls(
            deposit_ratio=settings.deposit_ratio,
            service_fee_ratio=settings.service_fee_ratio,
            tax_ratio=settings.tax_ratio,
            table_fee_per_guest_minor=to_minor(settings.table_fee_per_guest),
        )

    def deposit(self, total_minor: int) -> int:
        return _ratio_of(total_minor, self.deposit_ratio)


@dataclass
class PriceQuote:
    subtotal_minor: int
    service_fee_minor: int
    tax_minor: int

    @property
    def total_minor(self) -> int:
        return self.subtotal_minor + self.service_fee_minor + self.tax_minor


def quote(resource: ResourceInstance, extent: TemporalExtent, guest_count: int,
          policy: PricingPolicy) -> PriceQuote:
    if resource.category == ResourceCategory.RESTAURANT:
        return PriceQuote(guest_count * policy.table_fee_per_guest_minor, 0, 0)
    if resource.category == ResourceCategory.ROOM and isinstance(extent, DateRange):
        subtotal = extent.nights * resource.price_minor
    else:
        subtotal = resource.price_minor
    return PriceQuote(
        subtotal_minor=subtotal,
        service_fee_minor=_ratio_of(subtotal, policy.service_fee_ratio),
        tax_minor=_ratio_of(subtotal, policy.tax_ratio),
    )


def check_request(resource: ResourceInstance, guest_count: int) -> Dict[str, Any]:
    """
    Minimal validation of a booking request against the chosen resource.
    Returns a dict with 'ok' and 'reasons'.
    """
    reasons: List[str] = []
    ok = True

    if guest_count < 1:
        ok = False
        reasons.append("guest count must be at least 1")

    if guest_count > resource.capacity:
        ok = False
        reasons.append(f"{resource.label} can accommodate at most {resource.capacity} guests")

    return {"ok": ok, "reasons": reasons}
