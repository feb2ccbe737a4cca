"""Service and delivery fee computation.

All parameters come from the settings store at call time. The functions here
have no side effects and raise only ``InvalidInput`` for an unknown delivery
method.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from marketplace.domain.errors import InvalidInput
from marketplace.domain.status import DeliveryMethod
from marketplace.infrastructure import settings_store as keys


@dataclass(frozen=True)
class FeeQuote:
    service_fee: int
    delivery_fee: int
    free_trial: bool = False


def round_half_up(value) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_method(method) -> DeliveryMethod:
    try:
        return DeliveryMethod(method)
    except ValueError:
        raise InvalidInput(f"Invalid delivery method: {method}")


def delivery_fee_for(settings, method, distance_km: Optional[float] = None) -> int:
    method = parse_method(method)
    if method is DeliveryMethod.PICKUP:
        return 0
    if method is DeliveryMethod.CAMPUS:
        return round_half_up(settings.get(keys.CAMPUS_DELIVERY_FEE))
    # Missing, zero or negative distances bill as one kilometre
    km = max(distance_km or 1, 1)
    rate = settings.get(keys.OFF_CAMPUS_RATE_PER_KM)
    minimum = round_half_up(settings.get(keys.OFF_CAMPUS_MIN_FEE))
    return max(minimum, round_half_up(km * rate))


def compute_fees(settings, method, distance_km: Optional[float] = None,
                 prior_orders: Optional[int] = None) -> FeeQuote:
    """Return the fees for one order.

    ``prior_orders`` is the number of orders the customer already placed, or
    None when the customer is unknown. Customers below the free-trial limit
    pay neither fee.
    """
    delivery_fee = delivery_fee_for(settings, method, distance_km)
    service_fee = round_half_up(settings.get(keys.SERVICE_FEE))
    if prior_orders is not None and prior_orders < settings.get_int(keys.FREE_TRIAL_ORDER_LIMIT):
        return FeeQuote(service_fee=0, delivery_fee=0, free_trial=True)
    return FeeQuote(service_fee=service_fee, delivery_fee=delivery_fee)


def merchant_commission(settings, subtotal: int) -> int:
    """Platform cut withheld from the merchant leg: a percentage of the subtotal."""
    percent = settings.get(keys.MERCHANT_COMMISSION_PERCENT)
    return round_half_up(Decimal(subtotal) * Decimal(str(percent)) / Decimal(100))
