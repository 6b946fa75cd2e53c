"""
Payment Split Calculator

Pure functions that turn an order's subtotal and the current PlatformConfig
into the full money breakdown. Run once at order creation (customer-facing
quote) and again at completion (authoritative settlement); the same inputs
always give the same split.
"""
import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

from app.core.exceptions import ValidationException
from app.domain.services.earning_estimator import (
    ResolvedDistance,
    RiderEarning,
    estimate_rider_earning,
    resolve_distance,
)
from app.domain.services.money import ZERO, HUNDRED, to_decimal, round_currency, percent_of
from app.domain.services.settings_provider import PlatformConfig


class CommissionSource(str, enum.Enum):
    ORDER = "order"
    RESTAURANT = "restaurant"
    BUSINESS_TYPE = "business_type"
    PLATFORM = "platform"


@dataclass(frozen=True)
class CommissionChoice:
    rate: Decimal
    source: CommissionSource


def resolve_commission_rate(
    config: PlatformConfig,
    *,
    order_rate: Decimal | None = None,
    restaurant_rate: Decimal | None = None,
    business_type: str | None = None,
) -> CommissionChoice:
    """First defined tier wins: order, restaurant override, business type, platform default"""
    if order_rate is not None:
        return CommissionChoice(_checked_rate(order_rate), CommissionSource.ORDER)
    if restaurant_rate is not None:
        return CommissionChoice(_checked_rate(restaurant_rate), CommissionSource.RESTAURANT)
    if business_type and business_type in config.business_type_commission:
        return CommissionChoice(
            _checked_rate(config.business_type_commission[business_type]),
            CommissionSource.BUSINESS_TYPE,
        )
    return CommissionChoice(_checked_rate(config.commission_rate), CommissionSource.PLATFORM)


def _checked_rate(rate: Decimal | float | str) -> Decimal:
    value = to_decimal(rate)
    if value < ZERO or value > HUNDRED:
        raise ValidationException("Commission rate must be between 0 and 100", field="commission_rate")
    return value


def calculate_subtotal(items: Iterable[Mapping]) -> Decimal:
    """Sum of unit_price * quantity over line items, rounded to a whole unit"""
    total = ZERO
    for item in items:
        quantity = int(item["quantity"])
        if quantity <= 0:
            raise ValidationException("Item quantity must be at least 1", field="items")
        total += to_decimal(item["unit_price"]) * quantity
    return round_currency(total)


def calculate_delivery_fee(distance_km: float, config: PlatformConfig) -> Decimal:
    fee = round_currency(config.delivery_base_fee + to_decimal(distance_km) * config.delivery_per_km_fee)
    return min(config.delivery_max_fee, fee)


def calculate_platform_profit(
    *,
    commission_amount: Decimal,
    delivery_fee: Decimal,
    rider_net_earning: Decimal,
    service_fee: Decimal,
    tax: Decimal,
    gateway_fee: Decimal,
    discount: Decimal,
) -> Decimal:
    """commission + (delivery_fee - rider_net) + service_fee + tax - gateway_fee - discount"""
    return (
        commission_amount
        + (delivery_fee - rider_net_earning)
        + service_fee
        + tax
        - gateway_fee
        - discount
    )


@dataclass(frozen=True)
class SplitInput:
    subtotal: Decimal
    commission_rate: Decimal
    is_online: bool
    # distance behind the customer delivery fee
    fee_distance_km: float | None
    # distance behind rider pay; None reuses the fee distance
    rider_distance_km: float | None = None
    discount: Decimal = ZERO


@dataclass(frozen=True)
class PaymentSplit:
    subtotal: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    restaurant_earning: Decimal
    delivery_fee: Decimal
    service_fee: Decimal
    tax: Decimal
    discount: Decimal
    gateway_fee: Decimal
    rider: RiderEarning
    fee_distance: ResolvedDistance
    platform_net_profit: Decimal
    total_price: Decimal

    @property
    def rider_net_earning(self) -> Decimal:
        return self.rider.net

    @property
    def distance_fallback_used(self) -> bool:
        return self.fee_distance.fallback_used or self.rider.distance.fallback_used


def calculate_split(split_input: SplitInput, config: PlatformConfig) -> PaymentSplit:
    if to_decimal(split_input.subtotal) < ZERO:
        raise ValidationException("Subtotal cannot be negative", field="subtotal")
    # split in whole units: commission + restaurant share == subtotal
    subtotal = round_currency(split_input.subtotal)
    requested_discount = to_decimal(split_input.discount)
    if requested_discount < ZERO:
        raise ValidationException("Discount cannot be negative", field="discount")
    commission_rate = _checked_rate(split_input.commission_rate)

    commission_amount = percent_of(subtotal, commission_rate)
    restaurant_earning = max(ZERO, subtotal - commission_amount)

    fee_distance = resolve_distance(split_input.fee_distance_km, config.default_distance_km)
    delivery_fee = calculate_delivery_fee(fee_distance.km, config)

    rider_km = split_input.rider_distance_km
    if rider_km is None:
        rider_km = split_input.fee_distance_km
    rider = estimate_rider_earning(rider_km, config)

    service_fee = round_currency(config.service_fee)
    tax = percent_of(subtotal, config.tax_rate) if config.tax_enabled else ZERO
    gateway_fee = percent_of(subtotal, config.gateway_fee_percent) if split_input.is_online else ZERO

    # A discount larger than the bill is capped so the total lands on exactly zero
    gross_total = subtotal + delivery_fee + service_fee + tax
    discount = min(round_currency(requested_discount), gross_total)
    total_price = gross_total - discount

    platform_net_profit = calculate_platform_profit(
        commission_amount=commission_amount,
        delivery_fee=delivery_fee,
        rider_net_earning=rider.net,
        service_fee=service_fee,
        tax=tax,
        gateway_fee=gateway_fee,
        discount=discount,
    )

    return PaymentSplit(
        subtotal=subtotal,
        commission_rate=commission_rate,
        commission_amount=commission_amount,
        restaurant_earning=restaurant_earning,
        delivery_fee=delivery_fee,
        service_fee=service_fee,
        tax=tax,
        discount=discount,
        gateway_fee=gateway_fee,
        rider=rider,
        fee_distance=fee_distance,
        platform_net_profit=platform_net_profit,
        total_price=total_price,
    )
