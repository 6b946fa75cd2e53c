"""
Distance/Earning Estimator - rider reward for a trip of a given length.

gross = round(base_pay + km * per_km_rate)
platform_fee = round(gross * fee_percent / 100)
net = gross - platform_fee

A missing or non-positive distance is replaced by the configured default
distance and the result is flagged, so orders paid on a guessed distance can
be audited.
"""
import math
from dataclasses import dataclass
from decimal import Decimal

from app.domain.services.money import to_decimal, round_currency, percent_of
from app.domain.services.settings_provider import PlatformConfig


@dataclass(frozen=True)
class ResolvedDistance:
    km: float
    fallback_used: bool


@dataclass(frozen=True)
class RiderEarning:
    distance: ResolvedDistance
    gross: Decimal
    platform_fee: Decimal
    net: Decimal


def resolve_distance(distance_km: float | None, default_km: float) -> ResolvedDistance:
    if distance_km is None:
        return ResolvedDistance(km=default_km, fallback_used=True)
    try:
        km = float(distance_km)
    except (TypeError, ValueError):
        return ResolvedDistance(km=default_km, fallback_used=True)
    if not math.isfinite(km) or km <= 0:
        return ResolvedDistance(km=default_km, fallback_used=True)
    return ResolvedDistance(km=km, fallback_used=False)


def estimate_rider_earning(distance_km: float | None, config: PlatformConfig) -> RiderEarning:
    distance = resolve_distance(distance_km, config.default_distance_km)
    gross = round_currency(
        config.rider_base_pay + to_decimal(distance.km) * config.rider_per_km_rate
    )
    platform_fee = percent_of(gross, config.rider_platform_fee_percent)
    return RiderEarning(
        distance=distance,
        gross=gross,
        platform_fee=platform_fee,
        net=gross - platform_fee,
    )
