"""Modeled monthly cost of an energy offer for a given consumption.

Spanish electricity bills combine an energy term (kWh consumed x price) with
a power term billed per contracted kW per day. Offers in the catalog come in
two shapes:

  - P1/P2 tariffs: EUR per contracted kW per day for two time bands. The
    power term uses the average of both bands over a 30-day month at an
    assumed contracted power of 4.6 kW, since the customer's real contracted
    power is not reliably printed on every bill.
  - Flat tariffs: a fixed monthly fee stands in for the power term.
"""
from __future__ import annotations

from bill_parser import EnergyOffer
from policy import DEFAULT_POLICY, ComparisonPolicy


def energy_term(consumption_kwh: float, offer: EnergyOffer) -> float:
    return consumption_kwh * offer.price_per_kwh


def power_term(offer: EnergyOffer, policy: ComparisonPolicy = DEFAULT_POLICY) -> float:
    """Monthly power charge: P1/P2 when both are set, else the flat fee."""
    if offer.has_power_tariff:
        return (
            policy.default_contracted_power_kw
            * policy.days_per_month
            * ((offer.p1 + offer.p2) / 2)
        )
    return offer.monthly_fixed_cost


def monthly_cost(
    consumption_kwh: float,
    offer: EnergyOffer,
    policy: ComparisonPolicy | None = None,
) -> float:
    """Modeled monthly cost (EUR, unrounded) of ``offer`` for a monthly consumption."""
    policy = policy or DEFAULT_POLICY
    return energy_term(consumption_kwh, offer) + power_term(offer, policy)
