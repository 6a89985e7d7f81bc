"""
Savings Comparison Engine
=========================

Normalizes an invoice to a monthly figure, prices every comparable offer with
the tariff model, picks the cheapest, and computes the savings estimate.

Policy:
  - Offers from the customer's current supplier are never comparable.
  - A comparison that would show higher costs is not reported at all.
  - Implausible inputs (extreme savings, consumption outside the expected
    range, low-confidence extraction) still produce a result, flagged with
    ``prudent_mode`` so the presentation layer shows it conservatively.

When no result can be produced, explain_failure() says why.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from bill_parser import ComparisonResult, EnergyOffer, InvoiceExtraction
from policy import DEFAULT_POLICY, ComparisonPolicy
from provider_configs import canonical_supplier_name
from tariff_model import monthly_cost


def round2(value: float) -> float:
    """Round half-up to 2 decimals (12.345 -> 12.35, not banker's rounding)."""
    return float(Decimal(repr(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _supplier_key(name: Optional[str]) -> str:
    return (canonical_supplier_name(name) or "").strip().lower()


def comparable_offers(
    extraction: InvoiceExtraction,
    offers: list[EnergyOffer],
) -> list[EnergyOffer]:
    """Offers whose supplier differs from the invoice's current supplier."""
    current = _supplier_key(extraction.company_name)
    return [o for o in offers if _supplier_key(o.company_name) != current]


def _has_billing_figures(extraction: InvoiceExtraction) -> bool:
    return (
        extraction.consumption_kwh is not None
        and extraction.consumption_kwh > 0
        and extraction.total_factura is not None
        and extraction.total_factura > 0
    )


def is_prudent(
    savings_percent: float,
    consumption_kwh: float,
    confidence: float,
    policy: ComparisonPolicy = DEFAULT_POLICY,
) -> bool:
    """Whether a result should be presented conservatively."""
    return (
        savings_percent > policy.prudent_max_savings_percent
        or consumption_kwh < policy.min_consumption_kwh
        or consumption_kwh > policy.max_consumption_kwh
        or 0 < confidence < policy.min_confidence
    )


def run_comparison(
    extraction: InvoiceExtraction,
    offers: list[EnergyOffer],
    policy: ComparisonPolicy | None = None,
) -> Optional[ComparisonResult]:
    """Best comparable offer and estimated monthly savings, or None.

    Returns None when consumption or total are missing, when no comparable
    offer exists, or when even the cheapest offer is more expensive than the
    current bill. Ties between equally cheap offers go to the first one in
    ``offers``.
    """
    policy = policy or DEFAULT_POLICY
    if not _has_billing_figures(extraction):
        return None

    period_months = max(1, extraction.period_months or 1)
    current_monthly_cost = extraction.total_factura / period_months
    consumption_monthly = extraction.consumption_kwh / period_months

    candidates = comparable_offers(extraction, offers)
    if not candidates:
        return None

    best = candidates[0]
    best_cost = monthly_cost(consumption_monthly, best, policy)
    for offer in candidates[1:]:
        cost = monthly_cost(consumption_monthly, offer, policy)
        # Strictly lower: the first of equally cheap offers is kept
        if cost < best_cost:
            best, best_cost = offer, cost

    savings_amount = current_monthly_cost - best_cost
    savings_percent = (
        savings_amount / current_monthly_cost * 100 if current_monthly_cost > 0 else 0.0
    )
    if savings_percent < 0:
        return None

    return ComparisonResult(
        current_company=canonical_supplier_name(extraction.company_name),
        current_monthly_cost=round2(current_monthly_cost),
        best_offer_company=best.company_name,
        best_offer_monthly_cost=round2(best_cost),
        estimated_savings_amount=round2(savings_amount),
        estimated_savings_percentage=round2(savings_percent),
        prudent_mode=is_prudent(
            savings_percent, extraction.consumption_kwh, extraction.confidence, policy,
        ),
    )


def should_show_exact_savings(
    result: ComparisonResult,
    min_percent: float | None = None,
) -> bool:
    """Whether the exact savings figure may be shown to the customer.

    False for small savings (below ``min_percent``, default 8) and for
    prudent-mode results, which get a vaguer "optimization opportunity"
    message instead.
    """
    if min_percent is None:
        min_percent = DEFAULT_POLICY.min_percent_to_show
    if result.estimated_savings_percentage < min_percent:
        return False
    if result.prudent_mode:
        return False
    return True


# ---------------------------------------------------------------------------
# Failure reasons
# ---------------------------------------------------------------------------

class FailureReason(str, Enum):
    """Why no comparison could be produced, in diagnostic order."""
    UNREADABLE_INVOICE = "unreadable_invoice"
    NO_OFFERS = "no_offers"
    NO_COMPARABLE_OFFERS = "no_comparable_offers"
    NO_SAVINGS = "no_savings"


FAILURE_MESSAGES: dict[FailureReason, str] = {
    FailureReason.UNREADABLE_INVOICE: (
        "No hemos podido leer todos los datos de esta factura de forma automática. "
        "Un asesor revisará tu factura y te contactará con una estimación personalizada."
    ),
    FailureReason.NO_OFFERS: "No hay ofertas configuradas para comparar.",
    FailureReason.NO_COMPARABLE_OFFERS: "No hay otras comercializadoras con las que comparar.",
    FailureReason.NO_SAVINGS: "No se encontró una oferta con ahorro con los datos extraídos.",
}


def diagnose_failure(
    extraction: InvoiceExtraction,
    offers: list[EnergyOffer],
) -> FailureReason:
    """First failing precondition, checked in a fixed order."""
    if not _has_billing_figures(extraction):
        return FailureReason.UNREADABLE_INVOICE
    if not offers:
        return FailureReason.NO_OFFERS
    if not comparable_offers(extraction, offers):
        return FailureReason.NO_COMPARABLE_OFFERS
    return FailureReason.NO_SAVINGS


def explain_failure(extraction: InvoiceExtraction, offers: list[EnergyOffer]) -> str:
    """Customer-facing message for a comparison that produced no result."""
    return FAILURE_MESSAGES[diagnose_failure(extraction, offers)]
