"""
Invoice Data Model
==================

Value objects shared by the extraction pipeline and the comparison engine:

  - InvoiceExtraction: billing facts recovered from one uploaded document
  - EnergyOffer:       a competing tariff from the offer catalog
  - ComparisonResult:  savings estimate of the best comparable offer

InvoiceExtraction enforces its own invariants on construction so that a
zero, negative or non-finite amount can never travel past the extractor.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, asdict, fields
from typing import Optional

from policy import DEFAULT_THRESHOLDS
from provider_configs import canonical_supplier_name


def _positive_or_none(value) -> Optional[float]:
    """Return value as a float if it is strictly positive and finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def _optional_float(value) -> Optional[float]:
    """Coerce a catalog value to float, keeping None/blank as None."""
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return float(value)


_FALSE_STRINGS = frozenset({"", "0", "false", "f", "no", "n", "off"})


def _flag(value, default: bool = True) -> bool:
    """Read a catalog boolean; strings such as "false" or "0" are False."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    return bool(value)


# ---------------------------------------------------------------------------
# InvoiceExtraction
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InvoiceExtraction:
    """Structured facts extracted from a single energy bill."""
    company_name: Optional[str] = None
    consumption_kwh: Optional[float] = None
    total_factura: Optional[float] = None
    period_months: int = 1
    confidence: float = 0.0
    raw_text: Optional[str] = None
    period_start: Optional[str] = None
    period_end: Optional[str] = None

    def __post_init__(self):
        # Frozen dataclass: normalise through object.__setattr__.
        object.__setattr__(self, "consumption_kwh", _positive_or_none(self.consumption_kwh))
        object.__setattr__(self, "total_factura", _positive_or_none(self.total_factura))

        try:
            months = int(self.period_months)
        except (TypeError, ValueError):
            months = 1
        object.__setattr__(self, "period_months", max(1, months))

        try:
            conf = float(self.confidence)
        except (TypeError, ValueError):
            conf = 0.0
        if not math.isfinite(conf):
            conf = 0.0
        object.__setattr__(self, "confidence", min(1.0, max(0.0, conf)))

        if self.company_name is not None and not self.company_name.strip():
            object.__setattr__(self, "company_name", None)

        if self.raw_text is not None:
            object.__setattr__(
                self, "raw_text", self.raw_text[:DEFAULT_THRESHOLDS.raw_text_max_chars]
            )

    @property
    def has_billing_figures(self) -> bool:
        """True when both consumption and total were recovered."""
        return self.consumption_kwh is not None and self.total_factura is not None

    # ---- constructors ----

    @classmethod
    def empty(cls, raw_text: Optional[str] = None) -> "InvoiceExtraction":
        """Extraction for a document where no usable text was recovered."""
        return cls(confidence=0.0, raw_text=raw_text or None)

    @classmethod
    def manual(
        cls,
        consumption_kwh: float,
        total_factura: float,
        company_name: Optional[str] = None,
        period_months: int = 1,
    ) -> "InvoiceExtraction":
        """Extraction built from figures typed in by the customer."""
        return cls(
            company_name=canonical_supplier_name(company_name),
            consumption_kwh=consumption_kwh,
            total_factura=total_factura,
            period_months=period_months,
            confidence=1.0,
        )

    # ---- serialization helpers ----

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self, **kwargs) -> str:
        return json.dumps(self.to_dict(), default=str, **kwargs)

    @classmethod
    def from_dict(cls, d: dict) -> "InvoiceExtraction":
        """Construct from a plain dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in d.items() if k in known})


# ---------------------------------------------------------------------------
# EnergyOffer
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EnergyOffer:
    """A competing tariff from the offer catalog.

    Two pricing shapes exist. When both ``p1`` and ``p2`` (EUR per contracted
    kW per day, for the two time bands) are present the power term is
    computed from them; otherwise ``monthly_fixed_cost`` is the power term.
    """
    id: str
    company_name: str
    price_per_kwh: float
    monthly_fixed_cost: float = 0.0
    p1: Optional[float] = None
    p2: Optional[float] = None
    active: bool = True

    @property
    def has_power_tariff(self) -> bool:
        return self.p1 is not None and self.p2 is not None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "EnergyOffer":
        """Build an offer from a catalog row (numeric columns may be strings).

        Raises:
            ValueError: If a price column is not numeric.
        """
        return cls(
            id=str(d["id"]),
            company_name=str(d.get("company_name") or ""),
            price_per_kwh=float(d.get("price_per_kwh") or 0),
            monthly_fixed_cost=float(d.get("monthly_fixed_cost") or 0),
            p1=_optional_float(d.get("p1")),
            p2=_optional_float(d.get("p2")),
            active=_flag(d.get("active"), True),
        )


def active_offers(offers: list[EnergyOffer]) -> list[EnergyOffer]:
    """Filter a raw catalog down to the offers that take part in comparisons."""
    return [o for o in offers if o.active]


# ---------------------------------------------------------------------------
# ComparisonResult
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ComparisonResult:
    """Savings estimate of the cheapest comparable offer.

    Monetary and percentage values are rounded to 2 decimals.
    ``estimated_savings_percentage`` is never negative.
    """
    current_company: Optional[str]
    current_monthly_cost: float
    best_offer_company: str
    best_offer_monthly_cost: float
    estimated_savings_amount: float
    estimated_savings_percentage: float
    prudent_mode: bool

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self, **kwargs) -> str:
        return json.dumps(self.to_dict(), default=str, **kwargs)
