"""
Policy knobs for invoice acquisition and savings comparison.

Every threshold the pipeline and the comparison engine depend on lives here
as a named value with a documented default, so the policy can be tuned
without touching extraction logic.

Defaults can be overridden through environment variables, e.g.::

    SAVINGS_PRUDENT_MAX_SAVINGS_PERCENT=40
    SAVINGS_MIN_EMBEDDED_TEXT_CHARS=120
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields


ENV_PREFIX = "SAVINGS_"


def _from_env(cls, prefix: str):
    """Build a dataclass instance, overriding defaults from the environment."""
    overrides = {}
    for f in fields(cls):
        raw = os.environ.get(f"{prefix}{f.name.upper()}")
        if raw is None or not raw.strip():
            continue
        default = f.default
        try:
            overrides[f.name] = type(default)(raw.strip())
        except ValueError as e:
            raise ValueError(
                f"Invalid value for {prefix}{f.name.upper()}: {raw!r}"
            ) from e
    return cls(**overrides)


@dataclass(frozen=True)
class ComparisonPolicy:
    """Thresholds used by the tariff model and the comparison engine."""

    # Savings above this percentage are implausible enough to be flagged.
    prudent_max_savings_percent: float = 45.0
    # Plausible monthly-bill consumption range (kWh) before flagging.
    min_consumption_kwh: float = 50.0
    max_consumption_kwh: float = 5000.0
    # Extraction confidence below this (but above 0) flags the result.
    min_confidence: float = 0.8
    # Minimum savings percentage worth showing as an exact number.
    min_percent_to_show: float = 8.0
    # Contracted power assumed when pricing P1/P2 offers (kW). The real
    # contracted power is rarely extractable from the bill.
    default_contracted_power_kw: float = 4.6
    days_per_month: int = 30

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "ComparisonPolicy":
        return _from_env(cls, prefix)


@dataclass(frozen=True)
class AcquisitionThresholds:
    """Thresholds used while turning document bytes into text."""

    # Embedded PDF text shorter than this is treated as a scan.
    min_embedded_text_chars: int = 80
    # Below this, recovered text carries too little signal to extract fields.
    min_extracted_text_chars: int = 30
    embedded_text_confidence: float = 0.92
    # Used when the OCR provider reports no confidence of its own.
    default_ocr_confidence: float = 0.8
    # Nominal confidence of the field extractor when run standalone.
    standalone_confidence: float = 0.85
    raw_text_max_chars: int = 2000
    failed_raw_text_max_chars: int = 500

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "AcquisitionThresholds":
        return _from_env(cls, prefix)


DEFAULT_POLICY = ComparisonPolicy()
DEFAULT_THRESHOLDS = AcquisitionThresholds()
