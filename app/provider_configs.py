"""
Pattern tables for Spanish electricity/gas invoice extraction.

Each table is an ordered list of ``(regex, confidence)`` entries. The
extractor walks a table top to bottom and the first pattern that matches
decides the field, so order encodes specificity: the most reliable,
most specific layouts come first and bare fallbacks come last. New invoice
templates are supported by inserting a pattern at the right position and
adding a golden fixture under ``fixtures/``.

All patterns run against whitespace-collapsed text with IGNORECASE.
"""
from __future__ import annotations

import re
from typing import Optional

# Number fragments shared by the tables below.
_NUM = r"\d+(?:[.,]\d+)?"
_NUM_GROUPED = r"\d+(?:[.,\s]\d{3})*(?:[.,]\d+)?"
# Money: European thousands ("1.234,56", "1 234,56") before plain decimals.
_AMOUNT = r"\d{1,3}(?:[.\s]\d{3})+,\d{2}|\d+(?:[.,]\d+)?"
_AMOUNT_2DP = r"\d{1,3}(?:\.\d{3})+,\d{2}|\d+[.,]\d{2}"

PATTERN_FLAGS = re.IGNORECASE


# ---------------------------------------------------------------------------
# Supplier detection
# ---------------------------------------------------------------------------

KNOWN_SUPPLIERS_PATTERN = (
    r"\b(iberdrola|endesa|naturgy|repsol|edp|total\s*energies?|viesgo|holaluz"
    r"|luz\s*en\s*casa|octopus|plenitude|cepsa|factor\s*energ[ií]a)\b"
)

SUPPLIER_PATTERNS: list[tuple[str, float]] = [
    (KNOWN_SUPPLIERS_PATTERN, 0.95),
    (r"comercializador[ao]?\s*[:\s]*([^\n\r,]+)", 0.80),
    (r"(?:empresa|suministrador)\s*[:\s]*([^\n\r,]+)", 0.70),
    (r"factura\s+(?:de\s+)?(?:luz|electricidad|gas)\s+[–-]\s*([^\n\r,]+)", 0.70),
]

# Labeled captures run to the next comma; keep only the leading name words,
# cut before punctuation, digits, tax ids or the next field label.
SUPPLIER_CAPTURE_MAX_WORDS = 4
SUPPLIER_CAPTURE_STOP = (
    r"[,;:]|\d|\b(?:cif|nif|consumo|total|importe|per[ií]odo)\b"
)

# Canonical supplier -> lowercase substrings that identify it. Checked in
# order with a plain contains-match, so "Gas Natural Fenosa" maps to Naturgy.
SUPPLIER_ALIASES: dict[str, list[str]] = {
    "Iberdrola": ["iberdrola"],
    "Endesa": ["endesa"],
    "Naturgy": ["naturgy", "gas natural"],
    "Repsol": ["repsol"],
    "EDP": ["edp"],
    "Total Energies": ["total energies", "totalenergies"],
    "Holaluz": ["holaluz"],
    "Octopus": ["octopus"],
    "Plenitude": ["plenitude"],
    "Cepsa": ["cepsa"],
    "Viesgo": ["viesgo"],
}


def canonical_supplier_name(name: Optional[str]) -> Optional[str]:
    """Map a raw supplier name to its canonical form.

    Unlisted names pass through trimmed; blank input returns None.
    """
    if not name or not name.strip():
        return None
    lowered = name.strip().lower()
    for canonical, needles in SUPPLIER_ALIASES.items():
        if any(needle in lowered for needle in needles):
            return canonical
    return name.strip()


# ---------------------------------------------------------------------------
# Consumption (kWh)
# ---------------------------------------------------------------------------

CONSUMPTION_PATTERNS: list[tuple[str, float]] = [
    (rf"(?:total|consumo\s*total)\s*:?\s*({_NUM})\s*kwh", 0.95),
    (r"total\s+(\d+)\s*kwh\s+(?:hasta|facturado)", 0.90),
    (rf"consumo\s*(?:total|de\s*energ[ií]a|el[ée]ctrico)?\s*[:\s]*({_NUM_GROUPED})\s*kwh", 0.90),
    (rf"(?:t[ée]rmino\s+de\s+)?energ[ií]a\s*activa\s*[:\s]*({_NUM_GROUPED})", 0.75),
    (rf"({_NUM_GROUPED})\s*kwh\s*(?:consumo|total|facturado)?", 0.70),
    (rf"consumo\s*[:\s]*({_NUM_GROUPED})\s*kwh", 0.70),
    (rf"energ[ií]a\s*(?:activa|consumida)?\s*[:\s]*({_NUM_GROUPED})\s*k?wh", 0.65),
    (rf"({_NUM_GROUPED})\s*k?w\s*h", 0.60),
    (rf"({_NUM})\s*kwh(?!\s*h)", 0.60),
    (rf"kwh\s*[:\s]*({_NUM_GROUPED})", 0.55),
    (rf"({_NUM})\s*k\s*w\s*h", 0.50),
    (r"(\d+)\s*kwh", 0.50),
]

# Fallback scan: any kWh-suffixed number, largest plausible value wins.
CONSUMPTION_FALLBACK_PATTERN = rf"({_NUM_GROUPED})\s*(?:kwh|kwh\.|kw\s*h|k\s*w\s*h)"
CONSUMPTION_FALLBACK_RANGE = (10.0, 50000.0)
# How far before the first "kwh" to look for a bare number.
CONSUMPTION_LOOKBEHIND_CHARS = 40
CONSUMPTION_TOTAL_ANCHOR = r"consumo\s+total|total\s+(\d+)"
CONSUMPTION_TOTAL_WINDOW_CHARS = 80


# ---------------------------------------------------------------------------
# Total amount (EUR)
# ---------------------------------------------------------------------------

TOTAL_PATTERNS: list[tuple[str, float]] = [
    (rf"\btotal\s+({_AMOUNT_2DP})\s*€?", 0.90),
    (rf"total\s*(?:a\s*)?pagar\s*[:\s]*({_AMOUNT})\s*€?", 0.95),
    (rf"importe\s*total\s*(?:\(.*?\))?\s*[:\s]*({_AMOUNT})", 0.90),
    (rf"total\s*(?:importe|factura)\s*[:\s]*({_AMOUNT})", 0.85),
    (rf"({_AMOUNT})\s*€\s*\(?\s*total", 0.80),
    (rf"total\s*[:\s]*({_AMOUNT})\s*eur", 0.80),
    (rf"(?:iva\s+incluido|total)\s*[:\s]*({_AMOUNT})\s*€", 0.75),
    (rf"total\s*[:\s]*({_AMOUNT})\s*[€euro]", 0.70),
    (rf"(?:total|total\s*factura)\s*[:\s]*({_AMOUNT_2DP})", 0.65),
]

# Fallback scan: largest 2-decimal amount in a plausible household range.
TOTAL_FALLBACK_PATTERN = r"\b(\d{1,4}[.,]\d{2})\s*(?:€|eur|euros)?"
TOTAL_FALLBACK_RANGE = (5.0, 2000.0)

# Consumption and total closer than this are treated as the same match.
CONSUMPTION_TOTAL_COLLISION = 0.02


# ---------------------------------------------------------------------------
# Billing period
# ---------------------------------------------------------------------------

# (pattern, months), checked in order; no match means a monthly bill.
PERIOD_PATTERNS: list[tuple[str, int]] = [
    (r"\b(?:bimensual|2\s*meses|dos\s*meses|facturaci[oó]n\s*bimensual)\b", 2),
    (r"\b(?:trimestral|3\s*meses|tres\s*meses|facturaci[oó]n\s*trimestral)\b", 3),
]


def compile_table(table: list[tuple[str, float]]) -> list[tuple[re.Pattern, float]]:
    """Compile a pattern table once, preserving order."""
    return [(re.compile(pattern, PATTERN_FLAGS), weight) for pattern, weight in table]
