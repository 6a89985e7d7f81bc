"""
Invoice Text Extraction Pipeline
================================

Stages that turn a Spanish energy bill into structured billing facts:

  Tier 0: Embedded text extraction via PyMuPDF (this module)
  Tier 1: OCR fallback for scans and photos (ocr_providers.py)
  Tier 2: Ordered regex tables over the recovered text (this module)

The acquisition state machine that wires the tiers together lives in
orchestrator.py. Pattern tables live in provider_configs.py.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Optional

import pymupdf

from bill_parser import InvoiceExtraction
from policy import DEFAULT_THRESHOLDS
from provider_configs import (
    CONSUMPTION_FALLBACK_PATTERN,
    CONSUMPTION_FALLBACK_RANGE,
    CONSUMPTION_LOOKBEHIND_CHARS,
    CONSUMPTION_PATTERNS,
    CONSUMPTION_TOTAL_ANCHOR,
    CONSUMPTION_TOTAL_COLLISION,
    CONSUMPTION_TOTAL_WINDOW_CHARS,
    PATTERN_FLAGS,
    PERIOD_PATTERNS,
    SUPPLIER_CAPTURE_MAX_WORDS,
    SUPPLIER_CAPTURE_STOP,
    SUPPLIER_PATTERNS,
    TOTAL_FALLBACK_PATTERN,
    TOTAL_FALLBACK_RANGE,
    TOTAL_PATTERNS,
    canonical_supplier_name,
    compile_table,
)

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tier 0: Embedded text extraction
# ---------------------------------------------------------------------------

@dataclass
class TextExtractionResult:
    """Result of Tier 0 text extraction."""
    extracted_text: str
    chars_per_page: list[int]
    page_count: int
    metadata: dict


@dataclass
class EmbeddedText:
    """Usable embedded text recovered from a PDF."""
    text: str
    page_count: int


def extract_text_tier0(source: bytes | str) -> TextExtractionResult:
    """Extract the embedded text layer of a PDF.

    Args:
        source: PDF file path (str) or raw PDF bytes.

    Returns:
        TextExtractionResult with per-page character counts.

    Raises:
        ValueError: If source is empty.
        RuntimeError: If PyMuPDF cannot open the document.
        TypeError: If source is neither str nor bytes.
    """
    doc = _open_document(source)

    try:
        page_texts: list[str] = []
        chars_per_page: list[int] = []

        for page in doc:
            text = page.get_text()
            page_texts.append(text)
            chars_per_page.append(len(text.strip()))

        return TextExtractionResult(
            extracted_text="\n\n".join(page_texts),
            chars_per_page=chars_per_page,
            page_count=doc.page_count,
            metadata=_extract_metadata(doc),
        )
    finally:
        doc.close()


def extract_embedded_text(source: bytes | str) -> Optional[EmbeddedText]:
    """Embedded-text collaborator: text and page count, or None.

    Returns None when the PDF cannot be opened or carries no text layer,
    so the caller can fall back to OCR.
    """
    try:
        tier0 = extract_text_tier0(source)
    except RuntimeError as e:
        log.warning("Embedded text extraction failed: %s", e)
        return None

    text = tier0.extracted_text.strip()
    if not text:
        log.debug("PDF has no embedded text (%d pages)", tier0.page_count)
        return None
    return EmbeddedText(text=text, page_count=tier0.page_count)


def _open_document(source: bytes | str) -> pymupdf.Document:
    """Open a PDF from path or bytes, with validation."""
    if isinstance(source, str):
        try:
            return pymupdf.open(source)
        except Exception as e:
            raise RuntimeError(f"Cannot open PDF file '{source}': {e}") from e
    elif isinstance(source, (bytes, bytearray)):
        if not source:
            raise ValueError("PDF bytes are empty")
        try:
            return pymupdf.open(stream=bytes(source), filetype="pdf")
        except Exception as e:
            raise RuntimeError(f"Cannot open PDF from bytes: {e}") from e
    else:
        raise TypeError(f"source must be str (path) or bytes, got {type(source).__name__}")


def _extract_metadata(doc: pymupdf.Document) -> dict:
    """Extract PDF metadata for diagnostics."""
    metadata = doc.metadata or {}
    return {
        "creator": metadata.get("creator", ""),
        "producer": metadata.get("producer", ""),
        "page_count": doc.page_count,
    }


# ---------------------------------------------------------------------------
# Numeric parsing
# ---------------------------------------------------------------------------

def parse_decimal(token: str | None) -> Optional[float]:
    """Parse a decimal written in European or US notation.

    If a comma appears after the last dot, the comma is the decimal
    separator and dots group thousands ("1.234,56"); otherwise commas group
    thousands and the dot is decimal ("1,234.56"). Whitespace is dropped
    first, so "1 234,56" works too.

    Returns None for unparsable or non-finite input. Zero and negatives are
    returned as-is; positivity is the caller's decision.
    """
    if token is None:
        return None
    s = re.sub(r"\s", "", str(token))
    if not s:
        return None
    if s.rfind(",") > s.rfind("."):
        s = s.replace(".", "").replace(",", ".", 1)
    else:
        s = s.replace(",", "")
    try:
        value = float(s)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_positive_decimal(token: str | None) -> Optional[float]:
    """parse_decimal, treating zero and negative values as not found."""
    value = parse_decimal(token)
    if value is None or value <= 0:
        return None
    return value


# ---------------------------------------------------------------------------
# Tier 2: Ordered regex extraction
# ---------------------------------------------------------------------------

@dataclass
class FieldExtractionResult:
    """Result for a single extracted field."""
    field_name: str
    value: str
    confidence: float
    pattern_index: int  # which pattern matched (0-based), -1 for fallbacks


_SUPPLIER_TABLE = compile_table(SUPPLIER_PATTERNS)
_CONSUMPTION_TABLE = compile_table(CONSUMPTION_PATTERNS)
_TOTAL_TABLE = compile_table(TOTAL_PATTERNS)
_PERIOD_TABLE = [(re.compile(p, PATTERN_FLAGS), months) for p, months in PERIOD_PATTERNS]
_CONSUMPTION_FALLBACK_RE = re.compile(CONSUMPTION_FALLBACK_PATTERN, PATTERN_FLAGS)
_CONSUMPTION_ANCHOR_RE = re.compile(CONSUMPTION_TOTAL_ANCHOR, PATTERN_FLAGS)
_TOTAL_FALLBACK_RE = re.compile(TOTAL_FALLBACK_PATTERN, PATTERN_FLAGS)
_SUPPLIER_STOP_RE = re.compile(SUPPLIER_CAPTURE_STOP, PATTERN_FLAGS)
_TRAILING_NUMBER_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*$")
_ANY_NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)?")


def normalize_whitespace(raw_text: str) -> str:
    """Collapse every whitespace run (including line breaks) to one space."""
    return re.sub(r"\s+", " ", raw_text or "").strip()


def first_match(
    text: str,
    table: list[tuple[re.Pattern, float]],
    field_name: str,
) -> Optional[FieldExtractionResult]:
    """Return the capture of the first pattern in the table that matches."""
    for pat_idx, (pattern, confidence) in enumerate(table):
        m = pattern.search(text)
        if m is None:
            continue
        value = m.group(1) if m.lastindex else m.group(0)
        if value and value.strip():
            return FieldExtractionResult(
                field_name=field_name,
                value=value.strip(),
                confidence=confidence,
                pattern_index=pat_idx,
            )
    return None


def _clean_supplier_capture(value: str) -> str:
    """Trim a labeled supplier capture down to the name itself."""
    value = _SUPPLIER_STOP_RE.split(value, maxsplit=1)[0]
    words = value.split()[:SUPPLIER_CAPTURE_MAX_WORDS]
    return " ".join(words).strip(" .-–")


def detect_supplier(text: str) -> Optional[FieldExtractionResult]:
    """Find the supplier name in whitespace-normalized text."""
    match = first_match(text, _SUPPLIER_TABLE, "company_name")
    if match is None:
        return None
    if match.pattern_index > 0:
        match.value = _clean_supplier_capture(match.value)
        if not match.value:
            return None
    return match


def _plausible(value: Optional[float], bounds: tuple[float, float]) -> bool:
    return value is not None and bounds[0] <= value <= bounds[1]


def fallback_consumption_kwh(text: str) -> Optional[float]:
    """Last-resort consumption search when no pattern fired.

    1. Largest kWh-suffixed number in the plausible range.
    2. The number right before the first "kwh".
    3. First plausible number after "consumo total" / "total N".
    """
    best: Optional[float] = None
    for m in _CONSUMPTION_FALLBACK_RE.finditer(text):
        n = parse_decimal(m.group(1))
        if _plausible(n, CONSUMPTION_FALLBACK_RANGE) and (best is None or n > best):
            best = n
    if best is not None:
        return best

    kwh_index = text.lower().find("kwh")
    if kwh_index > 0:
        before = text[max(0, kwh_index - CONSUMPTION_LOOKBEHIND_CHARS):kwh_index]
        m = _TRAILING_NUMBER_RE.search(before)
        if m:
            n = parse_decimal(m.group(1))
            if _plausible(n, CONSUMPTION_FALLBACK_RANGE):
                return n

    anchor = _CONSUMPTION_ANCHOR_RE.search(text)
    if anchor:
        window = text[anchor.start():anchor.start() + CONSUMPTION_TOTAL_WINDOW_CHARS]
        for token in _ANY_NUMBER_RE.findall(window):
            n = parse_decimal(token)
            if _plausible(n, CONSUMPTION_FALLBACK_RANGE):
                return n
    return None


def fallback_total_eur(text: str) -> Optional[float]:
    """Largest 2-decimal amount in the plausible household-bill range."""
    best: Optional[float] = None
    for m in _TOTAL_FALLBACK_RE.finditer(text):
        n = parse_decimal(m.group(1))
        if _plausible(n, TOTAL_FALLBACK_RANGE) and (best is None or n > best):
            best = n
    return best


def detect_period_months(text: str) -> int:
    """Billing-cycle length in months from explicit cues, default 1."""
    for pattern, months in _PERIOD_TABLE:
        if pattern.search(text):
            return months
    return 1


def extract_field_matches(raw_text: str) -> dict[str, FieldExtractionResult]:
    """Run every field table and report which rule produced each value.

    Fields recovered by a fallback scan carry ``pattern_index == -1``.
    Numeric values are reported already parsed (as strings) and positive.
    """
    text = normalize_whitespace(raw_text)
    fields: dict[str, FieldExtractionResult] = {}

    supplier = detect_supplier(text)
    if supplier is not None:
        fields["company_name"] = supplier

    total = _numeric_field(text, _TOTAL_TABLE, "total_factura", fallback_total_eur)
    if total is not None:
        fields["total_factura"] = total

    consumption = _numeric_field(
        text, _CONSUMPTION_TABLE, "consumption_kwh", fallback_consumption_kwh
    )
    # A kWh figure equal to the total is almost surely the money amount.
    if (
        consumption is not None
        and total is not None
        and abs(float(consumption.value) - float(total.value)) < CONSUMPTION_TOTAL_COLLISION
    ):
        log.debug("Consumption %s collides with total; rescanning", consumption.value)
        consumption = _fallback_field(text, "consumption_kwh", fallback_consumption_kwh)
    if consumption is not None:
        fields["consumption_kwh"] = consumption

    return fields


def _numeric_field(text, table, field_name, fallback) -> Optional[FieldExtractionResult]:
    """First pattern match parsed as a positive number, else the fallback.

    The first matching pattern decides; a non-positive capture is treated
    as not found and does not fall through to later patterns.
    """
    match = first_match(text, table, field_name)
    if match is not None:
        value = parse_positive_decimal(match.value)
        if value is not None:
            match.value = repr(value)
            return match
        log.debug("%s pattern %d captured non-positive %r",
                  field_name, match.pattern_index, match.value)
    return _fallback_field(text, field_name, fallback)


def _fallback_field(text, field_name, fallback) -> Optional[FieldExtractionResult]:
    value = fallback(text)
    if value is None:
        return None
    return FieldExtractionResult(
        field_name=field_name, value=repr(value), confidence=0.5, pattern_index=-1,
    )


def extract_fields(raw_text: str) -> InvoiceExtraction:
    """Extract supplier, consumption, total and billing period from text.

    Confidence is the standalone nominal value; the acquisition stage
    replaces it with one reflecting where the text came from.
    """
    text = normalize_whitespace(raw_text)
    fields = extract_field_matches(text)

    def number(name: str) -> Optional[float]:
        fr = fields.get(name)
        return float(fr.value) if fr else None

    supplier = fields.get("company_name")
    return InvoiceExtraction(
        company_name=canonical_supplier_name(supplier.value) if supplier else None,
        consumption_kwh=number("consumption_kwh"),
        total_factura=number("total_factura"),
        period_months=detect_period_months(text),
        confidence=DEFAULT_THRESHOLDS.standalone_confidence,
        raw_text=(raw_text or "")[:DEFAULT_THRESHOLDS.raw_text_max_chars],
    )
