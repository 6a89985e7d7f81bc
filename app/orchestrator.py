"""
Pipeline Orchestrator
=====================

Wires text acquisition, field extraction and the savings comparison into a
single entry point. Takes document bytes plus a MIME type and returns an
InvoiceExtraction with a confidence reflecting where the text came from.

Acquisition is a single linear pass with no retries:

    START ──pdf──> embedded text ≥ 80 chars ─────────────> EXTRACTED (0.92)
      │                  └─ too short ─> NEEDS_OCR
      └──image──────────────────────────> NEEDS_OCR ─text─> EXTRACTED (OCR conf)
                                              └─ none ───> FAILED
    EXTRACTED with < 30 chars of text is treated as FAILED.

Usage:
    from orchestrator import process_invoice
    outcome = process_invoice(pdf_bytes, "application/pdf", offers)
    print(outcome.status, outcome.comparison)
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from bill_parser import ComparisonResult, EnergyOffer, InvoiceExtraction
from comparison import explain_failure, run_comparison
from ocr_providers import OcrProvider, OcrResult, get_ocr_provider
from pipeline import EmbeddedText, extract_embedded_text, extract_fields
from policy import (
    DEFAULT_THRESHOLDS,
    AcquisitionThresholds,
    ComparisonPolicy,
)
from provider_configs import canonical_supplier_name

log = logging.getLogger(__name__)

PDF_MIME = "application/pdf"

EmbeddedTextExtractor = Callable[[bytes], Optional[EmbeddedText]]


class AcquisitionState(str, Enum):
    START = "start"
    NEEDS_OCR = "needs_ocr"
    EXTRACTED = "extracted"
    FAILED = "failed"


@dataclass
class PipelineResult:
    """Full result of the acquisition pipeline."""
    extraction: InvoiceExtraction
    state: AcquisitionState
    text_source: Optional[str] = None  # "embedded", "ocr" or None
    extraction_path: list[str] = field(default_factory=list)


def _normalize_mime(mime_type: str | None) -> str:
    return (mime_type or "").split(";", 1)[0].strip().lower()


def _is_image(mime_type: str) -> bool:
    return mime_type.startswith("image/")


def _failed(
    text: str | None,
    extraction_path: list[str],
    thresholds: AcquisitionThresholds,
    text_source: str | None = None,
) -> PipelineResult:
    extraction_path.append("failed")
    raw = (text or "")[:thresholds.failed_raw_text_max_chars] or None
    return PipelineResult(
        extraction=InvoiceExtraction.empty(raw_text=raw),
        state=AcquisitionState.FAILED,
        text_source=text_source,
        extraction_path=extraction_path,
    )


def _call_ocr(ocr: OcrProvider | None, source: bytes, mime_type: str) -> Optional[OcrResult]:
    """Invoke the OCR collaborator once; any failure means no text."""
    if ocr is None:
        log.debug("No OCR provider configured")
        return None
    try:
        return ocr(source, mime_type)
    except Exception as e:
        log.warning("OCR provider raised: %s", e, exc_info=True)
        return None


def _merge_entities(extraction: InvoiceExtraction, ocr_result: OcrResult) -> InvoiceExtraction:
    """Prefer structured entities from the OCR service over regex values."""
    entities = ocr_result.entities
    updates = {}
    if entities.company_name and entities.company_name.strip():
        updates["company_name"] = canonical_supplier_name(entities.company_name)
    if entities.total_factura is not None and entities.total_factura > 0:
        updates["total_factura"] = entities.total_factura
    if entities.consumption_kwh is not None and entities.consumption_kwh > 0:
        updates["consumption_kwh"] = entities.consumption_kwh
    return dataclasses.replace(extraction, **updates) if updates else extraction


def extract_invoice_pipeline(
    source: bytes,
    mime_type: str,
    *,
    ocr: OcrProvider | None = None,
    embedded_text: EmbeddedTextExtractor = extract_embedded_text,
    thresholds: AcquisitionThresholds | None = None,
) -> PipelineResult:
    """Acquire text from an invoice document and extract billing fields.

    Args:
        source: Raw document bytes.
        mime_type: "application/pdf" or any "image/*" type.
        ocr: OCR collaborator; defaults to get_ocr_provider().
        embedded_text: Embedded-text collaborator for PDFs.
        thresholds: Acquisition thresholds; defaults to DEFAULT_THRESHOLDS.

    Returns:
        PipelineResult. Acquisition failures are reported as an empty
        extraction with confidence 0, never raised.
    """
    thresholds = thresholds or DEFAULT_THRESHOLDS
    mime = _normalize_mime(mime_type)
    extraction_path: list[str] = [AcquisitionState.START.value]
    state = AcquisitionState.START

    text: str | None = None
    confidence = 0.0
    text_source: str | None = None
    ocr_result: OcrResult | None = None

    if mime == PDF_MIME:
        embedded = embedded_text(source) if source else None
        embedded_len = len(embedded.text) if embedded else 0
        if embedded is not None and embedded_len >= thresholds.min_embedded_text_chars:
            extraction_path.append("embedded_text")
            text = embedded.text
            confidence = thresholds.embedded_text_confidence
            text_source = "embedded"
            state = AcquisitionState.EXTRACTED
        else:
            log.debug("Embedded text too short (%d chars); falling back to OCR", embedded_len)
            state = AcquisitionState.NEEDS_OCR
    elif _is_image(mime):
        state = AcquisitionState.NEEDS_OCR
    else:
        log.warning("Unsupported MIME type for invoice: %r", mime_type)
        extraction_path.append("unsupported_mime")
        return _failed(None, extraction_path, thresholds)

    if state is AcquisitionState.NEEDS_OCR:
        extraction_path.append(AcquisitionState.NEEDS_OCR.value)
        if ocr is None:
            try:
                ocr = get_ocr_provider()
            except ValueError as e:
                log.warning("OCR provider misconfigured: %s", e)
        ocr_result = _call_ocr(ocr, source, mime) if source else None
        if ocr_result is None or not ocr_result.text.strip():
            return _failed(ocr_result.text if ocr_result else None, extraction_path, thresholds)
        extraction_path.append(f"ocr_{ocr_result.provider or 'custom'}")
        text = ocr_result.text
        confidence = (
            ocr_result.confidence
            if ocr_result.confidence is not None
            else thresholds.default_ocr_confidence
        )
        text_source = "ocr"

    if text is None or len(text.strip()) < thresholds.min_extracted_text_chars:
        log.debug("Recovered text too short to extract fields (%d chars)", len((text or "").strip()))
        return _failed(text, extraction_path, thresholds, text_source)

    extraction_path.append(AcquisitionState.EXTRACTED.value)
    extraction = dataclasses.replace(extract_fields(text), confidence=confidence)
    if ocr_result is not None:
        extraction = _merge_entities(extraction, ocr_result)

    log.debug(
        "Invoice extracted via %s: company=%s kwh=%s total=%s months=%d conf=%.2f",
        text_source, extraction.company_name, extraction.consumption_kwh,
        extraction.total_factura, extraction.period_months, extraction.confidence,
    )
    return PipelineResult(
        extraction=extraction,
        state=AcquisitionState.EXTRACTED,
        text_source=text_source,
        extraction_path=extraction_path,
    )


def acquire_text(source: bytes, mime_type: str, **kwargs) -> InvoiceExtraction:
    """Document bytes to InvoiceExtraction; see extract_invoice_pipeline."""
    return extract_invoice_pipeline(source, mime_type, **kwargs).extraction


async def extract_invoice_pipeline_async(
    source: bytes,
    mime_type: str,
    **kwargs,
) -> PipelineResult:
    """Awaitable extract_invoice_pipeline, run in a worker thread.

    Deadlines are the caller's concern: wrap this in asyncio.wait_for.
    """
    return await asyncio.to_thread(extract_invoice_pipeline, source, mime_type, **kwargs)


# ---------------------------------------------------------------------------
# Invoice processing
# ---------------------------------------------------------------------------

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


@dataclass
class InvoiceOutcome:
    """Extraction plus comparison, ready to be persisted or displayed."""
    extraction: InvoiceExtraction
    comparison: Optional[ComparisonResult]
    failure_reason: Optional[str] = None
    extraction_path: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        return STATUS_COMPLETED if self.comparison is not None else STATUS_FAILED

    def to_record(self) -> dict:
        """Flat row for the comparison store."""
        result = self.comparison
        extraction = self.extraction
        return {
            "current_company": result.current_company if result else extraction.company_name,
            "current_monthly_cost": result.current_monthly_cost if result else None,
            "best_offer_company": result.best_offer_company if result else None,
            "best_offer_monthly_cost": result.best_offer_monthly_cost if result else None,
            "estimated_savings_amount": result.estimated_savings_amount if result else None,
            "estimated_savings_percentage": result.estimated_savings_percentage if result else None,
            "status": self.status,
            "ocr_confidence": extraction.confidence,
            "invoice_period_months": extraction.period_months,
            "prudent_mode": result.prudent_mode if result else False,
            "raw_extraction": {
                "company_name": extraction.company_name,
                "consumption_kwh": extraction.consumption_kwh,
                "total_factura": extraction.total_factura,
                "period_months": extraction.period_months,
            },
            "error_message": None if result else self.failure_reason,
        }


def _compare(
    extraction: InvoiceExtraction,
    offers: list[EnergyOffer],
    policy: ComparisonPolicy | None,
    extraction_path: list[str],
) -> InvoiceOutcome:
    comparison = run_comparison(extraction, offers, policy)
    failure_reason = None if comparison is not None else explain_failure(extraction, offers)
    if failure_reason:
        log.info("No comparison produced: %s", failure_reason)
    return InvoiceOutcome(
        extraction=extraction,
        comparison=comparison,
        failure_reason=failure_reason,
        extraction_path=extraction_path,
    )


def process_invoice(
    source: bytes,
    mime_type: str,
    offers: list[EnergyOffer],
    *,
    policy: ComparisonPolicy | None = None,
    **pipeline_kwargs,
) -> InvoiceOutcome:
    """Extract an uploaded invoice and compare it against the offer catalog.

    ``offers`` is taken as already filtered to active offers.
    """
    pipeline = extract_invoice_pipeline(source, mime_type, **pipeline_kwargs)
    return _compare(pipeline.extraction, offers, policy, pipeline.extraction_path)


def compare_manual_entry(
    consumption_kwh: float,
    total_factura: float,
    offers: list[EnergyOffer],
    *,
    company_name: str | None = None,
    period_months: int = 1,
    policy: ComparisonPolicy | None = None,
) -> InvoiceOutcome:
    """Compare figures typed in by the customer, bypassing extraction."""
    extraction = InvoiceExtraction.manual(
        consumption_kwh=consumption_kwh,
        total_factura=total_factura,
        company_name=company_name,
        period_months=period_months,
    )
    return _compare(extraction, offers, policy, ["manual_entry"])
