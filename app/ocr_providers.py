"""
OCR Providers
=============

Adapters for the OCR collaborator used when a document has no usable
embedded text (scanned PDFs, phone photos).

Every provider has the same shape::

    provider(source: bytes, mime_type: str) -> OcrResult | None

and never raises: authentication, network, and recognition failures are
logged and reported as None ("no text recovered").

Providers:
  - document_ai_ocr: Google Document AI Invoice Parser (remote). Also returns
    structured invoice entities (supplier, total, kWh line items).
  - tesseract_ocr:   local Tesseract via pytesseract + pdf2image.

get_ocr_provider() picks one from the environment.
"""
from __future__ import annotations

import io
import logging
import os
import re
from typing import Callable, Optional

import pandas as pd
from pydantic import BaseModel, Field

from pipeline import parse_positive_decimal

log = logging.getLogger(__name__)

# Document AI rejects near-empty documents with a result this short.
MIN_OCR_TEXT_CHARS = 20


class InvoiceEntities(BaseModel):
    """Structured fields a document-analysis service may return."""
    company_name: Optional[str] = None
    total_factura: Optional[float] = None
    consumption_kwh: Optional[float] = None


class OcrResult(BaseModel):
    """Text recovered by an OCR provider."""
    text: str
    confidence: Optional[float] = None  # 0-1, None if the provider gives none
    entities: InvoiceEntities = Field(default_factory=InvoiceEntities)
    provider: str = ""


OcrProvider = Callable[[bytes, str], Optional[OcrResult]]


# ---------------------------------------------------------------------------
# Google Document AI
# ---------------------------------------------------------------------------

def _document_ai_settings() -> tuple[str | None, str, str | None]:
    project = os.environ.get("DOCUMENT_AI_PROJECT_ID") or os.environ.get("GOOGLE_CLOUD_PROJECT")
    location = os.environ.get("DOCUMENT_AI_LOCATION", "eu")
    processor_id = os.environ.get("DOCUMENT_AI_PROCESSOR_ID")
    return project, location, processor_id


def _get_document_ai_client(location: str):
    """Create a Document AI client. Credentials come from the environment."""
    try:
        from google.api_core.client_options import ClientOptions
        from google.cloud import documentai
    except ImportError:
        raise RuntimeError(
            "google-cloud-documentai package not installed. "
            "Run: pip install google-cloud-documentai"
        )

    options = ClientOptions(api_endpoint=f"{location}-documentai.googleapis.com")
    return documentai, documentai.DocumentProcessorServiceClient(client_options=options)


def _money_to_float(money) -> Optional[float]:
    """Convert a google.type.Money (units + nanos) to a positive float."""
    if money is None:
        return None
    value = float(getattr(money, "units", 0) or 0) + float(getattr(money, "nanos", 0) or 0) / 1e9
    return value if value > 0 else None


def _mention_number(text: str | None) -> Optional[float]:
    if not text:
        return None
    return parse_positive_decimal(re.sub(r"[^\d.,]", "", text))


def _entity_type(entity) -> str:
    # proto-plus exposes the "type" field as "type_"
    return (getattr(entity, "type_", None) or getattr(entity, "type", None) or "").lower()


def _entity_property(entity, type_name: str):
    for prop in getattr(entity, "properties", None) or []:
        prop_type = _entity_type(prop)
        if prop_type == type_name or prop_type.endswith("/" + type_name):
            return prop
    return None


def parse_invoice_entities(entities) -> InvoiceEntities:
    """Pull supplier, total and kWh quantity out of Invoice Parser entities.

    The largest total and the largest energy line-item quantity win; the
    first supplier-like entity wins.
    """
    total: Optional[float] = None
    company: Optional[str] = None
    consumption: Optional[float] = None

    for entity in entities or []:
        kind = _entity_type(entity)
        mention = (getattr(entity, "mention_text", None) or "").strip()

        if kind in ("total_amount", "invoice_total"):
            normalized = getattr(entity, "normalized_value", None)
            amount = _money_to_float(getattr(normalized, "money_value", None))
            if amount is None:
                amount = _mention_number(mention)
            if amount is not None and (total is None or amount > total):
                total = amount

        elif kind in ("supplier_name", "receiver_name", "supplier_address"):
            if mention and company is None:
                company = mention

        elif kind == "line_item":
            description = getattr(_entity_property(entity, "description"), "mention_text", "") or ""
            quantity = _entity_property(entity, "quantity")
            if quantity is None or not re.search(r"kwh|energ[ií]a", description, re.IGNORECASE):
                continue
            normalized = getattr(quantity, "normalized_value", None)
            qty = getattr(normalized, "float_value", None) or getattr(normalized, "integer_value", None)
            if not qty:
                qty = _mention_number(getattr(quantity, "mention_text", None))
            if qty and qty > 0 and (consumption is None or qty > consumption):
                consumption = float(qty)

    return InvoiceEntities(company_name=company, total_factura=total, consumption_kwh=consumption)


def parse_document(document) -> Optional[OcrResult]:
    """Convert a Document AI ``Document`` into an OcrResult.

    Confidence is the mean page-layout confidence, or None if no page
    reports one.
    """
    text = (getattr(document, "text", None) or "").strip()
    if len(text) < MIN_OCR_TEXT_CHARS:
        log.debug("Document AI returned short/no text (%d chars)", len(text))
        return None

    confidences = []
    for page in getattr(document, "pages", None) or []:
        layout = getattr(page, "layout", None)
        conf = getattr(layout, "confidence", None)
        # unset proto floats read as 0.0
        if isinstance(conf, (int, float)) and conf > 0:
            confidences.append(float(conf))
    confidence = sum(confidences) / len(confidences) if confidences else None

    entities = parse_invoice_entities(getattr(document, "entities", None))
    log.debug(
        "Document AI result: %d chars, confidence=%s, entities=%s",
        len(text), confidence, entities.model_dump(),
    )
    return OcrResult(text=text, confidence=confidence, entities=entities, provider="documentai")


def document_ai_ocr(source: bytes, mime_type: str) -> Optional[OcrResult]:
    """Run the Document AI Invoice Parser on a PDF or image."""
    project, location, processor_id = _document_ai_settings()
    if not project or not processor_id:
        log.debug("Document AI skipped: project or processor id not configured")
        return None

    try:
        documentai, client = _get_document_ai_client(location)
        request = documentai.ProcessRequest(
            name=client.processor_path(project, location, processor_id),
            raw_document=documentai.RawDocument(content=source, mime_type=mime_type),
        )
        response = client.process_document(request=request)
    except RuntimeError as e:
        log.warning("Document AI unavailable: %s", e)
        return None
    except Exception as e:
        log.warning("Document AI request failed: %s", e, exc_info=True)
        return None

    return parse_document(response.document)


# ---------------------------------------------------------------------------
# Local Tesseract
# ---------------------------------------------------------------------------

def _configure_tesseract() -> None:
    tesseract_cmd = os.environ.get("TESSERACT_CMD")
    if tesseract_cmd:
        import pytesseract
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd


def _load_images(source: bytes, mime_type: str) -> list:
    """Render a PDF to page images, or open a single image."""
    if mime_type == "application/pdf":
        from pdf2image import convert_from_bytes
        return convert_from_bytes(source, dpi=300)

    from PIL import Image
    image = Image.open(io.BytesIO(source))
    return [image.convert("RGB")]


def get_ocr_dataframe(source: bytes, mime_type: str) -> tuple[pd.DataFrame, float]:
    """Run Tesseract over every page and return word rows plus mean confidence.

    DataFrame columns: text, left, top, width, height, conf,
    block_num, line_num, word_num, page_num. Confidence is Tesseract's
    0-100 scale.
    """
    import pytesseract

    _configure_tesseract()
    lang = os.environ.get("OCR_LANG", "spa")

    all_rows: list[pd.DataFrame] = []
    for page_idx, img in enumerate(_load_images(source, mime_type)):
        data = pytesseract.image_to_data(img, lang=lang, output_type=pytesseract.Output.DATAFRAME)
        data["page_num"] = page_idx + 1
        all_rows.append(data)

    if not all_rows:
        return pd.DataFrame(), 0.0

    df = pd.concat(all_rows, ignore_index=True)

    # conf == -1 marks layout rows with no text
    df = df[df["conf"] != -1].copy()
    df["text"] = df["text"].astype(str).str.strip()
    df = df[df["text"].str.len() > 0].copy()
    df = df.reset_index(drop=True)

    avg_conf = float(df["conf"].mean()) if len(df) > 0 else 0.0
    return df, avg_conf


def get_ocr_text(ocr_df: pd.DataFrame) -> str:
    """Reconstruct full text from OCR dataframe, grouped by page/block/line."""
    if ocr_df.empty:
        return ""

    lines = []
    for (_page, _block, _line), group in ocr_df.groupby(
        ["page_num", "block_num", "line_num"], sort=True
    ):
        words = group.sort_values("left")["text"].tolist()
        lines.append(" ".join(words))

    return "\n".join(lines)


def tesseract_ocr(source: bytes, mime_type: str) -> Optional[OcrResult]:
    """OCR a PDF or image locally with Tesseract."""
    try:
        ocr_df, avg_conf = get_ocr_dataframe(source, mime_type)
    except Exception as e:
        log.warning("Tesseract OCR failed: %s", e, exc_info=True)
        return None

    text = get_ocr_text(ocr_df).strip()
    if not text:
        log.debug("Tesseract recovered no text")
        return None
    return OcrResult(
        text=text,
        confidence=min(1.0, max(0.0, avg_conf / 100.0)) if len(ocr_df) else None,
        provider="tesseract",
    )


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------

OCR_PROVIDERS: dict[str, OcrProvider] = {
    "documentai": document_ai_ocr,
    "tesseract": tesseract_ocr,
}


def get_ocr_provider(name: str | None = None) -> Optional[OcrProvider]:
    """Resolve the OCR provider to use.

    ``name`` (or the OCR_PROVIDER env var) may be "documentai", "tesseract"
    or "none". Without an explicit choice, Document AI is used when it is
    configured and Tesseract otherwise.

    Raises:
        ValueError: If an unknown provider name is requested.
    """
    choice = (name or os.environ.get("OCR_PROVIDER") or "").strip().lower()
    if choice == "none":
        return None
    if choice:
        if choice not in OCR_PROVIDERS:
            raise ValueError(
                f"Unknown OCR provider {choice!r}; expected one of "
                f"{sorted(OCR_PROVIDERS)} or 'none'"
            )
        return OCR_PROVIDERS[choice]

    project, _location, processor_id = _document_ai_settings()
    if project and processor_id:
        return document_ai_ocr
    return tesseract_ocr
