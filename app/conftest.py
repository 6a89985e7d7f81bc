"""
Pytest configuration for the invoice savings test suite.

Registers the custom 'ocr' marker used to tag tests that need a local
Tesseract binary. By default, tests marked with @pytest.mark.ocr are
skipped unless the '-m ocr' flag is passed explicitly.

Run unit tests only (default):
    pytest

Run OCR tests only:
    pytest -m ocr

Run everything:
    pytest -m ""
"""
import pymupdf
import pytest

from bill_parser import EnergyOffer


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "ocr: test needs a local Tesseract installation"
    )


def pytest_collection_modifyitems(config, items):
    """Auto-skip OCR tests unless the user explicitly selects them."""
    # If the user passed an explicit marker expression, respect it.
    marker_expr = config.getoption("-m", default="")
    if marker_expr:
        return

    skip_ocr = pytest.mark.skip(
        reason="OCR tests are skipped by default. Run with: pytest -m ocr"
    )
    for item in items:
        if "ocr" in item.keywords:
            item.add_marker(skip_ocr)


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------

def build_pdf(lines: list[str] | None) -> bytes:
    """Build a one-page PDF in memory; ``None`` gives a page with no text."""
    doc = pymupdf.open()
    page = doc.new_page(width=595, height=842)
    y = 72
    for line in lines or []:
        page.insert_text((72, y), line, fontsize=10)
        y += 14
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def make_pdf():
    return build_pdf


@pytest.fixture
def offers() -> list[EnergyOffer]:
    """A small catalog: one flat tariff per supplier plus a P1/P2 tariff."""
    return [
        EnergyOffer(id="end-1", company_name="Endesa", price_per_kwh=0.15, monthly_fixed_cost=10.0),
        EnergyOffer(id="nat-1", company_name="Naturgy", price_per_kwh=0.16, monthly_fixed_cost=8.0),
        EnergyOffer(id="ibe-1", company_name="Iberdrola", price_per_kwh=0.12, monthly_fixed_cost=5.0),
        EnergyOffer(id="hol-1", company_name="Holaluz", price_per_kwh=0.14, p1=0.09, p2=0.03),
    ]
