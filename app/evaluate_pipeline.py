#!/usr/bin/env python3
"""
Extraction Accuracy Evaluation Script
=====================================

Runs the field extractor over every golden fixture and compares the result
to its expected values. Each invoice template ("model") has a pair:

    fixtures/texts/<model>.ocr.txt          recovered invoice text
    fixtures/golden/<model>.expected.json   expected extraction

Numbers match within 0.02; the company matches when the expected name is
contained in the extracted one (case-insensitive); the billing period must
be equal.

Usage:
    python3 evaluate_pipeline.py                    # Run evaluation
    python3 evaluate_pipeline.py --json             # JSON output
    python3 evaluate_pipeline.py --verbose          # With debug logging
    python3 -m pytest evaluate_pipeline.py -v       # As pytest test
"""
from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

sys.path.insert(0, os.path.dirname(__file__))

from bill_parser import InvoiceExtraction
from common.formatters import format_currency, format_kwh
from pipeline import extract_fields

FIXTURES_DIR = Path(__file__).parent / "fixtures"
TEXTS_DIR = FIXTURES_DIR / "texts"
GOLDEN_DIR = FIXTURES_DIR / "golden"

TOLERANCE = 0.02
FIELDS = ("company_name", "consumption_kwh", "total_factura", "period_months")


def list_models() -> list[str]:
    """Model names that have both a text and a golden file."""
    return sorted(
        p.name[: -len(".expected.json")]
        for p in GOLDEN_DIR.glob("*.expected.json")
        if (TEXTS_DIR / p.name.replace(".expected.json", ".ocr.txt")).exists()
    )


def load_fixture(model: str) -> tuple[str, dict]:
    text = (TEXTS_DIR / f"{model}.ocr.txt").read_text(encoding="utf-8")
    with open(GOLDEN_DIR / f"{model}.expected.json", encoding="utf-8") as f:
        expected = json.load(f)
    return text, expected


def field_matches(field_name: str, expected, actual) -> bool:
    """Compare one extracted field against its expected value."""
    if expected is None:
        return actual is None
    if actual is None:
        return False
    if field_name == "company_name":
        return str(expected).strip().lower() in str(actual).lower()
    if field_name == "period_months":
        return int(expected) == int(actual)
    return abs(float(expected) - float(actual)) <= TOLERANCE


def evaluate_model(model: str) -> dict:
    """Evaluate a single fixture. Fields absent from the golden file are not scored."""
    text, expected = load_fixture(model)
    extraction: InvoiceExtraction = extract_fields(text)
    actual = extraction.to_dict()

    field_results = {}
    for field_name in FIELDS:
        if field_name not in expected:
            continue
        field_results[field_name] = {
            "expected": expected[field_name],
            "actual": actual.get(field_name),
            "match": field_matches(field_name, expected[field_name], actual.get(field_name)),
        }

    matched = sum(1 for fr in field_results.values() if fr["match"])
    return {
        "model": model,
        "accuracy": matched / len(field_results) if field_results else 0.0,
        "fields_expected": len(field_results),
        "fields_matched": matched,
        "field_results": field_results,
        "extraction": extraction,
    }


def evaluate_all() -> dict:
    """Evaluate all fixtures and produce aggregate metrics."""
    results = [evaluate_model(model) for model in list_models()]
    total = sum(r["fields_expected"] for r in results)
    matched = sum(r["fields_matched"] for r in results)
    return {
        "aggregate_accuracy": matched / total if total else 0.0,
        "models_evaluated": len(results),
        "models_perfect": sum(1 for r in results if r["fields_matched"] == r["fields_expected"]),
        "results": results,
    }


def print_report(evaluation: dict) -> None:
    """Print a human-readable evaluation report."""
    print("=" * 70)
    print("  Field Extraction Accuracy Report")
    print("=" * 70)

    for result in evaluation["results"]:
        extraction = result["extraction"]
        print(f"\n  {result['model']}")
        print(f"  Extracted: {extraction.company_name or '--'}, "
              f"{format_kwh(extraction.consumption_kwh, precision=2)}, "
              f"{format_currency(extraction.total_factura)}, "
              f"{extraction.period_months} mes(es)")
        print(f"  Accuracy: {result['accuracy']:.0%} "
              f"({result['fields_matched']}/{result['fields_expected']})")

        for field_name, fr in result["field_results"].items():
            status = "MATCH" if fr["match"] else ("MISS" if fr["actual"] is None else "WRONG")
            if status == "MATCH":
                print(f"    [{status}] {field_name}: {fr['actual']}")
            else:
                print(f"    [{status}] {field_name}: got={fr['actual']!r}, "
                      f"expected={fr['expected']!r}")

    print(f"\n{'=' * 70}")
    print(f"  AGGREGATE ACCURACY: {evaluation['aggregate_accuracy']:.0%}")
    print(f"  Models evaluated: {evaluation['models_evaluated']}")
    print(f"  Models perfect:   {evaluation['models_perfect']}")
    print(f"{'=' * 70}")


# ===================================================================
# pytest integration
# ===================================================================

def test_pipeline_accuracy():
    """Every golden fixture must be extracted exactly."""
    evaluation = evaluate_all()
    print_report(evaluation)
    assert evaluation["models_evaluated"] > 0, "No golden fixtures found"
    assert evaluation["aggregate_accuracy"] == 1.0, \
        f"Aggregate accuracy {evaluation['aggregate_accuracy']:.0%} below 100%"


# ===================================================================
# CLI
# ===================================================================

if __name__ == "__main__":
    if "--verbose" in sys.argv:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")

    evaluation = evaluate_all()

    if "--json" in sys.argv:
        for r in evaluation["results"]:
            r.pop("field_results", None)
            r["extraction"] = r["extraction"].to_dict()
        print(json.dumps(evaluation, indent=2, ensure_ascii=False, default=str))
    else:
        print_report(evaluation)

    sys.exit(0 if evaluation["aggregate_accuracy"] == 1.0 else 1)
