"""
Tests for the invoice data model: InvoiceExtraction invariants, EnergyOffer
catalog parsing, and ComparisonResult serialization.
"""
import json
import math

import pytest

from bill_parser import (
    ComparisonResult,
    EnergyOffer,
    InvoiceExtraction,
    active_offers,
)


# ===================================================================
# InvoiceExtraction
# ===================================================================

class TestInvoiceExtractionInvariants:

    def test_defaults(self):
        e = InvoiceExtraction()
        assert e.company_name is None
        assert e.consumption_kwh is None
        assert e.total_factura is None
        assert e.period_months == 1
        assert e.confidence == 0.0
        assert e.has_billing_figures is False

    @pytest.mark.parametrize("value", [0, -1, -0.01, math.inf, math.nan, "abc", True])
    def test_non_positive_numbers_become_none(self, value):
        e = InvoiceExtraction(consumption_kwh=value, total_factura=value)
        assert e.consumption_kwh is None
        assert e.total_factura is None

    def test_positive_numbers_kept(self):
        e = InvoiceExtraction(consumption_kwh="312", total_factura=85.86)
        assert e.consumption_kwh == 312.0
        assert e.total_factura == 85.86
        assert e.has_billing_figures is True

    @pytest.mark.parametrize("months,expected", [(0, 1), (-2, 1), (2, 2), ("3", 3), (None, 1)])
    def test_period_at_least_one(self, months, expected):
        assert InvoiceExtraction(period_months=months).period_months == expected

    @pytest.mark.parametrize("confidence,expected", [(1.5, 1.0), (-0.2, 0.0), (0.92, 0.92), (math.nan, 0.0)])
    def test_confidence_clamped(self, confidence, expected):
        assert InvoiceExtraction(confidence=confidence).confidence == expected

    def test_blank_company_is_none(self):
        assert InvoiceExtraction(company_name="   ").company_name is None

    def test_raw_text_capped(self):
        assert len(InvoiceExtraction(raw_text="a" * 3000).raw_text) == 2000

    def test_frozen(self):
        e = InvoiceExtraction(consumption_kwh=100)
        with pytest.raises(AttributeError):
            e.consumption_kwh = 5


class TestInvoiceExtractionConstructors:

    def test_empty(self):
        e = InvoiceExtraction.empty(raw_text="abc")
        assert e.confidence == 0.0
        assert e.raw_text == "abc"
        assert e.consumption_kwh is None and e.total_factura is None

    def test_empty_blank_text(self):
        assert InvoiceExtraction.empty(raw_text="").raw_text is None

    def test_manual(self):
        e = InvoiceExtraction.manual(250, 60.0, company_name="iberdrola clientes", period_months=2)
        assert e.company_name == "Iberdrola"
        assert e.consumption_kwh == 250.0
        assert e.total_factura == 60.0
        assert e.period_months == 2
        assert e.confidence == 1.0

    def test_dict_round_trip(self):
        e = InvoiceExtraction(company_name="Endesa", consumption_kwh=100, total_factura=30.5,
                              period_months=2, confidence=0.92)
        assert InvoiceExtraction.from_dict(e.to_dict()) == e

    def test_from_dict_ignores_unknown_keys(self):
        e = InvoiceExtraction.from_dict({"company_name": "Endesa", "status": "completed"})
        assert e.company_name == "Endesa"

    def test_to_json(self):
        data = json.loads(InvoiceExtraction(total_factura=12.5).to_json())
        assert data["total_factura"] == 12.5
        assert data["period_months"] == 1


# ===================================================================
# EnergyOffer
# ===================================================================

class TestEnergyOffer:

    def test_from_catalog_row(self):
        offer = EnergyOffer.from_dict({
            "id": 7, "company_name": "Endesa", "price_per_kwh": "0.15",
            "monthly_fixed_cost": "10", "p1": "", "p2": None, "active": True,
        })
        assert offer.id == "7"
        assert offer.price_per_kwh == 0.15
        assert offer.monthly_fixed_cost == 10.0
        assert offer.p1 is None and offer.p2 is None
        assert offer.has_power_tariff is False

    def test_power_tariff_row(self):
        offer = EnergyOffer.from_dict({
            "id": "h", "company_name": "Holaluz", "price_per_kwh": 0.14, "p1": "0.09", "p2": 0.03,
        })
        assert offer.has_power_tariff is True
        assert offer.monthly_fixed_cost == 0.0
        assert offer.active is True

    def test_non_numeric_price_raises(self):
        with pytest.raises(ValueError):
            EnergyOffer.from_dict({"id": "x", "company_name": "X", "price_per_kwh": "barato"})

    @pytest.mark.parametrize("raw,expected", [
        ("false", False),
        ("FALSE", False),
        ("0", False),
        ("no", False),
        ("", False),
        (False, False),
        (0, False),
        ("true", True),
        ("1", True),
        (True, True),
        (1, True),
    ])
    def test_active_flag_from_catalog(self, raw, expected):
        offer = EnergyOffer.from_dict({
            "id": "a", "company_name": "Endesa", "price_per_kwh": 0.1, "active": raw,
        })
        assert offer.active is expected

    def test_missing_active_defaults_true(self):
        offer = EnergyOffer.from_dict({"id": "a", "company_name": "Endesa", "price_per_kwh": 0.1})
        assert offer.active is True

    def test_active_offers_drops_string_false_rows(self):
        rows = [
            {"id": "a", "company_name": "Endesa", "price_per_kwh": 0.1, "active": "true"},
            {"id": "b", "company_name": "Repsol", "price_per_kwh": 0.1, "active": "false"},
        ]
        kept = active_offers([EnergyOffer.from_dict(r) for r in rows])
        assert [o.id for o in kept] == ["a"]

    def test_active_offers(self):
        on = EnergyOffer(id="a", company_name="Endesa", price_per_kwh=0.1)
        off = EnergyOffer(id="b", company_name="Repsol", price_per_kwh=0.1, active=False)
        assert active_offers([on, off]) == [on]


class TestComparisonResult:

    def test_serialization(self):
        result = ComparisonResult(
            current_company="Iberdrola",
            current_monthly_cost=60.0,
            best_offer_company="Endesa",
            best_offer_monthly_cost=47.5,
            estimated_savings_amount=12.5,
            estimated_savings_percentage=20.83,
            prudent_mode=False,
        )
        data = json.loads(result.to_json())
        assert data == result.to_dict()
        assert data["estimated_savings_percentage"] == 20.83
