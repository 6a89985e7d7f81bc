"""
Tests for the savings comparison engine and the failure-reason explainer.
"""
import pytest

from bill_parser import ComparisonResult, EnergyOffer, InvoiceExtraction
from comparison import (
    FAILURE_MESSAGES,
    FailureReason,
    comparable_offers,
    diagnose_failure,
    explain_failure,
    is_prudent,
    round2,
    run_comparison,
    should_show_exact_savings,
)
from pipeline import extract_fields
from policy import ComparisonPolicy
from tariff_model import monthly_cost

ENDESA = EnergyOffer(id="end-1", company_name="Endesa", price_per_kwh=0.15, monthly_fixed_cost=10.0)


def _extraction(company="Iberdrola", kwh=250.0, total=60.0, months=1, confidence=0.92):
    return InvoiceExtraction(
        company_name=company,
        consumption_kwh=kwh,
        total_factura=total,
        period_months=months,
        confidence=confidence,
    )


def _result(percent=20.0, prudent=False):
    return ComparisonResult(
        current_company="Iberdrola",
        current_monthly_cost=60.0,
        best_offer_company="Endesa",
        best_offer_monthly_cost=48.0,
        estimated_savings_amount=12.0,
        estimated_savings_percentage=percent,
        prudent_mode=prudent,
    )


# ===================================================================
# End-to-end scenarios
# ===================================================================

class TestScenarios:

    def test_scenario_a(self):
        extraction = extract_fields("Iberdrola ... Consumo total: 250 kWh ... Total a pagar: 60,00 €")
        result = run_comparison(extraction, [ENDESA])

        assert result is not None
        assert result.current_company == "Iberdrola"
        assert result.best_offer_company == "Endesa"
        assert result.best_offer_monthly_cost == 47.50
        assert result.current_monthly_cost == 60.00
        assert result.estimated_savings_amount == 12.50
        assert result.estimated_savings_percentage == 20.83
        assert result.prudent_mode is False

    def test_scenario_b_no_offers(self):
        extraction = extract_fields("Iberdrola ... Consumo total: 250 kWh ... Total a pagar: 60,00 €")
        assert run_comparison(extraction, []) is None
        assert explain_failure(extraction, []) == "No hay ofertas configuradas para comparar."

    def test_failure_path_extraction_never_compares(self, offers):
        extraction = InvoiceExtraction.empty(raw_text="ilegible")
        assert run_comparison(extraction, offers) is None
        assert run_comparison(extraction, [ENDESA]) is None
        assert diagnose_failure(extraction, offers) is FailureReason.UNREADABLE_INVOICE

    def test_prudent_low_consumption(self):
        extraction = _extraction(kwh=30, total=50, confidence=0.9)
        result = run_comparison(extraction, [ENDESA])
        assert result is not None
        assert result.prudent_mode is True


# ===================================================================
# Offer selection
# ===================================================================

class TestOfferSelection:

    def test_cheapest_comparable_offer(self, offers):
        result = run_comparison(_extraction(), offers)
        # Holaluz: 250 x 0.14 + 4.6 x 30 x 0.06 = 43.28
        assert result.best_offer_company == "Holaluz"
        assert result.best_offer_monthly_cost == 43.28
        assert result.estimated_savings_amount == 16.72
        assert result.estimated_savings_percentage == 27.87

    def test_best_is_minimum_of_comparable(self, offers):
        extraction = _extraction(company="Naturgy", kwh=400, total=90)
        result = run_comparison(extraction, offers)
        costs = [monthly_cost(400, o) for o in comparable_offers(extraction, offers)]
        assert result.best_offer_monthly_cost == round2(min(costs))

    def test_same_supplier_never_selected(self):
        cheap_iberdrola = EnergyOffer(
            id="ibe", company_name="IBERDROLA CLIENTES", price_per_kwh=0.01, monthly_fixed_cost=0,
        )
        result = run_comparison(_extraction(), [cheap_iberdrola, ENDESA])
        assert result.best_offer_company == "Endesa"

    def test_alias_counts_as_same_supplier(self):
        offer = EnergyOffer(id="n", company_name="Naturgy", price_per_kwh=0.01)
        extraction = _extraction(company="Gas Natural Fenosa")
        assert comparable_offers(extraction, [offer]) == []
        assert run_comparison(extraction, [offer]) is None
        assert diagnose_failure(extraction, [offer]) is FailureReason.NO_COMPARABLE_OFFERS

    def test_unknown_current_supplier_compares_all(self, offers):
        assert comparable_offers(_extraction(company=None), offers) == offers

    def test_tie_goes_to_first_offer(self):
        first = EnergyOffer(id="a", company_name="Repsol", price_per_kwh=0.15, monthly_fixed_cost=10)
        second = EnergyOffer(id="b", company_name="Endesa", price_per_kwh=0.15, monthly_fixed_cost=10)
        assert run_comparison(_extraction(), [first, second]).best_offer_company == "Repsol"
        assert run_comparison(_extraction(), [second, first]).best_offer_company == "Endesa"

    def test_more_expensive_offer_gives_no_result(self):
        extraction = _extraction(total=20.0)
        assert run_comparison(extraction, [ENDESA]) is None
        assert diagnose_failure(extraction, [ENDESA]) is FailureReason.NO_SAVINGS

    def test_zero_savings_is_reported(self):
        result = run_comparison(_extraction(total=47.50), [ENDESA])
        assert result is not None
        assert result.estimated_savings_amount == 0.0
        assert result.estimated_savings_percentage == 0.0

    def test_multi_month_bill_is_normalized(self):
        result = run_comparison(_extraction(kwh=500, total=120, months=2), [ENDESA])
        assert result.current_monthly_cost == 60.00
        assert result.best_offer_monthly_cost == 47.50
        assert result.estimated_savings_percentage == 20.83

    @pytest.mark.parametrize("kwh,total", [(None, 60.0), (250.0, None), (0, 60.0), (250.0, -5)])
    def test_missing_figures(self, kwh, total):
        extraction = _extraction(kwh=kwh, total=total)
        assert run_comparison(extraction, [ENDESA]) is None
        assert explain_failure(extraction, [ENDESA]) == FAILURE_MESSAGES[FailureReason.UNREADABLE_INVOICE]

    def test_savings_never_negative(self, offers):
        for total in (10.0, 30.0, 43.0, 50.0, 80.0, 200.0):
            result = run_comparison(_extraction(total=total), offers)
            if result is not None:
                assert result.estimated_savings_percentage >= 0


# ===================================================================
# Prudent mode and display gating
# ===================================================================

class TestPrudentMode:

    @pytest.mark.parametrize("percent,kwh,confidence,expected", [
        (20.0, 250, 0.92, False),
        (45.0, 250, 0.92, False),
        (45.01, 250, 0.92, True),
        (20.0, 49.9, 0.92, True),
        (20.0, 50, 0.92, False),
        (20.0, 5000, 0.92, False),
        (20.0, 5000.1, 0.92, True),
        (20.0, 250, 0.5, True),
        (20.0, 250, 0.8, False),
        (20.0, 250, 0.0, False),
    ])
    def test_conditions(self, percent, kwh, confidence, expected):
        assert is_prudent(percent, kwh, confidence) is expected

    def test_extreme_savings_flagged(self):
        result = run_comparison(_extraction(total=150.0), [ENDESA])
        assert result.estimated_savings_percentage > 45
        assert result.prudent_mode is True

    def test_low_confidence_flagged(self):
        result = run_comparison(_extraction(confidence=0.6), [ENDESA])
        assert result.prudent_mode is True

    def test_policy_override(self):
        policy = ComparisonPolicy(prudent_max_savings_percent=10.0)
        result = run_comparison(_extraction(), [ENDESA], policy)
        assert result.prudent_mode is True


class TestShouldShowExactSavings:

    def test_shown(self):
        assert should_show_exact_savings(_result(percent=20.0)) is True

    def test_small_savings_hidden(self):
        assert should_show_exact_savings(_result(percent=7.99)) is False

    def test_prudent_hidden(self):
        assert should_show_exact_savings(_result(percent=20.0, prudent=True)) is False

    def test_custom_minimum(self):
        assert should_show_exact_savings(_result(percent=12.0), min_percent=15) is False
        assert should_show_exact_savings(_result(percent=12.0), min_percent=10) is True


class TestRound2:

    @pytest.mark.parametrize("value,expected", [
        (12.345, 12.35),
        (2.675, 2.68),
        (20.8333, 20.83),
        (47.5, 47.5),
        (0.005, 0.01),
    ])
    def test_half_up(self, value, expected):
        assert round2(value) == expected


class TestFailureMessages:

    def test_every_reason_has_a_message(self):
        assert set(FAILURE_MESSAGES) == set(FailureReason)

    def test_diagnostic_order(self):
        # Unreadable wins over a missing catalog
        assert diagnose_failure(InvoiceExtraction.empty(), []) is FailureReason.UNREADABLE_INVOICE
        assert diagnose_failure(_extraction(), []) is FailureReason.NO_OFFERS
