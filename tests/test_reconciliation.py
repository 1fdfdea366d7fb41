from dataclasses import replace

import pytest

from marginsight.metrics.calculator import calculate_metrics
from marginsight.metrics.reconciliation import (
    ExtractedPeriodCandidate,
    calculate_summary,
    computed_ordinary_profit,
    validate_and_fix,
)


class TestValidateAndFix:
    def test_worked_example(self, sample_candidate):
        fixed = validate_and_fix(sample_candidate)
        assert fixed.other_expenses == 4000
        assert computed_ordinary_profit(fixed) == 25000

    def test_idempotent(self, sample_candidate):
        once = validate_and_fix(sample_candidate)
        assert validate_and_fix(once) == once

    def test_matching_control_total_is_unchanged(self, sample_candidate):
        candidate = replace(sample_candidate, ordinary_profit_from_pdf=21000)
        assert validate_and_fix(candidate) is candidate

    def test_discrepancy_below_one_unit_is_ignored(self, sample_candidate):
        candidate = replace(sample_candidate, ordinary_profit_from_pdf=21000.6)
        assert validate_and_fix(candidate).other_expenses == 8000

    def test_no_control_total(self, sample_candidate):
        candidate = replace(sample_candidate, ordinary_profit_from_pdf=None)
        assert validate_and_fix(candidate) is candidate

    def test_profit_too_high_increases_other_expenses(self, sample_candidate):
        fixed = validate_and_fix(replace(sample_candidate, ordinary_profit_from_pdf=20000))
        assert fixed.other_expenses == 9000

    def test_result_is_rounded(self, sample_candidate):
        fixed = validate_and_fix(replace(sample_candidate, ordinary_profit_from_pdf=24997.5))
        assert fixed.other_expenses == 4003

    def test_unknown_lines_count_as_zero(self):
        candidate = ExtractedPeriodCandidate(sales=1000, labor_cost=300, ordinary_profit_from_pdf=500)
        fixed = validate_and_fix(candidate)
        assert fixed.other_expenses == 200
        assert fixed.material_cost is None

    def test_negative_other_expenses_is_flagged_not_clamped(self, sample_candidate):
        fixed = validate_and_fix(replace(sample_candidate, ordinary_profit_from_pdf=40000))
        assert fixed.other_expenses == -11000
        assert any("negative" in note for note in fixed.notes)
        assert sample_candidate.notes == []

    def test_input_is_not_mutated(self, sample_candidate):
        validate_and_fix(sample_candidate)
        assert sample_candidate.other_expenses == 8000


class TestCalculateSummary:
    def test_discrepancy(self, sample_candidate):
        summary = calculate_summary(sample_candidate)
        assert summary.ordinary_profit == 21000
        assert summary.marginal_profit_rate == pytest.approx(55.0)
        assert summary.discrepancy == -4000
        assert not summary.is_consistent

    def test_consistent_after_fix(self, sample_candidate):
        assert calculate_summary(validate_and_fix(sample_candidate)).is_consistent

    def test_matches_calculator(self, sample_candidate, sample_period):
        summary = calculate_summary(sample_candidate)
        metrics = calculate_metrics(sample_period)
        assert summary.total_variable_cost == metrics.total_variable_cost
        assert summary.marginal_profit_rate == metrics.marginal_profit_rate
        assert summary.total_fixed_cost == metrics.total_fixed_cost
        assert summary.operating_profit == metrics.operating_profit
        assert computed_ordinary_profit(sample_candidate) == metrics.ordinary_profit

    def test_without_control_total(self):
        summary = calculate_summary(ExtractedPeriodCandidate(sales=100))
        assert summary.discrepancy is None
        assert summary.is_consistent
