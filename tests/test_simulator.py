import pytest

from marginsight.metrics.calculator import PeriodRecord, calculate_metrics
from marginsight.metrics.simulator import (
    SCENARIO_LABELS,
    ScenarioParameters,
    calculate_scenario,
    calculate_scenarios,
    create_default_scenario,
)


class TestCalculateScenario:
    def test_zero_changes_reproduce_base(self, sample_period):
        scenario = ScenarioParameters(label="base", employee_count=sample_period.employee_count)
        result = calculate_scenario(sample_period, scenario)
        assert result.metrics == calculate_metrics(sample_period)
        assert result.projected.material_cost == sample_period.material_cost
        assert result.sales_change_from_actual == 0
        assert result.ordinary_profit_change_from_actual == 0

    def test_worked_example(self, sample_period):
        scenario = ScenarioParameters(sales_change_rate=10, variable_cost_rate_change=-2)
        result = calculate_scenario(sample_period, scenario)
        assert result.projected.sales == pytest.approx(110000)
        assert result.metrics.total_variable_cost == pytest.approx(47300)
        assert result.sales_change_from_actual == pytest.approx(10.0)

    def test_variable_mix_is_preserved(self, sample_period):
        result = calculate_scenario(sample_period, ScenarioParameters(sales_change_rate=10, variable_cost_rate_change=-2))
        scale = 47300 / 45000
        assert result.projected.material_cost == pytest.approx(30000 * scale)
        assert result.projected.outsourcing_cost == pytest.approx(10000 * scale)
        assert result.projected.merchandise_purchase == 0
        assert result.projected.other_variable_cost == pytest.approx(5000 * scale)

    def test_fixed_costs_and_non_operating(self, sample_period):
        scenario = ScenarioParameters(labor_cost_change_rate=5, fixed_cost_change_rate=-10)
        result = calculate_scenario(sample_period, scenario)
        assert result.projected.labor_cost == pytest.approx(21000)
        assert result.projected.depreciation == pytest.approx(4500)
        assert result.projected.other_expenses == pytest.approx(7200)
        assert result.projected.non_operating_income == -1000

    def test_uses_scenario_employee_count(self, sample_period):
        result = calculate_scenario(sample_period, ScenarioParameters(employee_count=20))
        assert result.metrics.sales_per_employee == 5000

    def test_projected_identities(self, next_period):
        scenario = ScenarioParameters(sales_change_rate=-15, variable_cost_rate_change=3, labor_cost_change_rate=2)
        m = calculate_scenario(next_period, scenario).metrics
        assert m.ordinary_profit == pytest.approx(m.operating_profit + next_period.non_operating_income)

    def test_zero_base_variable_cost_goes_to_fallback_line(self):
        base = PeriodRecord(sales=1000, labor_cost=100)
        result = calculate_scenario(base, ScenarioParameters(variable_cost_rate_change=10))
        assert result.projected.other_variable_cost == pytest.approx(100)
        assert result.projected.material_cost == 0
        assert result.metrics.total_variable_cost == pytest.approx(100)

    def test_zero_base_ordinary_profit_change_is_zero(self):
        base = PeriodRecord(sales=1000, material_cost=400, labor_cost=600)
        assert calculate_metrics(base).ordinary_profit == 0
        result = calculate_scenario(base, ScenarioParameters(sales_change_rate=20))
        assert result.metrics.ordinary_profit != 0
        assert result.ordinary_profit_change_from_actual == 0

    def test_base_is_not_mutated(self, sample_period):
        calculate_scenario(sample_period, ScenarioParameters(sales_change_rate=50))
        assert sample_period.sales == 100000


def test_calculate_scenarios_keeps_order(sample_period):
    scenarios = [create_default_scenario(index=i) for i in range(3)]
    results = calculate_scenarios(sample_period, scenarios)
    assert [r.scenario.label for r in results] == SCENARIO_LABELS[:3]


def test_default_scenario():
    scenario = create_default_scenario("p1", 1, employee_count=0)
    assert scenario.label == "試算②"
    assert scenario.period_id == "p1"
    assert scenario.employee_count == 1
    assert scenario.sales_change_rate == 0


def test_result_metrics_describe_projected_period(sample_period):
    result = calculate_scenario(sample_period, ScenarioParameters(sales_change_rate=10, labor_cost_change_rate=5))
    assert result.metrics == calculate_metrics(result.projected)
    assert not hasattr(result, "ordinary_profit")
