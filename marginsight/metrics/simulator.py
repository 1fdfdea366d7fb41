"""
Scenario simulator.
Projects a what-if period from a base period and a set of rate changes,
re-deriving every indicator with the same formulas as the calculator.
"""

from dataclasses import dataclass, field, replace
import logging
import uuid

from marginsight.metrics.calculator import (
    DerivedMetrics,
    PeriodRecord,
    calculate_metrics,
    calculate_yoy_change,
    employee_divisor,
)

logger = logging.getLogger(__name__)

SCENARIO_LABELS = ["試算①", "試算②", "試算③", "試算④", "試算⑤"]

VARIABLE_COST_LINES = [
    "material_cost",
    "outsourcing_cost",
    "merchandise_purchase",
    "other_variable_cost",
]

# Receives the whole projected variable cost when the base period has none to apportion.
FALLBACK_VARIABLE_COST_LINE = "other_variable_cost"


@dataclass
class ScenarioParameters:
    """Relative adjustments applied to a base period."""
    label: str = ""
    sales_change_rate: float = 0.0          # %
    variable_cost_rate_change: float = 0.0  # % points
    labor_cost_change_rate: float = 0.0     # %
    fixed_cost_change_rate: float = 0.0     # %, depreciation and other expenses
    employee_count: int = 1
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    period_id: str = ""


@dataclass
class ScenarioResult:
    """Projected period, its indicators and the change versus base actuals."""
    scenario: ScenarioParameters
    projected: PeriodRecord
    metrics: DerivedMetrics
    sales_change_from_actual: float
    ordinary_profit_change_from_actual: float


def create_default_scenario(period_id: str = "", index: int = 0, employee_count: int = 1) -> ScenarioParameters:
    label = SCENARIO_LABELS[index] if 0 <= index < len(SCENARIO_LABELS) else f"試算{index + 1}"
    return ScenarioParameters(
        label=label,
        employee_count=employee_divisor(employee_count),
        period_id=period_id,
    )


def _project_variable_costs(base: PeriodRecord, base_total: float, projected_total: float) -> dict:
    """Split the projected total variable cost in proportion to the base period's mix."""
    if base_total == 0:
        lines = {key: 0.0 for key in VARIABLE_COST_LINES}
        lines[FALLBACK_VARIABLE_COST_LINE] = projected_total
        if projected_total != 0:
            logger.info(
                f"Base period '{base.label}' has no variable cost; "
                f"allocating {projected_total:.1f} to {FALLBACK_VARIABLE_COST_LINE}"
            )
        return lines

    scale = projected_total / base_total
    return {key: getattr(base, key) * scale for key in VARIABLE_COST_LINES}


def calculate_scenario(base_period: PeriodRecord, scenario: ScenarioParameters) -> ScenarioResult:
    """
    Project a scenario from a base period.

    1. sales scale by (1 + sales_change_rate / 100)
    2. variable cost rate = base rate + variable_cost_rate_change / 100
    3. variable sub-lines keep the base period's mix
    4. labour scales by its own rate; depreciation and other expenses by the fixed-cost rate
    5. non-operating income is held at the base value
    6. indicators use the scenario's employee count
    """
    base_metrics = calculate_metrics(base_period)

    growth = 1 + scenario.sales_change_rate / 100
    sales = base_period.sales * growth
    rate_change = scenario.variable_cost_rate_change / 100

    # sales × (base_tvc / base_sales + Δrate), arranged so zero changes return base_tvc unchanged
    if base_period.sales != 0:
        total_variable_cost = base_metrics.total_variable_cost * growth + sales * rate_change
    else:
        total_variable_cost = sales * rate_change

    variable_lines = _project_variable_costs(
        base_period, base_metrics.total_variable_cost, total_variable_cost
    )

    fixed_growth = 1 + scenario.fixed_cost_change_rate / 100
    projected = replace(
        base_period,
        id=scenario.id,
        label=scenario.label,
        sales=sales,
        labor_cost=base_period.labor_cost * (1 + scenario.labor_cost_change_rate / 100),
        depreciation=base_period.depreciation * fixed_growth,
        other_expenses=base_period.other_expenses * fixed_growth,
        non_operating_income=base_period.non_operating_income,
        employee_count=employee_divisor(scenario.employee_count),
        **variable_lines,
    )
    metrics = calculate_metrics(projected)

    base_ordinary = base_metrics.ordinary_profit
    ordinary_change = (
        calculate_yoy_change(metrics.ordinary_profit, base_ordinary) if base_ordinary != 0 else 0.0
    )

    return ScenarioResult(
        scenario=scenario,
        projected=projected,
        metrics=metrics,
        sales_change_from_actual=calculate_yoy_change(sales, base_period.sales),
        ordinary_profit_change_from_actual=ordinary_change,
    )


def calculate_scenarios(base_period: PeriodRecord, scenarios: list[ScenarioParameters]) -> list[ScenarioResult]:
    return [calculate_scenario(base_period, s) for s in scenarios]
