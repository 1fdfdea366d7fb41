"""
Profit-and-loss metrics calculator.
Derives marginal-profit indicators, composition ratios, period-over-period
changes and waterfall factors from one or more periods of raw P&L figures.

All amounts are in thousand yen. Percentages are already multiplied by 100.
Every function here is pure: records are never mutated.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging
import uuid

import pandas as pd

logger = logging.getLogger(__name__)

MONTHS_PER_YEAR = 12
CHECK_TOLERANCE = 0.01
HIGH_LABOR_SHARE_RATE = 70.0


# ── Data structures ───────────────────────────────────────────────────────────

@dataclass
class PeriodRecord:
    """One fiscal period's raw ledger figures (thousand yen)."""
    label: str = ""
    sales: float = 0.0
    material_cost: float = 0.0
    outsourcing_cost: float = 0.0
    merchandise_purchase: float = 0.0
    other_variable_cost: float = 0.0
    labor_cost: float = 0.0
    depreciation: float = 0.0
    other_expenses: float = 0.0          # residual / catch-all line
    non_operating_income: float = 0.0    # income minus expense, may be negative
    employee_count: int = 1
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    company_id: str = ""


@dataclass
class DerivedMetrics:
    """Indicators computed from a PeriodRecord. Never stored on its own."""
    total_variable_cost: float
    marginal_profit: float
    marginal_profit_rate: float          # %
    total_fixed_cost: float
    operating_profit: float
    ordinary_profit: float
    labor_share_rate: float              # %
    sales_per_employee: float
    marginal_profit_per_employee: float  # annual
    monthly_marginal_profit_per_employee: float
    ordinary_profit_per_employee: float


@dataclass
class CompositionRatios:
    """Each line as a percentage of sales."""
    material_cost_rate: float
    outsourcing_cost_rate: float
    merchandise_purchase_rate: float
    other_variable_cost_rate: float
    total_variable_cost_rate: float
    marginal_profit_rate: float
    labor_cost_rate: float
    depreciation_rate: float
    other_expenses_rate: float
    total_fixed_cost_rate: float
    operating_profit_rate: float
    non_operating_income_rate: float
    ordinary_profit_rate: float


@dataclass
class WaterfallFactors:
    """Attribution of the change in ordinary profit between two periods."""
    sales_contribution: float
    marginal_rate_contribution: float
    fixed_cost_contribution: float
    non_operating_contribution: float

    @property
    def total(self) -> float:
        return (
            self.sales_contribution
            + self.marginal_rate_contribution
            + self.fixed_cost_contribution
            + self.non_operating_contribution
        )


@dataclass
class SelfCheckResult:
    """Result of a single integrity self-check."""
    check_name: str
    description: str
    status: str          # 'pass', 'warn', 'fail'
    detail: str
    values: dict = field(default_factory=dict)


@dataclass
class PeriodComparison:
    """Changes between two consecutive periods."""
    previous_label: str
    current_label: str
    yoy_changes: dict[str, float] = field(default_factory=dict)
    waterfall: Optional[WaterfallFactors] = None


@dataclass
class AnalysisResult:
    """Complete analysis result for a list of periods (oldest first)."""
    period_labels: list[str] = field(default_factory=list)
    metrics: list[DerivedMetrics] = field(default_factory=list)
    ratios: list[CompositionRatios] = field(default_factory=list)
    comparisons: list[PeriodComparison] = field(default_factory=list)
    self_checks: dict[str, list[SelfCheckResult]] = field(default_factory=dict)
    red_flags: list[str] = field(default_factory=list)
    has_self_check_fails: bool = False
    has_self_check_warns: bool = False


# ── Helper functions ──────────────────────────────────────────────────────────

def employee_divisor(employee_count) -> int:
    """Employee count used for per-employee figures; never below 1."""
    try:
        count = int(employee_count)
    except (TypeError, ValueError):
        return 1
    return max(count, 1)


def _rate(numerator: float, denominator: float) -> float:
    """numerator / denominator × 100, or 0 when the denominator is 0."""
    if denominator == 0:
        return 0.0
    return numerator / denominator * 100


# ── Core calculations ─────────────────────────────────────────────────────────

def calculate_metrics(period: PeriodRecord) -> DerivedMetrics:
    """
    Derive subtotals and profit lines for one period.

    marginal profit  = sales − total variable cost
    operating profit = marginal profit − total fixed cost
    ordinary profit  = operating profit + non-operating income
    """
    total_variable_cost = (
        period.material_cost
        + period.outsourcing_cost
        + period.merchandise_purchase
        + period.other_variable_cost
    )
    marginal_profit = period.sales - total_variable_cost
    marginal_profit_rate = _rate(marginal_profit, period.sales)

    total_fixed_cost = period.labor_cost + period.depreciation + period.other_expenses
    operating_profit = marginal_profit - total_fixed_cost
    ordinary_profit = operating_profit + period.non_operating_income

    labor_share_rate = _rate(period.labor_cost, marginal_profit)

    emp = employee_divisor(period.employee_count)
    marginal_profit_per_employee = marginal_profit / emp

    return DerivedMetrics(
        total_variable_cost=total_variable_cost,
        marginal_profit=marginal_profit,
        marginal_profit_rate=marginal_profit_rate,
        total_fixed_cost=total_fixed_cost,
        operating_profit=operating_profit,
        ordinary_profit=ordinary_profit,
        labor_share_rate=labor_share_rate,
        sales_per_employee=period.sales / emp,
        marginal_profit_per_employee=marginal_profit_per_employee,
        monthly_marginal_profit_per_employee=marginal_profit_per_employee / MONTHS_PER_YEAR,
        ordinary_profit_per_employee=ordinary_profit / emp,
    )


def calculate_composition_ratios(period: PeriodRecord, metrics: DerivedMetrics) -> CompositionRatios:
    """
    Express every line as a percentage of sales.
    `metrics` must come from calculate_metrics(period); it is not re-derived.
    Zero sales divides by 1, so ratios against zero sales equal the raw amount × 100.
    """
    s = period.sales if period.sales != 0 else 1

    def pct(value: float) -> float:
        return value / s * 100

    return CompositionRatios(
        material_cost_rate=pct(period.material_cost),
        outsourcing_cost_rate=pct(period.outsourcing_cost),
        merchandise_purchase_rate=pct(period.merchandise_purchase),
        other_variable_cost_rate=pct(period.other_variable_cost),
        total_variable_cost_rate=pct(metrics.total_variable_cost),
        marginal_profit_rate=pct(metrics.marginal_profit),
        labor_cost_rate=pct(period.labor_cost),
        depreciation_rate=pct(period.depreciation),
        other_expenses_rate=pct(period.other_expenses),
        total_fixed_cost_rate=pct(metrics.total_fixed_cost),
        operating_profit_rate=pct(metrics.operating_profit),
        non_operating_income_rate=pct(period.non_operating_income),
        ordinary_profit_rate=pct(metrics.ordinary_profit),
    )


def calculate_yoy_change(current: float, previous: float) -> float:
    """
    Percentage change from previous to current.
    Returns 0 when previous is 0; callers that need to tell "no baseline"
    apart from "no change" must check previous themselves.
    """
    if previous == 0:
        return 0.0
    return (current - previous) / abs(previous) * 100


def calculate_waterfall_factors(current: PeriodRecord, previous: PeriodRecord) -> WaterfallFactors:
    """
    Decompose the change in ordinary profit into four factors:

      ① sales        = (sales_c − sales_p) × rate_p
      ② margin rate  = sales_c × (rate_c − rate_p)
      ③ fixed cost   = −(fixed_c − fixed_p)
      ④ non-operating = non_op_c − non_op_p

    ① + ② = sales_c × rate_c − sales_p × rate_p, the change in marginal profit,
    so the four factors sum to the change in ordinary profit.

    With zero sales the rate is 0 while marginal profit is −variable cost, so
    in that case ② is the remainder Δmarginal profit − ① and the sum still holds.
    """
    current_metrics = calculate_metrics(current)
    previous_metrics = calculate_metrics(previous)

    prev_rate = previous_metrics.marginal_profit_rate / 100
    curr_rate = current_metrics.marginal_profit_rate / 100

    sales_contribution = (current.sales - previous.sales) * prev_rate
    if current.sales == 0 or previous.sales == 0:
        marginal_rate_contribution = (
            current_metrics.marginal_profit - previous_metrics.marginal_profit - sales_contribution
        )
    else:
        marginal_rate_contribution = current.sales * (curr_rate - prev_rate)

    return WaterfallFactors(
        sales_contribution=sales_contribution,
        marginal_rate_contribution=marginal_rate_contribution,
        fixed_cost_contribution=-(current_metrics.total_fixed_cost - previous_metrics.total_fixed_cost),
        non_operating_contribution=current.non_operating_income - previous.non_operating_income,
    )


# ── Integrity self-checks ─────────────────────────────────────────────────────

def validate_operating_profit(period: PeriodRecord) -> tuple[bool, float]:
    """Operating profit = marginal profit − total fixed cost. Returns (is_valid, difference)."""
    metrics = calculate_metrics(period)
    expected = metrics.marginal_profit - metrics.total_fixed_cost
    diff = abs(metrics.operating_profit - expected)
    return diff < CHECK_TOLERANCE, diff


def validate_ordinary_profit(period: PeriodRecord) -> tuple[bool, float]:
    """Ordinary profit = operating profit + non-operating income. Returns (is_valid, difference)."""
    metrics = calculate_metrics(period)
    expected = metrics.operating_profit + period.non_operating_income
    diff = abs(metrics.ordinary_profit - expected)
    return diff < CHECK_TOLERANCE, diff


def run_self_checks(period: PeriodRecord) -> list[SelfCheckResult]:
    """Run the integrity checks for one period."""
    checks = []
    metrics = calculate_metrics(period)

    # ── CHECK 1: Operating profit identity ────────────────────────────────────
    ok, diff = validate_operating_profit(period)
    checks.append(SelfCheckResult(
        check_name="Operating Profit",
        description="Operating Profit = Marginal Profit − Total Fixed Cost",
        status="pass" if ok else "fail",
        detail=f"Operating Profit: {metrics.operating_profit:,.0f} | Difference: {diff:,.2f}",
        values={"operating_profit": metrics.operating_profit, "difference": diff},
    ))

    # ── CHECK 2: Ordinary profit identity ─────────────────────────────────────
    ok, diff = validate_ordinary_profit(period)
    checks.append(SelfCheckResult(
        check_name="Ordinary Profit",
        description="Ordinary Profit = Operating Profit + Non-operating Income",
        status="pass" if ok else "fail",
        detail=f"Ordinary Profit: {metrics.ordinary_profit:,.0f} | Difference: {diff:,.2f}",
        values={"ordinary_profit": metrics.ordinary_profit, "difference": diff},
    ))

    # ── CHECK 3: Residual line sign ───────────────────────────────────────────
    if period.other_expenses < 0:
        checks.append(SelfCheckResult(
            check_name="Other Expenses",
            description="Other Expenses should not be negative",
            status="warn",
            detail=(
                f"Other Expenses: {period.other_expenses:,.0f}. "
                "A negative residual usually means an account was misclassified during extraction."
            ),
            values={"other_expenses": period.other_expenses},
        ))
    else:
        checks.append(SelfCheckResult(
            check_name="Other Expenses",
            description="Other Expenses should not be negative",
            status="pass",
            detail=f"Other Expenses: {period.other_expenses:,.0f}",
            values={"other_expenses": period.other_expenses},
        ))

    # ── CHECK 4: Variable cost ceiling ────────────────────────────────────────
    if period.sales > 0 and metrics.total_variable_cost > period.sales:
        checks.append(SelfCheckResult(
            check_name="Variable Cost Ceiling",
            description="Total Variable Cost should not exceed Sales",
            status="warn",
            detail=(
                f"Total Variable Cost: {metrics.total_variable_cost:,.0f} | "
                f"Sales: {period.sales:,.0f}"
            ),
            values={"total_variable_cost": metrics.total_variable_cost, "sales": period.sales},
        ))

    return checks


def detect_red_flags(period: PeriodRecord, metrics: DerivedMetrics) -> list[str]:
    flags = []
    label = period.label or "Period"

    if metrics.ordinary_profit < 0:
        flags.append(f"⚠️ {label}: ordinary loss of {abs(metrics.ordinary_profit):,.0f} thousand yen.")

    if metrics.marginal_profit < 0:
        flags.append(
            f"⚠️ {label}: negative marginal profit ({metrics.marginal_profit:,.0f}) — "
            "variable costs exceed sales."
        )
    elif metrics.labor_share_rate >= HIGH_LABOR_SHARE_RATE:
        flags.append(
            f"⚠️ {label}: labour share is {metrics.labor_share_rate:.1f}% of marginal profit "
            f"(≥{HIGH_LABOR_SHARE_RATE:.0f}%)."
        )

    return flags


# ── Multi-period analysis ─────────────────────────────────────────────────────

YOY_LINES = [
    ("sales", "Sales"),
    ("total_variable_cost", "Total Variable Cost"),
    ("marginal_profit", "Marginal Profit"),
    ("total_fixed_cost", "Total Fixed Cost"),
    ("operating_profit", "Operating Profit"),
    ("non_operating_income", "Non-operating Income"),
    ("ordinary_profit", "Ordinary Profit"),
]


def _line_value(period: PeriodRecord, metrics: DerivedMetrics, key: str) -> float:
    if hasattr(metrics, key):
        return getattr(metrics, key)
    return getattr(period, key)


def compare_periods(previous: PeriodRecord, current: PeriodRecord) -> PeriodComparison:
    prev_m = calculate_metrics(previous)
    curr_m = calculate_metrics(current)
    yoy = {
        key: calculate_yoy_change(_line_value(current, curr_m, key), _line_value(previous, prev_m, key))
        for key, _ in YOY_LINES
    }
    return PeriodComparison(
        previous_label=previous.label,
        current_label=current.label,
        yoy_changes=yoy,
        waterfall=calculate_waterfall_factors(current, previous),
    )


def run_analysis(periods: list[PeriodRecord]) -> AnalysisResult:
    """
    Main entry point: metrics, ratios, self-checks and red flags for each period,
    plus YoY changes and waterfall factors for each consecutive pair.
    `periods` is ordered oldest first.
    """
    result = AnalysisResult()
    result.period_labels = [p.label for p in periods]

    for period in periods:
        metrics = calculate_metrics(period)
        result.metrics.append(metrics)
        result.ratios.append(calculate_composition_ratios(period, metrics))
        result.self_checks[period.label] = run_self_checks(period)
        result.red_flags.extend(detect_red_flags(period, metrics))

    for previous, current in zip(periods, periods[1:]):
        result.comparisons.append(compare_periods(previous, current))

    all_checks = [c for checks in result.self_checks.values() for c in checks]
    result.has_self_check_fails = any(c.status == "fail" for c in all_checks)
    result.has_self_check_warns = any(c.status == "warn" for c in all_checks)

    if result.has_self_check_fails:
        logger.warning(f"Self-check failures in periods: {result.period_labels}")

    return result


METRIC_ROWS = [
    ("sales", "売上高"),
    ("material_cost", "材料費"),
    ("outsourcing_cost", "外注費"),
    ("merchandise_purchase", "商品仕入"),
    ("other_variable_cost", "その他変動費"),
    ("total_variable_cost", "変動費合計"),
    ("marginal_profit", "限界利益"),
    ("marginal_profit_rate", "限界利益率(%)"),
    ("labor_cost", "人件費"),
    ("depreciation", "減価償却費"),
    ("other_expenses", "その他経費"),
    ("total_fixed_cost", "固定費合計"),
    ("operating_profit", "営業利益"),
    ("non_operating_income", "営業外損益"),
    ("ordinary_profit", "経常利益"),
    ("employee_count", "従業員数"),
    ("labor_share_rate", "労働分配率(%)"),
    ("sales_per_employee", "1人当たり売上高"),
    ("marginal_profit_per_employee", "1人当たり加工高(年)"),
    ("monthly_marginal_profit_per_employee", "1人当たり加工高(月)"),
    ("ordinary_profit_per_employee", "1人当たり経常利益"),
]


def metrics_frame(periods: list[PeriodRecord]) -> pd.DataFrame:
    """Indicator table: one row per line item, one column per period label."""
    all_metrics = [calculate_metrics(p) for p in periods]
    rows = [
        [_line_value(p, m, key) for p, m in zip(periods, all_metrics)]
        for key, _ in METRIC_ROWS
    ]
    return pd.DataFrame(
        rows,
        index=[label for _, label in METRIC_ROWS],
        columns=[p.label for p in periods],
    )
