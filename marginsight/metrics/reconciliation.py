"""
Reconciliation of extracted figures against the reported ordinary profit.

Extraction from scanned statements can misclassify accounts. When the statement's
own ordinary profit is known, any discrepancy is absorbed into other expenses,
the catch-all line, so the record agrees with the control total while every
specific line keeps its extracted value.
"""

from dataclasses import dataclass, field, replace
from typing import Optional
import logging
import math

from marginsight.config import RECONCILIATION_TOLERANCE
from marginsight.metrics.calculator import PeriodRecord, calculate_metrics, employee_divisor

logger = logging.getLogger(__name__)

CONFIDENCE_LEVELS = ("high", "medium", "low")


@dataclass
class ExtractedPeriodCandidate:
    """A period as extracted from a statement. None means unknown."""
    label: str = ""
    sales: Optional[float] = None
    material_cost: Optional[float] = None
    outsourcing_cost: Optional[float] = None
    merchandise_purchase: Optional[float] = None
    other_variable_cost: Optional[float] = None
    labor_cost: Optional[float] = None
    depreciation: Optional[float] = None
    other_expenses: Optional[float] = None
    non_operating_income: Optional[float] = None
    employee_count: Optional[int] = None
    ordinary_profit_from_pdf: Optional[float] = None  # control total printed on the statement
    confidence: dict[str, str] = field(default_factory=dict)
    breakdown: dict[str, str] = field(default_factory=dict)
    notes: list[str] = field(default_factory=list)


@dataclass
class CalcSummary:
    total_variable_cost: float
    marginal_profit: float
    marginal_profit_rate: float
    total_fixed_cost: float
    operating_profit: float
    ordinary_profit: float
    ordinary_profit_from_pdf: Optional[float]
    discrepancy: Optional[float]   # computed − reported; None when nothing to compare

    @property
    def is_consistent(self) -> bool:
        return self.discrepancy is None or abs(self.discrepancy) < RECONCILIATION_TOLERANCE


LEDGER_LINES = (
    "sales",
    "material_cost",
    "outsourcing_cost",
    "merchandise_purchase",
    "other_variable_cost",
    "labor_cost",
    "depreciation",
    "other_expenses",
    "non_operating_income",
)


def _n(value) -> float:
    return value if value is not None else 0


def _round_half_up(value: float) -> float:
    return math.floor(value + 0.5)


def _as_period(candidate: ExtractedPeriodCandidate) -> PeriodRecord:
    """PeriodRecord view of a candidate, unknown lines counted as 0."""
    return PeriodRecord(
        label=candidate.label,
        employee_count=employee_divisor(candidate.employee_count),
        **{key: _n(getattr(candidate, key)) for key in LEDGER_LINES},
    )


def computed_ordinary_profit(candidate: ExtractedPeriodCandidate) -> float:
    """Ordinary profit from the candidate's own lines, unknown lines counted as 0."""
    return calculate_metrics(_as_period(candidate)).ordinary_profit


def calculate_summary(candidate: ExtractedPeriodCandidate) -> CalcSummary:
    """Subtotals of a candidate for the review screen, with the control-total discrepancy."""
    metrics = calculate_metrics(_as_period(candidate))
    reported = candidate.ordinary_profit_from_pdf
    return CalcSummary(
        total_variable_cost=metrics.total_variable_cost,
        marginal_profit=metrics.marginal_profit,
        marginal_profit_rate=metrics.marginal_profit_rate,
        total_fixed_cost=metrics.total_fixed_cost,
        operating_profit=metrics.operating_profit,
        ordinary_profit=metrics.ordinary_profit,
        ordinary_profit_from_pdf=reported,
        discrepancy=metrics.ordinary_profit - reported if reported is not None else None,
    )


def validate_and_fix(candidate: ExtractedPeriodCandidate) -> ExtractedPeriodCandidate:
    """
    Adjust other expenses so the computed ordinary profit matches the reported one.

    Returns the candidate unchanged when no control total is known or when the
    discrepancy is below one unit. Otherwise returns a copy with
    other_expenses += discrepancy, rounded to a whole unit. Applying it twice
    gives the same result as applying it once.

    An unknown sales figure is treated as 0 like every other unknown line.
    """
    reported = candidate.ordinary_profit_from_pdf
    if reported is None:
        return candidate

    diff = computed_ordinary_profit(candidate) - reported
    if abs(diff) < RECONCILIATION_TOLERANCE:
        return candidate

    # diff > 0: computed profit too high, so other expenses grow
    adjusted = _round_half_up(_n(candidate.other_expenses) + diff)
    notes = list(candidate.notes)
    logger.info(
        f"Reconciled '{candidate.label}': other expenses "
        f"{candidate.other_expenses} -> {adjusted} (discrepancy {diff:.1f})"
    )
    if adjusted < 0:
        logger.warning(
            f"Reconciliation drove other expenses negative for '{candidate.label}' ({adjusted}); "
            "review the classification"
        )
        notes.append(
            f"Other expenses became negative ({adjusted:,.0f}) after reconciliation; "
            "some accounts are probably misclassified."
        )

    return replace(candidate, other_expenses=adjusted, notes=notes)
