import pytest

from marginsight.metrics.calculator import PeriodRecord
from marginsight.metrics.reconciliation import ExtractedPeriodCandidate


@pytest.fixture
def sample_period():
    return PeriodRecord(
        label="第1期",
        sales=100000,
        material_cost=30000,
        outsourcing_cost=10000,
        merchandise_purchase=0,
        other_variable_cost=5000,
        labor_cost=20000,
        depreciation=5000,
        other_expenses=8000,
        non_operating_income=-1000,
        employee_count=10,
    )


@pytest.fixture
def next_period():
    return PeriodRecord(
        label="第2期",
        sales=120000,
        material_cost=33000,
        outsourcing_cost=12000,
        merchandise_purchase=2000,
        other_variable_cost=6000,
        labor_cost=23000,
        depreciation=5500,
        other_expenses=9000,
        non_operating_income=500,
        employee_count=12,
    )


@pytest.fixture
def sample_candidate():
    return ExtractedPeriodCandidate(
        label="2024年3月期",
        sales=100000,
        material_cost=30000,
        outsourcing_cost=10000,
        merchandise_purchase=0,
        other_variable_cost=5000,
        labor_cost=20000,
        depreciation=5000,
        other_expenses=8000,
        non_operating_income=-1000,
        employee_count=10,
        ordinary_profit_from_pdf=25000,
    )
