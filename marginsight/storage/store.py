"""
Persistence of company data, periods and scenarios.
Data is stored as JSON with the camelCase keys used by exported files, so
exports can be re-imported unchanged. All operations return new values;
nothing here holds state between calls.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from marginsight.config import (
    APP_DATA_FILE,
    DATA_DIR,
    MAX_PERIODS,
    MAX_SCENARIOS,
    MIN_PERIODS,
    VARIABLE_COST_ITEMS_FILE,
)
from marginsight.metrics.calculator import PeriodRecord, employee_divisor
from marginsight.metrics.simulator import ScenarioParameters, create_default_scenario

logger = logging.getLogger(__name__)

DEFAULT_VARIABLE_COST_ITEMS = ["消耗品費", "荷造運賃", "動力費", "燃料費"]
DEFAULT_PERIOD_LABELS = ["第1期", "第2期", "第3期"]

PERIOD_KEYS = [
    ("sales", "sales"),
    ("material_cost", "materialCost"),
    ("outsourcing_cost", "outsourcingCost"),
    ("merchandise_purchase", "merchandisePurchase"),
    ("other_variable_cost", "otherVariableCost"),
    ("labor_cost", "laborCost"),
    ("depreciation", "depreciation"),
    ("other_expenses", "otherExpenses"),
    ("non_operating_income", "nonOperatingIncome"),
]

SCENARIO_KEYS = [
    ("sales_change_rate", "salesChangeRate"),
    ("variable_cost_rate_change", "variableCostRateChange"),
    ("labor_cost_change_rate", "laborCostChangeRate"),
    ("fixed_cost_change_rate", "fixedCostChangeRate"),
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Company:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)


@dataclass
class AppData:
    company: Company = field(default_factory=Company)
    periods: list[PeriodRecord] = field(default_factory=list)
    scenarios: list[ScenarioParameters] = field(default_factory=list)


# ── Constructors ───────────────────────────────────────────────────────────

def create_empty_period(company_id: str, label: str) -> PeriodRecord:
    return PeriodRecord(label=label, company_id=company_id, employee_count=1)


def create_default_app_data() -> AppData:
    company = Company()
    return AppData(
        company=company,
        periods=[create_empty_period(company.id, label) for label in DEFAULT_PERIOD_LABELS],
        scenarios=[create_default_scenario("", 0)],
    )


# ── Bounded list operations ────────────────────────────────────────────────

def set_company_name(data: AppData, name: str) -> AppData:
    return replace(data, company=replace(data.company, name=name, updated_at=_now()))


def add_period(data: AppData, label: str) -> AppData:
    if len(data.periods) >= MAX_PERIODS:
        logger.info(f"Period limit of {MAX_PERIODS} reached; '{label}' not added")
        return data
    return replace(data, periods=[*data.periods, create_empty_period(data.company.id, label)])


def remove_period(data: AppData, index: int) -> AppData:
    if len(data.periods) <= MIN_PERIODS or not 0 <= index < len(data.periods):
        return data
    return replace(data, periods=[p for i, p in enumerate(data.periods) if i != index])


def update_period(data: AppData, index: int, **changes) -> AppData:
    periods = list(data.periods)
    periods[index] = replace(periods[index], **changes)
    return replace(data, periods=periods)


def add_scenario(data: AppData) -> AppData:
    """New scenario based on the latest period, inheriting its employee count."""
    if len(data.scenarios) >= MAX_SCENARIOS:
        return data
    base = data.periods[-1] if data.periods else None
    scenario = create_default_scenario(
        base.id if base else "",
        len(data.scenarios),
        employee_count=base.employee_count if base else 1,
    )
    return replace(data, scenarios=[*data.scenarios, scenario])


def remove_scenario(data: AppData, index: int) -> AppData:
    if len(data.scenarios) <= 1 or not 0 <= index < len(data.scenarios):
        return data
    return replace(data, scenarios=[s for i, s in enumerate(data.scenarios) if i != index])


def update_scenario(data: AppData, index: int, **changes) -> AppData:
    scenarios = list(data.scenarios)
    scenarios[index] = replace(scenarios[index], **changes)
    return replace(data, scenarios=scenarios)


# ── Serialisation ──────────────────────────────────────────────────────────

def _number(value, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def period_to_dict(period: PeriodRecord) -> dict:
    result = {"id": period.id, "companyId": period.company_id, "label": period.label}
    for attr, key in PERIOD_KEYS:
        result[key] = getattr(period, attr)
    result["employeeCount"] = period.employee_count
    return result


def period_from_dict(data: dict) -> PeriodRecord:
    values = {attr: _number(data.get(key)) for attr, key in PERIOD_KEYS}
    return PeriodRecord(
        id=data.get("id") or str(uuid.uuid4()),
        company_id=data.get("companyId", ""),
        label=data.get("label", ""),
        employee_count=employee_divisor(data.get("employeeCount")),
        **values,
    )


def scenario_to_dict(scenario: ScenarioParameters) -> dict:
    result = {"id": scenario.id, "periodId": scenario.period_id, "label": scenario.label}
    for attr, key in SCENARIO_KEYS:
        result[key] = getattr(scenario, attr)
    result["employeeCount"] = scenario.employee_count
    return result


def scenario_from_dict(data: dict) -> ScenarioParameters:
    values = {attr: _number(data.get(key)) for attr, key in SCENARIO_KEYS}
    return ScenarioParameters(
        id=data.get("id") or str(uuid.uuid4()),
        period_id=data.get("periodId", ""),
        label=data.get("label", ""),
        employee_count=employee_divisor(data.get("employeeCount")),
        **values,
    )


def export_to_json(data: AppData) -> str:
    payload = {
        "company": {
            "id": data.company.id,
            "name": data.company.name,
            "createdAt": data.company.created_at,
            "updatedAt": data.company.updated_at,
        },
        "periods": [period_to_dict(p) for p in data.periods],
        "scenarios": [scenario_to_dict(s) for s in data.scenarios],
    }
    return json.dumps(payload, ensure_ascii=False, indent=2)


def import_from_json(text: str) -> Optional[AppData]:
    """Parse exported JSON. Returns None when it is malformed or lacks company/periods."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse saved data: {e}")
        return None

    if not isinstance(raw, dict) or not raw.get("company") or raw.get("periods") is None:
        logger.error("Saved data is missing 'company' or 'periods'")
        return None

    c = raw["company"]
    raw_periods = raw["periods"]
    raw_scenarios = raw.get("scenarios") or []
    if (
        not isinstance(c, dict)
        or not isinstance(raw_periods, list)
        or not isinstance(raw_scenarios, list)
        or not all(isinstance(p, dict) for p in raw_periods)
        or not all(isinstance(s, dict) for s in raw_scenarios)
    ):
        logger.error("Saved data has an unexpected structure")
        return None

    company = Company(
        id=c.get("id") or str(uuid.uuid4()),
        name=c.get("name", ""),
        created_at=c.get("createdAt") or _now(),
        updated_at=c.get("updatedAt") or _now(),
    )
    scenarios = [scenario_from_dict(s) for s in raw_scenarios]
    return AppData(
        company=company,
        periods=[period_from_dict(p) for p in raw_periods],
        scenarios=scenarios or [create_default_scenario("", 0)],
    )


# ── Files ──────────────────────────────────────────────────────────────────

def save_app_data(data: AppData, path: Optional[Path] = None) -> Path:
    path = Path(path) if path else DATA_DIR / APP_DATA_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(export_to_json(data), encoding="utf-8")
    logger.info(f"Saved {len(data.periods)} period(s) to {path}")
    return path


def load_app_data(path: Optional[Path] = None) -> Optional[AppData]:
    """Load saved data; None when there is no file or it cannot be read."""
    path = Path(path) if path else DATA_DIR / APP_DATA_FILE
    if not path.exists():
        return None
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.error(f"Failed to read {path}: {e}")
        return None
    return import_from_json(text)


def load_variable_cost_items(path: Optional[Path] = None) -> list[str]:
    """Account names the user classifies as variable costs; defaults when unset or unreadable."""
    path = Path(path) if path else DATA_DIR / VARIABLE_COST_ITEMS_FILE
    try:
        with open(path, "r", encoding="utf-8") as f:
            items = json.load(f)
    except FileNotFoundError:
        return list(DEFAULT_VARIABLE_COST_ITEMS)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to load variable cost items: {e}")
        return list(DEFAULT_VARIABLE_COST_ITEMS)
    if not isinstance(items, list):
        return list(DEFAULT_VARIABLE_COST_ITEMS)
    return [str(i) for i in items]


def save_variable_cost_items(items: list[str], path: Optional[Path] = None) -> None:
    path = Path(path) if path else DATA_DIR / VARIABLE_COST_ITEMS_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(items, f, ensure_ascii=False)
