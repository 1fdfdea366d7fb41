"""
Excel report generation using xlsxwriter.
Produces workbooks for period actuals, period-over-period comparison with
waterfall factors, and scenario simulation.
"""

import io
import logging
import re
from datetime import date

import xlsxwriter

from marginsight.metrics.calculator import (
    calculate_composition_ratios,
    calculate_metrics,
    calculate_waterfall_factors,
    calculate_yoy_change,
)

logger = logging.getLogger(__name__)

# Row fills by line group
SALES_FILL = "#DBEAFE"
VARIABLE_FILL = "#FEF3C7"
FIXED_FILL = "#FCE7F3"
PROFIT_FILL = "#DCFCE7"
NAVY = "#1B2A4A"
WHITE = "#FFFFFF"
LIGHT_GREY = "#F3F4F6"

AMOUNT_FORMAT = "#,##0.0"
PCT_FORMAT = '0.0"%"'

# (label, fill, value getter (period, metrics), bold, is_percentage)
ACTUAL_ROWS = [
    ("売上高", SALES_FILL, lambda p, m: p.sales, True, False),
    ("材料費", VARIABLE_FILL, lambda p, m: p.material_cost, False, False),
    ("外注費", VARIABLE_FILL, lambda p, m: p.outsourcing_cost, False, False),
    ("商品仕入", VARIABLE_FILL, lambda p, m: p.merchandise_purchase, False, False),
    ("その他変動費", VARIABLE_FILL, lambda p, m: p.other_variable_cost, False, False),
    ("変動費合計", VARIABLE_FILL, lambda p, m: m.total_variable_cost, True, False),
    ("限界利益", SALES_FILL, lambda p, m: m.marginal_profit, True, False),
    ("限界利益率(%)", SALES_FILL, lambda p, m: m.marginal_profit_rate, False, True),
    ("人件費", FIXED_FILL, lambda p, m: p.labor_cost, False, False),
    ("減価償却費", FIXED_FILL, lambda p, m: p.depreciation, False, False),
    ("その他経費", FIXED_FILL, lambda p, m: p.other_expenses, False, False),
    ("固定費合計", FIXED_FILL, lambda p, m: m.total_fixed_cost, True, False),
    ("営業利益", PROFIT_FILL, lambda p, m: m.operating_profit, True, False),
    ("営業外損益", None, lambda p, m: p.non_operating_income, False, False),
    ("経常利益", PROFIT_FILL, lambda p, m: m.ordinary_profit, True, False),
    ("従業員数", None, lambda p, m: p.employee_count, False, False),
    ("労働分配率(%)", None, lambda p, m: m.labor_share_rate, False, True),
]

# (label, fill, value getter (period, metrics), ratio attribute)
BALANCE_ROWS = [
    ("売上高", SALES_FILL, lambda p, m: p.sales, None),
    ("変動費合計", VARIABLE_FILL, lambda p, m: m.total_variable_cost, "total_variable_cost_rate"),
    ("限界利益", SALES_FILL, lambda p, m: m.marginal_profit, "marginal_profit_rate"),
    ("固定費合計", FIXED_FILL, lambda p, m: m.total_fixed_cost, "total_fixed_cost_rate"),
    ("営業利益", PROFIT_FILL, lambda p, m: m.operating_profit, "operating_profit_rate"),
    ("営業外損益", None, lambda p, m: p.non_operating_income, "non_operating_income_rate"),
    ("経常利益", PROFIT_FILL, lambda p, m: m.ordinary_profit, "ordinary_profit_rate"),
]

# (label, fill, attribute on DerivedMetrics or PeriodRecord, is_percentage)
SIMULATION_ROWS = [
    ("売上高", SALES_FILL, "sales", False),
    ("変動費合計", VARIABLE_FILL, "total_variable_cost", False),
    ("限界利益", SALES_FILL, "marginal_profit", False),
    ("限界利益率(%)", SALES_FILL, "marginal_profit_rate", True),
    ("人件費", FIXED_FILL, "labor_cost", False),
    ("減価償却費", FIXED_FILL, "depreciation", False),
    ("その他経費", FIXED_FILL, "other_expenses", False),
    ("固定費合計", FIXED_FILL, "total_fixed_cost", False),
    ("営業利益", PROFIT_FILL, "operating_profit", False),
    ("営業外損益", None, "non_operating_income", False),
    ("経常利益", PROFIT_FILL, "ordinary_profit", False),
    ("労働分配率(%)", None, "labor_share_rate", True),
    ("1人当たり売上高", None, "sales_per_employee", False),
    ("1人当たり加工高(年)", None, "marginal_profit_per_employee", False),
    ("1人当たり経常利益", None, "ordinary_profit_per_employee", False),
]

WATERFALL_ROWS = [
    ("①売上高貢献", "sales_contribution"),
    ("②加工高比率貢献", "marginal_rate_contribution"),
    ("③固定費貢献", "fixed_cost_contribution"),
    ("④営業外損益貢献", "non_operating_contribution"),
]


class _Formats:
    """Cached xlsxwriter formats for one workbook."""

    def __init__(self, wb):
        self.wb = wb
        self.header = wb.add_format({
            "bold": True, "font_color": WHITE, "bg_color": NAVY,
            "border": 1, "align": "center", "valign": "vcenter",
            "text_wrap": True,
        })
        self.title = wb.add_format({"bold": True, "font_size": 14, "font_color": NAVY})
        self.sub = wb.add_format({"font_size": 10, "font_color": "#6B7280"})
        self.section = wb.add_format({
            "bold": True, "font_size": 11, "font_color": NAVY,
            "bg_color": LIGHT_GREY, "border": 1,
        })
        self._cache = {}

    def cell(self, fill=None, bold=False, pct=False, label=False):
        key = (fill, bold, pct, label)
        if key not in self._cache:
            props = {"border": 1, "valign": "vcenter", "bold": bold}
            if fill:
                props["bg_color"] = fill
            if not label:
                props["num_format"] = PCT_FORMAT if pct else AMOUNT_FORMAT
            self._cache[key] = self.wb.add_format(props)
        return self._cache[key]


def _write_title(ws, fmt: _Formats, title: str, company_name: str) -> int:
    ws.write(0, 0, title, fmt.title)
    ws.write(1, 0, f"{company_name or '-'} | 単位: 千円 | Generated: {date.today()}", fmt.sub)
    return 3


def generate_actuals_excel(periods: list, company_name: str = "") -> bytes:
    """Period actuals table: one column per period. Returns workbook bytes."""
    buffer = io.BytesIO()
    wb = xlsxwriter.Workbook(buffer, {"in_memory": True})
    fmt = _Formats(wb)

    ws = wb.add_worksheet("実績データ")
    ws.set_column(0, 0, 22)
    ws.set_column(1, max(len(periods), 1), 16)

    row = _write_title(ws, fmt, "損益実績データ", company_name)
    ws.write(row, 0, "項目", fmt.header)
    for col, period in enumerate(periods, start=1):
        ws.write(row, col, period.label, fmt.header)
    row += 1

    all_metrics = [calculate_metrics(p) for p in periods]
    for label, fill, getter, bold, pct in ACTUAL_ROWS:
        ws.write(row, 0, label, fmt.cell(fill, bold, label=True))
        for col, (period, metrics) in enumerate(zip(periods, all_metrics), start=1):
            ws.write_number(row, col, getter(period, metrics), fmt.cell(fill, bold, pct))
        row += 1

    wb.close()
    buffer.seek(0)
    return buffer.getvalue()


def _write_balance_sheet(wb, fmt: _Formats, prev, curr, company_name: str) -> None:
    # Sheet names: max 31 characters, no []:*?/\ and unique per workbook ignoring case
    name = re.sub(r"[\[\]:*?/\\]", "_", f"{prev.label}→{curr.label}")[:31] or "前期比較"
    existing = {ws.get_name().lower() for ws in wb.worksheets()}
    suffix = 2
    base_name = name
    while name.lower() in existing:
        name = f"{base_name[:28]}({suffix})"
        suffix += 1
    ws = wb.add_worksheet(name)
    ws.set_column(0, 0, 22)
    ws.set_column(1, 5, 14)

    prev_m, curr_m = calculate_metrics(prev), calculate_metrics(curr)
    prev_r = calculate_composition_ratios(prev, prev_m)
    curr_r = calculate_composition_ratios(curr, curr_m)

    row = _write_title(ws, fmt, f"前期比較 {prev.label} → {curr.label}", company_name)
    headers = ["項目", f"{prev.label} 金額", "構成比(%)", f"{curr.label} 金額", "構成比(%)", "前期比(%)"]
    for col, h in enumerate(headers):
        ws.write(row, col, h, fmt.header)
    row += 1

    for label, fill, getter, ratio_attr in BALANCE_ROWS:
        p_val, c_val = getter(prev, prev_m), getter(curr, curr_m)
        p_rate = getattr(prev_r, ratio_attr) if ratio_attr else 100.0
        c_rate = getattr(curr_r, ratio_attr) if ratio_attr else 100.0
        ws.write(row, 0, label, fmt.cell(fill, True, label=True))
        ws.write_number(row, 1, p_val, fmt.cell(fill))
        ws.write_number(row, 2, p_rate, fmt.cell(fill, pct=True))
        ws.write_number(row, 3, c_val, fmt.cell(fill))
        ws.write_number(row, 4, c_rate, fmt.cell(fill, pct=True))
        ws.write_number(row, 5, calculate_yoy_change(c_val, p_val), fmt.cell(fill, pct=True))
        row += 1

    row += 1
    factors = calculate_waterfall_factors(curr, prev)
    ws.merge_range(row, 0, row, 1, "経常利益増減要因", fmt.section)
    row += 1
    ws.write(row, 0, f"{prev.label} 経常利益", fmt.cell(label=True))
    ws.write_number(row, 1, prev_m.ordinary_profit, fmt.cell(PROFIT_FILL))
    row += 1
    for label, attr in WATERFALL_ROWS:
        ws.write(row, 0, label, fmt.cell(label=True))
        ws.write_number(row, 1, getattr(factors, attr), fmt.cell())
        row += 1
    ws.write(row, 0, f"{curr.label} 経常利益", fmt.cell(bold=True, label=True))
    ws.write_number(row, 1, curr_m.ordinary_profit, fmt.cell(PROFIT_FILL, True))


def generate_balance_chart_excel(periods: list, company_name: str = "") -> bytes:
    """One sheet per consecutive pair of periods (oldest first). Returns workbook bytes."""
    buffer = io.BytesIO()
    wb = xlsxwriter.Workbook(buffer, {"in_memory": True})
    fmt = _Formats(wb)

    if len(periods) < 2:
        ws = wb.add_worksheet("前期比較")
        ws.write(0, 0, "At least two periods are required for a comparison.", fmt.sub)
    for prev, curr in zip(periods, periods[1:]):
        _write_balance_sheet(wb, fmt, prev, curr, company_name)

    wb.close()
    buffer.seek(0)
    return buffer.getvalue()


def _line_value(period, metrics, attr: str) -> float:
    # Derived indicators live on metrics, input lines on the period
    return getattr(metrics, attr) if hasattr(metrics, attr) else getattr(period, attr)


def generate_simulation_excel(base_period, results: list, company_name: str = "") -> bytes:
    """Base actuals next to each scenario projection, with changes versus actuals."""
    buffer = io.BytesIO()
    wb = xlsxwriter.Workbook(buffer, {"in_memory": True})
    fmt = _Formats(wb)

    ws = wb.add_worksheet("損益シミュレーション")
    ws.set_column(0, 0, 24)
    ws.set_column(1, len(results) + 1, 16)

    base_metrics = calculate_metrics(base_period)
    row = _write_title(ws, fmt, f"損益シミュレーション (基準: {base_period.label})", company_name)
    ws.write(row, 0, "項目", fmt.header)
    ws.write(row, 1, f"実績 {base_period.label}", fmt.header)
    for col, result in enumerate(results, start=2):
        ws.write(row, col, result.scenario.label, fmt.header)
    row += 1

    for label, fill, attr, pct in SIMULATION_ROWS:
        base_val = _line_value(base_period, base_metrics, attr)
        ws.write(row, 0, label, fmt.cell(fill, label=True))
        ws.write_number(row, 1, base_val, fmt.cell(fill, pct=pct))
        for col, result in enumerate(results, start=2):
            ws.write_number(row, col, _line_value(result.projected, result.metrics, attr), fmt.cell(fill, pct=pct))
        row += 1

    row += 1
    ws.merge_range(row, 0, row, 1, "前提条件", fmt.section)
    row += 1
    assumptions = [
        ("売上高変化率(%)", "sales_change_rate"),
        ("変動費率変化(%pt)", "variable_cost_rate_change"),
        ("人件費変化率(%)", "labor_cost_change_rate"),
        ("その他固定費変化率(%)", "fixed_cost_change_rate"),
        ("従業員数", "employee_count"),
    ]
    for label, attr in assumptions:
        ws.write(row, 0, label, fmt.cell(label=True))
        for col, result in enumerate(results, start=2):
            ws.write_number(row, col, getattr(result.scenario, attr), fmt.cell())
        row += 1

    ws.write(row, 0, "売上高 実績比(%)", fmt.cell(label=True))
    for col, result in enumerate(results, start=2):
        ws.write_number(row, col, result.sales_change_from_actual, fmt.cell(pct=True))
    row += 1
    ws.write(row, 0, "経常利益 実績比(%)", fmt.cell(label=True))
    for col, result in enumerate(results, start=2):
        ws.write_number(row, col, result.ordinary_profit_change_from_actual, fmt.cell(pct=True))

    wb.close()
    buffer.seek(0)
    logger.info(f"Simulation workbook generated with {len(results)} scenario(s)")
    return buffer.getvalue()
