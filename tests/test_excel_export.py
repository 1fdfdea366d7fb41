import io

import pandas as pd
import pytest

from marginsight.exports.excel_export import (
    generate_actuals_excel,
    generate_balance_chart_excel,
    generate_simulation_excel,
)
from marginsight.metrics.calculator import PeriodRecord
from marginsight.metrics.simulator import ScenarioParameters, calculate_scenarios


def _read(content: bytes) -> dict:
    return pd.read_excel(io.BytesIO(content), sheet_name=None, header=None)


class TestActuals:
    def test_workbook(self, sample_period, next_period):
        content = generate_actuals_excel([sample_period, next_period], "山田製作所")
        assert content[:2] == b"PK"
        sheet = _read(content)["実績データ"]
        labels = list(sheet[0])
        row = labels.index("経常利益")
        assert sheet.iloc[row, 1] == pytest.approx(21000)
        assert "第2期" in list(sheet.iloc[labels.index("項目")])

    def test_no_periods(self):
        assert generate_actuals_excel([], "")[:2] == b"PK"


class TestBalanceChart:
    def test_one_sheet_per_pair(self, sample_period, next_period):
        third = PeriodRecord(label="第3期", sales=130000, labor_cost=30000)
        sheets = _read(generate_balance_chart_excel([sample_period, next_period, third]))
        assert list(sheets) == ["第1期→第2期", "第2期→第3期"]

    def test_waterfall_rows(self, sample_period, next_period):
        sheet = _read(generate_balance_chart_excel([sample_period, next_period]))["第1期→第2期"]
        labels = list(sheet[0])
        assert sheet.iloc[labels.index("①売上高貢献"), 1] == pytest.approx(11000)
        assert sheet.iloc[labels.index("④営業外損益貢献"), 1] == pytest.approx(1500)

    def test_unsafe_and_duplicate_labels(self):
        a = PeriodRecord(label="2023/3")
        b = PeriodRecord(label="2024/3")
        sheets = _read(generate_balance_chart_excel([a, b, a, b]))
        assert len(sheets) == 3
        assert all("/" not in name for name in sheets)

    def test_labels_differing_only_in_case(self):
        periods = [PeriodRecord(label=label, sales=100) for label in ["FY1", "FY2", "fy1", "fy2"]]
        sheets = _read(generate_balance_chart_excel(periods))
        assert len(sheets) == 3
        assert len({name.lower() for name in sheets}) == 3

    def test_single_period(self, sample_period):
        assert list(_read(generate_balance_chart_excel([sample_period]))) == ["前期比較"]


def test_simulation_workbook(sample_period):
    scenarios = [ScenarioParameters(label="試算①", sales_change_rate=10, variable_cost_rate_change=-2)]
    content = generate_simulation_excel(sample_period, calculate_scenarios(sample_period, scenarios), "山田製作所")
    sheet = _read(content)["損益シミュレーション"]
    labels = list(sheet[0])
    row = labels.index("変動費合計")
    assert sheet.iloc[row, 1] == pytest.approx(45000)
    assert sheet.iloc[row, 2] == pytest.approx(47300)
