import pytest

from marginsight.metrics.calculator import PeriodRecord, calculate_metrics
from marginsight.utils.charts import axis_range, growth_figure, isoline_values, waterfall_figure


def test_waterfall_figure(sample_period, next_period):
    fig = waterfall_figure(sample_period, next_period)
    trace = fig.data[0]
    assert list(trace.measure) == ["absolute", "relative", "relative", "relative", "relative", "total"]
    assert trace.y[0] == pytest.approx(21000)
    assert trace.y[-1] == pytest.approx(calculate_metrics(next_period).ordinary_profit)
    assert sum(trace.y[1:5]) == pytest.approx(trace.y[-1] - trace.y[0])


def test_growth_figure(sample_period, next_period):
    fig = growth_figure([sample_period, next_period])
    points = fig.data[-1]
    assert list(points.text) == ["第1期", "第2期"]
    assert points.y[0] == pytest.approx(1.0)
    assert len(fig.data) > 1


def test_growth_figure_empty():
    assert growth_figure([]) is None


def test_axis_range_floor_at_zero():
    lo, hi = axis_range([10.0, 20.0], 0.5)
    assert lo == pytest.approx(5.0)
    assert hi == pytest.approx(25.0)
    assert axis_range([0.1, 0.2], 5)[0] == 0


def test_isoline_values():
    assert isoline_values([]) == []
    values = isoline_values([0.55, 0.6])
    assert values[0] == 0.5
    assert all(b - a == pytest.approx(0.5) for a, b in zip(values, values[1:]))


def test_waterfall_figure_zero_sales_bars_reach_current_profit():
    previous = PeriodRecord(label="A", material_cost=500, labor_cost=100)
    current = PeriodRecord(label="B", sales=1000, material_cost=400, labor_cost=100)
    trace = waterfall_figure(previous, current).data[0]
    assert trace.y[0] + sum(trace.y[1:5]) == pytest.approx(trace.y[-1])
