"""
Plotly figure builders for the ordinary profit waterfall and the growth chart.
"""

import math
from typing import Optional

import plotly.graph_objects as go

from marginsight.metrics.calculator import PeriodRecord, calculate_metrics, calculate_waterfall_factors
from marginsight.utils.formatters import calculate_isoline, to_oku

NAVY = "#1B2A4A"
GREEN = "#16A34A"
RED = "#DC2626"
GREY = "#9CA3AF"
POINT_COLORS = ["#3B82F6", "#10B981", "#F59E0B", "#EF4444", "#8B5CF6"]

FACTOR_LABELS = ["売上高貢献", "加工高比率貢献", "固定費貢献", "営業外損益貢献"]


def axis_range(values: list[float], margin_ratio: float) -> tuple[float, float]:
    """Padded axis range, floored at 0 and rounded out to one decimal place."""
    lo, hi = min(values), max(values)
    span = (hi - lo) or (hi * 0.5) or 1
    margin = span * margin_ratio
    return max(0.0, math.floor((lo - margin) * 10) / 10), math.ceil((hi + margin) * 10) / 10


def isoline_values(marginal_profits_oku: list[float]) -> list[float]:
    """Marginal profit levels (100M yen, 0.5 steps) bracketing the plotted points."""
    if not marginal_profits_oku:
        return []
    lo, hi = min(marginal_profits_oku), max(marginal_profits_oku)
    span = (hi - lo) or (hi * 0.5) or 1
    start = max(0.5, math.floor((lo - span * 0.5) * 2) / 2)
    end = math.ceil((hi + span * 0.5) * 2) / 2
    values = []
    v = start
    while v <= end:
        values.append(round(v, 1))
        v += 0.5
    return values


def isoline_points(
    marginal_profit_oku: float, x_min: float, x_max: float, y_max: float, steps: int = 100
) -> tuple[list[float], list[float]]:
    xs, ys = [], []
    step = (x_max - x_min) / steps or 1
    rate = max(x_min, 0.5)
    while rate <= x_max:
        sales = calculate_isoline(marginal_profit_oku, rate)
        if sales is not None and 0 <= sales <= y_max * 1.5:
            xs.append(round(rate, 2))
            ys.append(round(sales, 3))
        rate += step
    return xs, ys


def waterfall_figure(previous: PeriodRecord, current: PeriodRecord) -> go.Figure:
    """Previous ordinary profit → four factors → current ordinary profit."""
    factors = calculate_waterfall_factors(current, previous)
    prev_op = calculate_metrics(previous).ordinary_profit
    curr_op = calculate_metrics(current).ordinary_profit

    fig = go.Figure(go.Waterfall(
        name="Waterfall",
        orientation="v",
        measure=["absolute", "relative", "relative", "relative", "relative", "total"],
        x=[f"{previous.label}\n経常利益", *FACTOR_LABELS, f"{current.label}\n経常利益"],
        y=[
            prev_op,
            factors.sales_contribution,
            factors.marginal_rate_contribution,
            factors.fixed_cost_contribution,
            factors.non_operating_contribution,
            curr_op,
        ],
        connector={"line": {"color": GREY}},
        increasing={"marker": {"color": GREEN}},
        decreasing={"marker": {"color": RED}},
        totals={"marker": {"color": NAVY}},
    ))
    fig.update_layout(
        height=380, yaxis_tickformat=",.0f", yaxis_title="千円",
        margin=dict(l=0, r=0, t=10, b=30),
        plot_bgcolor="white", paper_bgcolor="white",
    )
    return fig


def growth_figure(periods: list[PeriodRecord]) -> Optional[go.Figure]:
    """
    Marginal profit rate (x) against sales in 100M yen (y), one point per period,
    connected oldest to newest, over iso-marginal-profit curves.
    """
    if not periods:
        return None
    all_metrics = [calculate_metrics(p) for p in periods]
    xs = [m.marginal_profit_rate for m in all_metrics]
    ys = [to_oku(p.sales) for p in periods]

    x_min, x_max = axis_range(xs, 0.4)
    _, y_max = axis_range(ys, 0.5)

    fig = go.Figure()
    for mp in isoline_values([to_oku(m.marginal_profit) for m in all_metrics]):
        line_x, line_y = isoline_points(mp, x_min, x_max, y_max)
        if line_x:
            fig.add_trace(go.Scatter(
                x=line_x, y=line_y, mode="lines", name=f"限界利益 {mp:.1f}億円",
                line=dict(color=GREY, width=1, dash="dot"), hoverinfo="skip",
                showlegend=False,
            ))
    fig.add_trace(go.Scatter(
        x=xs, y=ys, mode="lines+markers+text", name="実績",
        text=[p.label for p in periods], textposition="top center",
        line=dict(color=NAVY, width=2),
        marker=dict(size=12, color=[POINT_COLORS[i % len(POINT_COLORS)] for i in range(len(periods))]),
        hovertemplate="%{text}<br>売上高 %{y:.2f}億円<br>限界利益率 %{x:.1f}%<extra></extra>",
    ))
    fig.update_layout(
        height=480,
        xaxis=dict(title="限界利益率 (%)", range=[x_min, x_max]),
        yaxis=dict(title="売上高 (億円)", range=[0, y_max]),
        margin=dict(l=0, r=0, t=20, b=40),
        plot_bgcolor="white", paper_bgcolor="white",
    )
    return fig
