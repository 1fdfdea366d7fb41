"""
MarginSight — marginal profit analysis for small manufacturers.
Main Streamlit application.

Run with: streamlit run marginsight/app.py
"""

import logging
from dataclasses import replace
from datetime import date

import pandas as pd
import streamlit as st

from marginsight.config import LLM_MODEL, MAX_PERIODS, MAX_SCENARIOS, MIN_PERIODS
from marginsight.exports.excel_export import (
    generate_actuals_excel,
    generate_balance_chart_excel,
    generate_simulation_excel,
)
from marginsight.extraction.llm_extractor import check_llm_status, extract_periods, request_correction
from marginsight.metrics.calculator import (
    YOY_LINES,
    calculate_composition_ratios,
    calculate_metrics,
    metrics_frame,
    run_analysis,
)
from marginsight.metrics.reconciliation import calculate_summary, validate_and_fix
from marginsight.metrics.simulator import calculate_scenarios
from marginsight.parser.pdf_parser import (
    FIELDS,
    apply_confirmed_values,
    build_period_record,
    extract_from_pdf,
    get_confirmation_template,
    render_page_images,
)
from marginsight.storage.store import (
    add_period,
    add_scenario,
    create_default_app_data,
    export_to_json,
    import_from_json,
    load_app_data,
    load_variable_cost_items,
    remove_period,
    remove_scenario,
    save_app_data,
    save_variable_cost_items,
    set_company_name,
    update_period,
    update_scenario,
)
from marginsight.utils.charts import growth_figure, waterfall_figure
from marginsight.utils.formatters import (
    format_percent,
    format_signed_percent,
    format_thousand_yen,
    to_oku,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

PAGES = ["Upload", "Input", "Balance & Waterfall", "Growth chart", "Simulation", "Data"]
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CONFIDENCE_ICON = {"high": "🟢", "medium": "🟡", "low": "🔴"}

# ── Page configuration ─────────────────────────────────────────────────────
st.set_page_config(
    page_title="MarginSight",
    page_icon="📊",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .stApp { background-color: #F9FAFB; }
    .main .block-container { padding-top: 1.5rem; }
    .section-header {
        font-size: 1.1rem;
        font-weight: 600;
        color: #1B2A4A;
        border-bottom: 2px solid #1B2A4A;
        padding-bottom: 4px;
        margin: 16px 0 12px 0;
    }
    .red-flag {
        background: #FEE2E2;
        border: 1px solid #FECACA;
        border-radius: 6px;
        padding: 8px 12px;
        margin-bottom: 6px;
        color: #DC2626;
        font-size: 0.9rem;
    }
    [data-testid="stSidebar"] { background-color: #1B2A4A; }
    [data-testid="stSidebar"] * { color: white !important; }
</style>
""", unsafe_allow_html=True)


def _section(title: str):
    st.markdown(f'<div class="section-header">{title}</div>', unsafe_allow_html=True)


def _safe_filename(name: str) -> str:
    return "".join(c if c.isalnum() or c in " -_" else "_" for c in (name or "company"))[:40]


# ── Session state init ─────────────────────────────────────────────────────

def _init_state():
    if "app_data" not in st.session_state:
        st.session_state.app_data = load_app_data() or create_default_app_data()
    defaults = {
        "pdf_result": None,
        "page_images": None,
        "candidates": [],
        "variable_cost_items": load_variable_cost_items(),
    }
    for k, v in defaults.items():
        if k not in st.session_state:
            st.session_state[k] = v


def _set_data(data):
    st.session_state.app_data = data
    try:
        save_app_data(data)
    except OSError as e:
        st.warning(f"Could not save data: {e}")
        logger.exception("Save error")


_init_state()
data = st.session_state.app_data

# ── Sidebar ────────────────────────────────────────────────────────────────

with st.sidebar:
    st.markdown("## MarginSight")
    st.markdown("*Marginal profit analysis*")
    st.markdown("---")

    company_name = st.text_input("Company name", value=data.company.name)
    if company_name != data.company.name:
        _set_data(set_company_name(data, company_name))
        data = st.session_state.app_data

    page = st.radio("Page", PAGES, index=1)

    st.markdown("---")
    st.markdown("### LLM server")
    running, status_msg = check_llm_status()
    st.markdown(f"{'🟢' if running else '🔴'} {status_msg}")
    st.caption(f"Model: {LLM_MODEL}")

company_display = data.company.name or "Company"
periods = data.periods

# ── Upload ─────────────────────────────────────────────────────────────────

if page == "Upload":
    st.markdown(f"## {company_display} — Import from PDF")
    st.markdown(
        "Upload a profit and loss statement (and manufacturing cost report if any). "
        "Figures are read by the LLM, reconciled against the printed ordinary profit, "
        "and shown below for review before they are stored."
    )

    with st.expander("Accounts treated as variable costs"):
        items_text = st.text_area(
            "One account name per line",
            value="\n".join(st.session_state.variable_cost_items),
        )
        if st.button("Save variable cost accounts"):
            items = [line.strip() for line in items_text.splitlines() if line.strip()]
            save_variable_cost_items(items)
            st.session_state.variable_cost_items = items
            st.success("Saved.")

    uploaded_pdf = st.file_uploader("Financial statements PDF", type=["pdf"])
    if st.button("Extract figures", type="primary", disabled=uploaded_pdf is None):
        st.session_state.candidates = []
        with st.spinner("Reading PDF and extracting figures..."):
            try:
                pdf_result = extract_from_pdf(uploaded_pdf)
                images = None if pdf_result.has_text else render_page_images(uploaded_pdf)
                st.session_state.pdf_result = pdf_result
                st.session_state.page_images = images
                st.session_state.candidates = extract_periods(
                    text=pdf_result.text if pdf_result.has_text else None,
                    images=images,
                    variable_cost_items=st.session_state.variable_cost_items,
                )
                st.success(
                    f"Extracted {len(st.session_state.candidates)} period(s) from "
                    f"{pdf_result.page_count} page(s)"
                    f"{'' if pdf_result.has_text else ' (scanned, read from images)'}."
                )
            except (ConnectionError, TimeoutError, PermissionError, RuntimeError, ValueError) as e:
                st.error(f"Extraction failed: {e}")
                logger.exception("PDF extraction error")

    candidates = st.session_state.candidates
    if candidates:
        _section("Review extracted figures")
        reviewed = []
        for i, candidate in enumerate(candidates):
            st.markdown(f"### {candidate.label or f'Period {i + 1}'}")
            for note in candidate.notes:
                st.info(note)

            template = get_confirmation_template(candidate)
            confirmed = {}
            cols = st.columns(2)
            for j, (key, info) in enumerate(template.items()):
                value = info["value"]
                with cols[j % 2]:
                    confirmed[key] = st.text_input(
                        f"{CONFIDENCE_ICON.get(info['confidence'], '')} {info['label']} ({info['unit']})",
                        value="" if value is None else f"{value:.0f}",
                        key=f"review_{i}_{key}",
                        help=info["source_note"] or None,
                    )
            edited = validate_and_fix(apply_confirmed_values(candidate, confirmed))
            summary = calculate_summary(edited)
            st.markdown(
                f"Ordinary profit (calculated): **{format_thousand_yen(summary.ordinary_profit)}** | "
                f"On statement: **{format_thousand_yen(summary.ordinary_profit_from_pdf)}**"
            )
            if not summary.is_consistent:
                st.warning(f"Difference: {format_thousand_yen(summary.discrepancy)}")

            instruction = st.text_input("Correction instruction for the LLM", key=f"instruction_{i}")
            if st.button("Ask LLM to correct", key=f"correct_{i}", disabled=not instruction):
                with st.spinner("Requesting correction..."):
                    try:
                        corrected = request_correction(
                            edited,
                            instruction,
                            images=st.session_state.page_images,
                            variable_cost_items=st.session_state.variable_cost_items,
                        )
                        candidates[i] = corrected[0]
                        st.rerun()
                    except (ConnectionError, TimeoutError, PermissionError, RuntimeError, ValueError) as e:
                        st.error(f"Correction failed: {e}")
                        logger.exception("Correction error")
            reviewed.append(edited)

        if st.button("Store these periods", type="primary"):
            new_periods = [
                build_period_record(c, fallback_label=f"第{i + 1}期", company_id=data.company.id)
                for i, c in enumerate(reviewed[-MAX_PERIODS:])
            ]
            if len(new_periods) < MIN_PERIODS:
                # Keep earlier stored periods so the minimum count still holds
                new_periods = [*periods[-(MIN_PERIODS - len(new_periods)):], *new_periods]
            _set_data(replace(data, periods=new_periods))
            st.session_state.candidates = []
            st.success("Stored. Open the Input page to review the periods.")

# ── Input ──────────────────────────────────────────────────────────────────

elif page == "Input":
    st.markdown(f"## {company_display} — Period figures")
    st.caption("All amounts in thousand yen (千円).")

    col_add, col_remove = st.columns(2)
    with col_add:
        if st.button("Add period", disabled=len(periods) >= MAX_PERIODS):
            _set_data(add_period(data, f"第{len(periods) + 1}期"))
            st.rerun()
    with col_remove:
        if st.button("Remove last period", disabled=len(periods) <= MIN_PERIODS):
            _set_data(remove_period(data, len(periods) - 1))
            st.rerun()

    cols = st.columns(max(len(periods), 1))
    for idx, (col, period) in enumerate(zip(cols, periods)):
        with col:
            changes = {"label": st.text_input("Label", value=period.label, key=f"label_{period.id}")}
            for key, label, unit, _ in FIELDS:
                if key == "employee_count":
                    changes[key] = int(st.number_input(
                        f"{label} ({unit})", min_value=1, step=1,
                        value=int(period.employee_count), key=f"{key}_{period.id}",
                    ))
                else:
                    changes[key] = float(st.number_input(
                        f"{label} ({unit})", value=float(getattr(period, key)),
                        step=1000.0, format="%.0f", key=f"{key}_{period.id}",
                    ))
            if any(getattr(period, k) != v for k, v in changes.items()):
                _set_data(update_period(data, idx, **changes))
                data = st.session_state.app_data

    result = run_analysis(data.periods)
    if result.red_flags:
        for flag in result.red_flags:
            st.markdown(f'<div class="red-flag">{flag}</div>', unsafe_allow_html=True)

    _section("Indicators")
    st.dataframe(metrics_frame(data.periods).round(1), use_container_width=True)

    with st.expander("Integrity self-checks"):
        icons = {"pass": "✅", "warn": "⚠️", "fail": "❌"}
        for label, checks in result.self_checks.items():
            st.markdown(f"**{label}**")
            for check in checks:
                st.markdown(f"{icons[check.status]} {check.check_name}: {check.detail}")

    st.download_button(
        "Download actuals (Excel)",
        data=generate_actuals_excel(data.periods, data.company.name),
        file_name=f"{_safe_filename(data.company.name)}_actuals_{date.today():%Y%m%d}.xlsx",
        mime=XLSX_MIME,
    )

# ── Balance & Waterfall ────────────────────────────────────────────────────

elif page == "Balance & Waterfall":
    st.markdown(f"## {company_display} — Period comparison")
    pairs = list(zip(periods, periods[1:]))
    if not pairs:
        st.info("Enter at least two periods on the Input page to compare them.")
        st.stop()
    pair_labels = [f"{p.label} → {c.label}" for p, c in pairs]
    choice = st.selectbox("Comparison", pair_labels, index=len(pair_labels) - 1)
    previous, current = pairs[pair_labels.index(choice)]

    prev_m, curr_m = calculate_metrics(previous), calculate_metrics(current)
    prev_r = calculate_composition_ratios(previous, prev_m)
    curr_r = calculate_composition_ratios(current, curr_m)
    comparison = run_analysis([previous, current]).comparisons[0]

    kpi_cols = st.columns(3)
    for col, (key, label) in zip(kpi_cols, [
        ("sales", "Sales"), ("marginal_profit", "Marginal Profit"), ("ordinary_profit", "Ordinary Profit"),
    ]):
        cur_v = getattr(curr_m, key) if hasattr(curr_m, key) else getattr(current, key)
        with col:
            st.metric(label, format_thousand_yen(cur_v), format_signed_percent(comparison.yoy_changes[key]))

    _section("Balance (share of sales)")
    rows = []
    for key, label in YOY_LINES:
        rate_key = "marginal_profit_rate" if key == "marginal_profit" else f"{key}_rate"
        rows.append({
            "Line": label,
            previous.label: format_thousand_yen(
                getattr(prev_m, key) if hasattr(prev_m, key) else getattr(previous, key)),
            f"{previous.label} %": format_percent(getattr(prev_r, rate_key, 100.0)),
            current.label: format_thousand_yen(
                getattr(curr_m, key) if hasattr(curr_m, key) else getattr(current, key)),
            f"{current.label} %": format_percent(getattr(curr_r, rate_key, 100.0)),
            "YoY": format_signed_percent(comparison.yoy_changes[key]),
        })
    st.dataframe(pd.DataFrame(rows), hide_index=True, use_container_width=True)

    _section("Ordinary profit waterfall")
    st.plotly_chart(waterfall_figure(previous, current), use_container_width=True)

    st.download_button(
        "Download comparison (Excel)",
        data=generate_balance_chart_excel(periods, data.company.name),
        file_name=f"{_safe_filename(data.company.name)}_comparison_{date.today():%Y%m%d}.xlsx",
        mime=XLSX_MIME,
    )

# ── Growth chart ───────────────────────────────────────────────────────────

elif page == "Growth chart":
    st.markdown(f"## {company_display} — Growth chart")
    st.caption("Marginal profit rate against sales (100M yen). Dotted curves are equal marginal profit.")
    fig = growth_figure(periods)
    if fig is not None:
        st.plotly_chart(fig, use_container_width=True)
    st.dataframe(pd.DataFrame([
        {
            "Period": p.label,
            "Sales (億円)": f"{to_oku(p.sales):.2f}",
            "Marginal profit (億円)": f"{to_oku(calculate_metrics(p).marginal_profit):.2f}",
            "Marginal profit rate": format_percent(calculate_metrics(p).marginal_profit_rate),
        }
        for p in periods
    ]), hide_index=True, use_container_width=True)

# ── Simulation ─────────────────────────────────────────────────────────────

elif page == "Simulation":
    st.markdown(f"## {company_display} — Simulation")
    if not periods:
        st.info("Enter a period on the Input page first.")
        st.stop()
    base = periods[-1]
    st.caption(f"Base period: {base.label}")

    col_add, col_remove = st.columns(2)
    with col_add:
        if st.button("Add scenario", disabled=len(data.scenarios) >= MAX_SCENARIOS):
            _set_data(add_scenario(data))
            st.rerun()
    with col_remove:
        if st.button("Remove last scenario", disabled=len(data.scenarios) <= 1):
            _set_data(remove_scenario(data, len(data.scenarios) - 1))
            st.rerun()

    cols = st.columns(len(data.scenarios))
    for idx, (col, scenario) in enumerate(zip(cols, data.scenarios)):
        with col:
            st.markdown(f"**{scenario.label}**")
            changes = {
                "sales_change_rate": st.number_input(
                    "Sales change (%)", value=float(scenario.sales_change_rate), step=1.0,
                    key=f"sales_{scenario.id}"),
                "variable_cost_rate_change": st.number_input(
                    "Variable cost rate change (%pt)", value=float(scenario.variable_cost_rate_change),
                    step=0.5, key=f"vc_{scenario.id}"),
                "labor_cost_change_rate": st.number_input(
                    "Labour cost change (%)", value=float(scenario.labor_cost_change_rate), step=1.0,
                    key=f"labor_{scenario.id}"),
                "fixed_cost_change_rate": st.number_input(
                    "Other fixed cost change (%)", value=float(scenario.fixed_cost_change_rate),
                    step=1.0, key=f"fixed_{scenario.id}"),
                "employee_count": int(st.number_input(
                    "Employees", min_value=1, step=1, value=int(scenario.employee_count),
                    key=f"emp_{scenario.id}")),
            }
            if any(getattr(scenario, k) != v for k, v in changes.items()):
                _set_data(update_scenario(data, idx, **changes))
                data = st.session_state.app_data

    results = calculate_scenarios(base, data.scenarios)
    base_m = calculate_metrics(base)
    _section("Results")
    table = {"Line": ["Sales", "Marginal Profit", "Marginal Profit Rate", "Total Fixed Cost",
                      "Ordinary Profit", "Labour Share", "Ordinary profit vs actual"]}
    table[f"Actual {base.label}"] = [
        format_thousand_yen(base.sales), format_thousand_yen(base_m.marginal_profit),
        format_percent(base_m.marginal_profit_rate), format_thousand_yen(base_m.total_fixed_cost),
        format_thousand_yen(base_m.ordinary_profit), format_percent(base_m.labor_share_rate), "",
    ]
    for r in results:
        table[r.scenario.label] = [
            format_thousand_yen(r.projected.sales), format_thousand_yen(r.metrics.marginal_profit),
            format_percent(r.metrics.marginal_profit_rate), format_thousand_yen(r.metrics.total_fixed_cost),
            format_thousand_yen(r.metrics.ordinary_profit), format_percent(r.metrics.labor_share_rate),
            format_signed_percent(r.ordinary_profit_change_from_actual),
        ]
    st.dataframe(pd.DataFrame(table), hide_index=True, use_container_width=True)

    st.download_button(
        "Download simulation (Excel)",
        data=generate_simulation_excel(base, results, data.company.name),
        file_name=f"{_safe_filename(data.company.name)}_simulation_{date.today():%Y%m%d}.xlsx",
        mime=XLSX_MIME,
    )

# ── Data ───────────────────────────────────────────────────────────────────

elif page == "Data":
    st.markdown(f"## {company_display} — Data")
    st.download_button(
        "Export data (JSON)",
        data=export_to_json(data),
        file_name=f"{_safe_filename(data.company.name)}_{date.today():%Y%m%d}.json",
        mime="application/json",
    )

    uploaded_json = st.file_uploader("Import data (JSON)", type=["json"])
    if uploaded_json is not None and st.button("Import", type="primary"):
        imported = import_from_json(uploaded_json.read().decode("utf-8"))
        if imported is None:
            st.error("The file is not valid MarginSight data.")
        else:
            _set_data(imported)
            st.success(f"Imported {len(imported.periods)} period(s).")
            st.rerun()

    if st.button("Reset all data"):
        _set_data(create_default_app_data())
        st.rerun()
