"""
Loop Digest Dashboard
A Streamlit application for browsing glucose, meal timing, correction and loop reliability summaries.
"""

from pathlib import Path

import pandas as pd
import streamlit as st

from glucose_digest import (
    AnalysisThresholds,
    compare_digests,
    create_agp_plot,
    create_correction_heatmap,
    create_glucose_plot,
    create_gri_zone_plot,
    create_hourly_risk_plot,
    create_tir_donut,
    latest_snapshot,
    readings_frame,
    run_all,
    DATA_PATH,
    LOCAL_TZ,
)
from glucose_digest.pipeline import (
    AGP_FILE, BASIC_FILE, CONSTRAINTS_FILE, CORRECTION_FILE, HOURLY_RISK_FILE, MEAL_TIMING_FILE,
    METRICS_FILE, METRICS_PREV_FILE, MINI_ALERT_FILE, OVERLAY_FILE, REVIEW_FILE, SCENARIO_FILE,
)


# =============================================================================
# SECTIONS
# =============================================================================

def _fmt(value, suffix: str = "") -> str:
    return "n/a" if value is None else f"{value}{suffix}"


def show_kpis(outputs: dict):
    """KPI strip with deltas against the previous snapshot window."""
    kpis = compare_digests(outputs[METRICS_FILE], outputs.get(METRICS_PREV_FILE))
    cols = st.columns(len(kpis))
    for col, (name, kpi) in zip(cols, kpis.items()):
        suffix = "%" if name in ("TIR", "TBR", "TAR", "CV") else ""
        delta = kpi["delta"]
        # Lower is better for everything except TIR
        inverse = name != "TIR"
        with col:
            st.metric(
                name,
                _fmt(kpi["value"], suffix),
                delta=None if delta is None else f"{delta:+.1f}",
                delta_color="inverse" if inverse else "normal",
            )


def show_mini_alert(alert: dict):
    last24 = alert["last24"]
    headline = alert["headline"]
    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Lows <70 (24h)", last24["lt70"])
    with col2:
        st.metric("Lows <54 (24h)", last24["lt54"])
    with col3:
        st.metric("Pred ≤ suspend (24h)", f"{last24['predLeSuspendPct']}%")
    with col4:
        st.metric(f"TIR today ({headline['day']})", f"{headline['tir_70_180']}%")


def show_cards(cards: list, empty_message: str):
    if not cards:
        st.info(empty_message)
        return
    for card in cards:
        with st.expander(f"{card['title']} ({card['confidence']} confidence)"):
            st.write(f"**Levers:** {', '.join(card['levers'])} · **Direction:** {card['direction']}")
            for line in card["evidence"]:
                st.write(f"- {line}")
            for note in card.get("gatingNotes", []):
                st.warning(note)
            st.write(f"**Confounders:** {', '.join(card['confounders'])}")
            safety = card["safety"]
            st.write(f"**Safety:** {' '.join(safety) if isinstance(safety, list) else safety}")


def meal_timing_frame(section: dict) -> pd.DataFrame:
    rows = [{"Lead bin": lead_bin, **summary} for lead_bin, summary in section.items()]
    return pd.DataFrame(rows)


# =============================================================================
# MAIN APP
# =============================================================================

def main():
    st.set_page_config(
        page_title="Loop Digest",
        page_icon="📊",
        layout="wide"
    )

    st.title("📊 Loop Digest")
    st.markdown("Time in range, meal timing, corrections and loop reliability from exported snapshots.")

    # Sidebar for controls
    st.sidebar.header("Data")
    data_dir = Path(st.sidebar.text_input("Data directory", value=str(DATA_PATH)))

    st.sidebar.header("Target Range")
    target_min = st.sidebar.number_input("Low (mg/dL)", min_value=50, max_value=100, value=70)
    target_max = st.sidebar.number_input("High (mg/dL)", min_value=120, max_value=250, value=180)
    thresholds = AnalysisThresholds(low_mg_dl=float(target_min), high_mg_dl=float(target_max))

    snapshot = latest_snapshot(data_dir)
    if snapshot is None:
        st.warning(f"No ns_entries_* snapshot found in {data_dir}")
        return
    previous = latest_snapshot(data_dir, previous=True)
    outputs = run_all(snapshot, previous, thresholds)

    basic = outputs[BASIC_FILE]["entries"]
    st.caption(
        f"Data window: {basic.get('earliest', 'n/a')} → {basic.get('latest', 'n/a')} · "
        f"{basic.get('durationDays', 'n/a')} days · coverage {basic.get('coverage5min', 'n/a')}"
    )

    show_kpis(outputs)
    show_mini_alert(outputs[MINI_ALERT_FILE])

    tab_overview, tab_meals, tab_corrections, tab_loop, tab_cards = st.tabs(
        ["Overview", "Meal timing", "Corrections", "Loop", "Hypotheses"]
    )

    with tab_overview:
        col1, col2 = st.columns([3, 1])
        with col1:
            st.plotly_chart(create_agp_plot(outputs[AGP_FILE]), use_container_width=True)
        with col2:
            st.plotly_chart(create_tir_donut(outputs[METRICS_FILE]), use_container_width=True)

        col1, col2 = st.columns(2)
        with col1:
            st.plotly_chart(create_hourly_risk_plot(outputs[HOURLY_RISK_FILE]), use_container_width=True)
        with col2:
            st.plotly_chart(create_gri_zone_plot(outputs[METRICS_FILE], outputs.get(METRICS_PREV_FILE)),
                            use_container_width=True)

        df = readings_frame(snapshot.readings, LOCAL_TZ)
        days = sorted(df["date"].unique(), reverse=True)
        selected_day = st.selectbox("Day", days)
        day_df = df[df["date"] == selected_day]
        if len(day_df) > 0:
            st.plotly_chart(create_glucose_plot(day_df, title=f"CGM Glucose {selected_day}"),
                            use_container_width=True)

    with tab_meals:
        meal_timing = outputs[MEAL_TIMING_FILE]
        st.metric("Meals analyzed", meal_timing["mealCount"])
        for section in ["overall", "breakfast", "lunch", "dinner", "schoolBreakfast", "schoolLunch"]:
            st.subheader(section)
            if meal_timing[section]:
                st.dataframe(meal_timing_frame(meal_timing[section]), use_container_width=True, hide_index=True)
            else:
                st.info(f"No {section} meals")

    with tab_corrections:
        context = outputs[CORRECTION_FILE]
        st.caption(context["meta"]["window"])
        if context["groups"]:
            col1, col2 = st.columns(2)
            with col1:
                st.plotly_chart(create_correction_heatmap(context, "medDrop2h"), use_container_width=True)
            with col2:
                st.plotly_chart(create_correction_heatmap(context, "medDrop3h"), use_container_width=True)
            st.dataframe(pd.DataFrame(context["groups"]), use_container_width=True, hide_index=True)
        else:
            st.info("No clean corrections in this window")

    with tab_loop:
        constraints = outputs[CONSTRAINTS_FILE]
        col1, col2, col3, col4 = st.columns(4)
        with col1:
            st.metric("Cycles", constraints["meta"]["totalCycles"])
        with col2:
            st.metric("Pred below suspend", f"{constraints['predictions']['pctPredBelowSuspend']}%")
        with col3:
            st.metric("At max basal", f"{constraints['basal']['pctAtMaxBasal']}%")
        with col4:
            st.metric("Cycles with auto bolus", f"{constraints['automaticBolus']['pctCyclesWithAB']}%")

        days = outputs[OVERLAY_FILE]["days"]
        if days:
            st.dataframe(pd.DataFrame(days), use_container_width=True, hide_index=True)

    with tab_cards:
        st.subheader("Review")
        show_cards(outputs[REVIEW_FILE]["cards"], "No hypotheses met their evidence thresholds")
        st.subheader("Scenarios")
        show_cards(outputs[SCENARIO_FILE]["cards"], "Not enough samples for scenario cards")


if __name__ == "__main__":
    main()
