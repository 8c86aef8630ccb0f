"""
Plotly figures for the digest summaries and a static HTML dashboard writer.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
import plotly.graph_objects as go

from .grouping import IOB_BANDS, TIME_OF_DAY_BINS
from .pipeline import (
    AGP_FILE, CORRECTION_FILE, HOURLY_RISK_FILE, METRICS_FILE, METRICS_PREV_FILE,
)

TARGET_LOW = 70
TARGET_HIGH = 180

RANGE_COLORS = {
    "Very low (<54)": "#8E44AD",
    "Low (54-69)": "#E74C3C",
    "In range (70-180)": "#27AE60",
    "High (181-250)": "#F39C12",
    "Very high (>250)": "#D35400",
}


def _bin_times(step_minutes: int, count: int) -> List[str]:
    return [f"{(i * step_minutes) // 60:02d}:{(i * step_minutes) % 60:02d}" for i in range(count)]


def create_glucose_plot(readings_df: pd.DataFrame, title: str = "CGM Glucose") -> go.Figure:
    """Glucose trace over local time with the 70-180 target lines."""
    fig = go.Figure()

    fig.add_trace(go.Scatter(
        x=readings_df["datetime_local"],
        y=readings_df["value"],
        mode="lines+markers",
        name="CGM Glucose",
        line=dict(color="#2E86AB", width=2),
        marker=dict(size=4),
        hovertemplate="<b>Time:</b> %{x|%m-%d %H:%M}<br><b>Glucose:</b> %{y:.0f} mg/dL<extra></extra>"
    ))

    for level in (TARGET_LOW, TARGET_HIGH):
        fig.add_shape(type="line", x0=0, x1=1, y0=level, y1=level,
                      line=dict(color="orange", width=1, dash="dot"),
                      xref="paper", yref="y")
        fig.add_annotation(x=0, y=level, text=str(level), showarrow=False,
                           xref="paper", font=dict(size=10, color="orange"), xanchor="right", xshift=-5)

    fig.update_layout(
        title=title,
        xaxis_title="Time (local)",
        yaxis_title="Glucose (mg/dL)",
        hovermode="x unified",
        height=450,
        showlegend=False,
    )
    return fig


def create_agp_plot(agp: Dict[str, Any]) -> go.Figure:
    """
    Ambulatory glucose profile: median line with 25-75% and 5-95% bands.

    Bins without data break the bands (None values are not connected).
    """
    step = agp.get("stepMin", 5)
    x = _bin_times(step, len(agp.get("p50", [])))
    fig = go.Figure()

    # Outer band first so the inner band draws over it
    fig.add_trace(go.Scatter(x=x, y=agp.get("p95"), mode="lines", line=dict(width=0),
                             showlegend=False, hoverinfo="skip"))
    fig.add_trace(go.Scatter(x=x, y=agp.get("p05"), mode="lines", line=dict(width=0),
                             fill="tonexty", fillcolor="rgba(231,76,60,0.12)", name="5-95%"))
    fig.add_trace(go.Scatter(x=x, y=agp.get("p75"), mode="lines", line=dict(width=0),
                             showlegend=False, hoverinfo="skip"))
    fig.add_trace(go.Scatter(x=x, y=agp.get("p25"), mode="lines", line=dict(width=0),
                             fill="tonexty", fillcolor="rgba(230,126,34,0.35)", name="25-75%"))
    fig.add_trace(go.Scatter(
        x=x, y=agp.get("p50"), mode="lines", name="Median",
        line=dict(color="#2C3E50", width=2),
        hovertemplate="<b>%{x}</b><br><b>Median:</b> %{y:.0f} mg/dL<extra></extra>"
    ))

    fig.add_hrect(y0=TARGET_LOW, y1=TARGET_HIGH, fillcolor="rgba(39,174,96,0.08)", line_width=0)

    fig.update_layout(
        title=f"AGP ({agp.get('tz', '')})",
        xaxis_title="Time of day",
        yaxis_title="Glucose (mg/dL)",
        height=420,
        hovermode="x unified",
        xaxis=dict(nticks=13),
    )
    return fig


def create_tir_donut(metrics: Dict[str, Any]) -> go.Figure:
    """Time-in-range split from a metrics digest's range counts."""
    tir = metrics.get("tir", {})
    very_low = tir.get("veryLow", 0)
    very_high = tir.get("veryHigh", 0)
    counts = [
        very_low,
        tir.get("low", 0) - very_low,
        tir.get("inRange", 0),
        tir.get("high", 0) - very_high,
        very_high,
    ]
    labels = list(RANGE_COLORS)

    fig = go.Figure(go.Pie(
        labels=labels,
        values=counts,
        hole=0.55,
        sort=False,
        marker=dict(colors=[RANGE_COLORS[label] for label in labels]),
        hovertemplate="<b>%{label}</b><br>%{value} readings (%{percent})<extra></extra>"
    ))
    fig.update_layout(title="Time in range", height=360)
    return fig


def create_hourly_risk_plot(hourly: Dict[str, Any]) -> go.Figure:
    """Stacked LBGI/HBGI bars per local hour."""
    hours = hourly.get("hours", [])
    x = [h["hour"] for h in hours]

    fig = go.Figure()
    fig.add_trace(go.Bar(x=x, y=[h["LBGI"] for h in hours], name="LBGI (hypo)", marker_color="#8E44AD"))
    fig.add_trace(go.Bar(x=x, y=[h["HBGI"] for h in hours], name="HBGI (hyper)", marker_color="#E67E22"))
    fig.update_layout(
        barmode="stack",
        title="Glycemic risk by hour",
        xaxis_title="Hour (local)",
        yaxis_title="Risk index",
        xaxis=dict(dtick=2),
        height=360,
    )
    return fig


def create_gri_zone_plot(metrics: Dict[str, Any], previous: Optional[Dict[str, Any]] = None) -> go.Figure:
    """
    Current LBGI/HBGI point on banded risk zones, with the prior window when given.
    """
    risk = metrics.get("risk", {})
    fig = go.Figure()

    zones = [(40, "#FEF0EF"), (20, "#FDEBD0"), (10, "#EAF2F8"), (5, "#EAFAF1")]
    for top, color in zones:
        fig.add_shape(type="rect", x0=0, x1=10, y0=0, y1=top, fillcolor=color, line_width=0, layer="below")

    if previous and previous.get("risk", {}).get("GRI") is not None:
        prev = previous["risk"]
        fig.add_trace(go.Scatter(
            x=[prev.get("LBGI")], y=[prev.get("HBGI")], mode="markers", name="Previous",
            marker=dict(size=10, color="#95A5A6", symbol="circle-open", line=dict(width=2))
        ))
    fig.add_trace(go.Scatter(
        x=[risk.get("LBGI")], y=[risk.get("HBGI")], mode="markers", name="Current",
        marker=dict(size=12, color="#2C3E50", line=dict(color="white", width=1.5)),
        hovertemplate="<b>LBGI:</b> %{x:.2f}<br><b>HBGI:</b> %{y:.2f}<extra></extra>"
    ))
    fig.update_layout(
        title="GRI components" if risk.get("GRI") is None else f"GRI components (GRI {risk['GRI']})",
        xaxis=dict(title="Hypo component (LBGI)", range=[0, 10]),
        yaxis=dict(title="Hyper component (HBGI)", range=[0, 40]),
        height=360,
    )
    return fig


def create_correction_heatmap(correction_context: Dict[str, Any], metric: str = "medDrop2h") -> go.Figure:
    """
    Median correction drop per time-of-day bin and IOB band.

    Cell text shows n and the ineffective share.
    """
    dayparts = [label for label, _, _ in TIME_OF_DAY_BINS]
    by_key = {(g["timeOfDay"], g["iobBand"]): g for g in correction_context.get("groups", [])}

    z, text = [], []
    for band in IOB_BANDS:
        row_z, row_text = [], []
        for daypart in dayparts:
            group = by_key.get((daypart, band))
            if group is None:
                row_z.append(None)
                row_text.append("")
            else:
                row_z.append(group.get(metric))
                row_text.append(f"n={group['n']} | {group['pctIneffective2h']}%")
        z.append(row_z)
        text.append(row_text)

    fig = go.Figure(go.Heatmap(
        z=z,
        x=dayparts,
        y=IOB_BANDS,
        text=text,
        texttemplate="%{text}",
        colorscale="RdYlGn",
        colorbar=dict(title="mg/dL"),
        hovertemplate="<b>%{x}</b> / %{y}<br>Median drop: %{z:.0f} mg/dL<br>%{text}<extra></extra>"
    ))
    fig.update_layout(
        title=f"Corrections: {metric} by daypart and IOB band",
        height=380,
    )
    return fig


def dashboard_figures(outputs: Dict[str, Dict[str, Any]]) -> List[go.Figure]:
    """Figures for whichever summaries are present in a run_all result."""
    figures = []
    metrics = outputs.get(METRICS_FILE)
    if metrics:
        figures.append(create_tir_donut(metrics))
        figures.append(create_gri_zone_plot(metrics, outputs.get(METRICS_PREV_FILE)))
    if outputs.get(AGP_FILE):
        figures.append(create_agp_plot(outputs[AGP_FILE]))
    if outputs.get(HOURLY_RISK_FILE):
        figures.append(create_hourly_risk_plot(outputs[HOURLY_RISK_FILE]))
    if outputs.get(CORRECTION_FILE, {}).get("groups"):
        figures.append(create_correction_heatmap(outputs[CORRECTION_FILE], "medDrop2h"))
        figures.append(create_correction_heatmap(outputs[CORRECTION_FILE], "medDrop3h"))
    return figures


def write_dashboard_html(outputs: Dict[str, Dict[str, Any]], path: Path, title: str = "Loop Digest") -> Path:
    """Write a single static HTML page with every dashboard figure."""
    sections = [fig.to_html(full_html=False, include_plotlyjs="cdn" if i == 0 else False)
                for i, fig in enumerate(dashboard_figures(outputs))]
    html = (
        "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{title}</title>\n</head>\n<body>\n<h1>{title}</h1>\n"
        + "\n".join(f"<div class=\"card\">{s}</div>" for s in sections)
        + "\n</body>\n</html>\n"
    )
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(html, encoding="utf-8")
    return path
