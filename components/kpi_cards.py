"""
CASCADE - KPI metric cards for the numeric totals of an instance.
"""

from typing import Dict, List, Sequence

import streamlit as st

from state.models import NumericField


def render_kpi_row(kpis: List[Dict]) -> None:
    """
    Render a row of KPI cards.
    Each kpi dict: {"label": str, "value": str/number, "help": str (optional)}
    """
    cols = st.columns(len(kpis))
    for col, kpi in zip(cols, kpis):
        with col:
            col.metric(label=kpi["label"], value=kpi["value"], help=kpi.get("help"))


def format_currency(value):
    """Format number as currency."""
    if value >= 1_000_000_000:
        return f"${value/1e9:.1f}B"
    elif value >= 1_000_000:
        return f"${value/1e6:.1f}M"
    elif value >= 1_000:
        return f"${value/1e3:.1f}K"
    return f"${value:,.0f}"


def format_number(value):
    """Format as integer with commas."""
    return f"{int(value):,}"


def to_dollar(value) -> str:
    """'-' for empty values, otherwise a plain two-decimal dollar amount."""
    if not value:
        return "-"
    return f"${float(value):.2f}"


def numeric_kpis(fields: Sequence[NumericField]) -> List[Dict]:
    kpis = []
    for field in fields:
        total = field.total or 0
        value = format_currency(total) if field.type == "Amount" and field.field_name != "Unit" else format_number(total)
        kpis.append({"label": field.field_name, "value": value, "help": f"{field.type} total"})
    return kpis


def render_numeric_totals(fields: Sequence[NumericField]) -> None:
    """Amounts in one row, counts in the next."""
    kpis = numeric_kpis(fields)
    amounts = [k for k, f in zip(kpis, fields) if f.type == "Amount"]
    counts = [k for k, f in zip(kpis, fields) if f.type == "Count"]
    if amounts:
        render_kpi_row(amounts)
    if counts:
        render_kpi_row(counts)
