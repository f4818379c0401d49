"""
CASCADE - Table helpers for the instance and mappings pages.
"""

from typing import Dict, Sequence

import pandas as pd

from components.kpi_cards import to_dollar
from state.models import CohortRow, Mapping, NumericField
from utils.export import export_columns


def pivot_frame(list_data: Dict[str, Sequence[str]]) -> pd.DataFrame:
    """Side-by-side value lists; shorter columns are padded with ''."""
    if not list_data:
        return pd.DataFrame()
    height = max((len(values) for values in list_data.values()), default=0)
    return pd.DataFrame({
        column: list(values) + [""] * (height - len(values))
        for column, values in list_data.items()
    })


def numeric_frame(fields: Sequence[NumericField]) -> pd.DataFrame:
    """Amount totals shown as dollars, counts as-is."""
    rows = []
    for field in fields:
        row = field.to_dict()
        if field.type == "Amount":
            row["total"] = to_dollar(field.total)
        rows.append(row)
    return pd.DataFrame(rows)


def cohorts_frame(rows: Sequence[CohortRow]) -> pd.DataFrame:
    return pd.DataFrame([r.to_dict() for r in rows])


def mapping_editor_frame(mapping: Mapping) -> pd.DataFrame:
    """Rows in export order; only Waterfall_Group is meant to be edited."""
    df = pd.DataFrame(list(mapping.data))
    columns = [c for c in export_columns(mapping.keyword) if c in df.columns]
    return df[columns] if columns else df


def changed_waterfall_groups(before: pd.DataFrame, after: pd.DataFrame):
    """Yield (row_index, new_value) for each edited Waterfall_Group cell."""
    if "Waterfall_Group" not in after.columns:
        return
    for i in range(min(len(before), len(after))):
        old, new = before["Waterfall_Group"].iloc[i], after["Waterfall_Group"].iloc[i]
        if pd.isna(old) and pd.isna(new):
            continue
        if old != new:
            yield i, (None if pd.isna(new) else new)
