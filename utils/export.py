"""
CASCADE - Excel export of a mapping tab.
"""

import logging

import pandas as pd
from openpyxl.utils import get_column_letter

from state.models import Mapping
from utils.mapping_discovery import WATERFALL_GROUP
from utils.query_executor import group_aliases

logger = logging.getLogger(__name__)

TOTAL_COLUMNS = ["Total_Charge_Amount", "Total_Payment_Amount", "Earliest_Min_DOS", "Latest_Max_DOS"]


def export_columns(keyword: str):
    group, final = group_aliases(keyword)
    return [WATERFALL_GROUP, final, group] + TOTAL_COLUMNS


def mapping_frame(mapping: Mapping) -> pd.DataFrame:
    """DataFrame of a mapping tab in export column order."""
    columns = export_columns(mapping.keyword)
    df = pd.DataFrame(list(mapping.data))
    for col in columns:
        if col not in df.columns:
            df[col] = None
    return df[columns]


def export_file_name(mapping: Mapping) -> str:
    return f"{mapping.keyword}_Mapping.xlsx"


def export_mapping_to_excel(mapping: Mapping, target) -> None:
    """Write one sheet named after the keyword; `target` is a path or a binary buffer."""
    df = mapping_frame(mapping)
    with pd.ExcelWriter(target, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=mapping.keyword[:31], index=False)
        sheet = writer.sheets[mapping.keyword[:31]]
        for i, col in enumerate(df.columns, start=1):
            values = [str(v) for v in df[col].tolist() if v is not None]
            width = max([len(col)] + [len(v) for v in values])
            sheet.column_dimensions[get_column_letter(i)].width = width + 2
    logger.info("Exported %d %s mapping rows", len(df), mapping.keyword)
