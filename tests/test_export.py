"""
Export and Table Helper Tests
=============================
"""

import pandas as pd

from components.kpi_cards import to_dollar
from components.tables import changed_waterfall_groups, mapping_editor_frame, numeric_frame, pivot_frame
from state.models import Mapping, NumericField
from utils.export import export_file_name, export_mapping_to_excel, mapping_frame

ROWS = (
    {
        "Procedure_Group_Final": "E&M", "Procedure_Group": "99213",
        "Total_Charge_Amount": 300.0, "Total_Payment_Amount": 60.0,
        "Earliest_Min_DOS": "2024-01", "Latest_Max_DOS": "2024-01",
        "Waterfall_Group": "Office Visits",
    },
    {
        "Procedure_Group_Final": "Radiology", "Procedure_Group": "71046",
        "Total_Charge_Amount": 300.0, "Total_Payment_Amount": 150.0,
        "Earliest_Min_DOS": "2024-02", "Latest_Max_DOS": "2024-02",
        "Waterfall_Group": "Radiology",
    },
)


class TestExcelExport:

    def test_column_order(self):
        df = mapping_frame(Mapping("Procedure", "Procedure", ROWS))
        assert list(df.columns) == [
            "Waterfall_Group", "Procedure_Group_Final", "Procedure_Group",
            "Total_Charge_Amount", "Total_Payment_Amount", "Earliest_Min_DOS", "Latest_Max_DOS",
        ]

    def test_written_workbook(self, tmp_path):
        mapping = Mapping("Procedure", "Procedure", ROWS)
        target = tmp_path / export_file_name(mapping)

        export_mapping_to_excel(mapping, str(target))

        assert target.name == "Procedure_Mapping.xlsx"
        df = pd.read_excel(target, sheet_name="Procedure")
        assert df["Waterfall_Group"].tolist() == ["Office Visits", "Radiology"]
        assert df.columns[0] == "Waterfall_Group"


class TestTableHelpers:

    def test_pivot_pads_short_columns(self):
        df = pivot_frame({"DOS": ("2024-01", "2024-02", "2024-03"), "Procedure": ("E&M",), "Insurance": ()})
        assert list(df.columns) == ["DOS", "Procedure", "Insurance"]
        assert df["Procedure"].tolist() == ["E&M", "", ""]
        assert df["Insurance"].tolist() == ["", "", ""]

    def test_pivot_of_nothing(self):
        assert pivot_frame({}).empty

    def test_changed_waterfall_groups(self):
        before = mapping_editor_frame(Mapping("Procedure", "Procedure", ROWS))
        after = before.copy()
        after.loc[1, "Waterfall_Group"] = "Imaging"
        assert list(changed_waterfall_groups(before, after)) == [(1, "Imaging")]

    def test_numeric_frame_formats_amounts(self):
        df = numeric_frame([
            NumericField("Charge", "Amount", 650.0),
            NumericField("Visit", "Count", 4),
        ])
        assert df["total"].tolist() == ["$650.00", 4]
        assert df["fieldName"].tolist() == ["Charge", "Visit"]

    def test_to_dollar(self):
        assert to_dollar(None) == "-"
        assert to_dollar(0) == "-"
        assert to_dollar("12.5") == "$12.50"
