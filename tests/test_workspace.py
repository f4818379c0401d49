"""
Workspace and Demo Data Tests
=============================
The generated demo database driven end to end through a wired workspace.
"""

import asyncio
import copy
import os

import pytest

from config.settings import DEFAULT_SETTINGS
from generators.generate_synthetic_data import generate_charges, load_into_duckdb
from state.models import Instance, LoadStatus
from state.workspace import build_workspace
from utils.notifications import ToastEvents


@pytest.fixture
def workspace(tmp_path):
    settings = copy.deepcopy(DEFAULT_SETTINGS)
    settings["local_sql"]["data_dir"] = str(tmp_path / "local")
    settings["cache"]["path"] = str(tmp_path / "cache" / "cache.duckdb")
    os.makedirs(settings["local_sql"]["data_dir"])
    load_into_duckdb(
        generate_charges(120, months=6),
        os.path.join(settings["local_sql"]["data_dir"], "Demo.duckdb"),
        "Charges",
    )
    ws = build_workspace(settings, toasts=ToastEvents())
    yield ws
    asyncio.run(ws.close())


class TestGeneratedData:

    def test_charge_frame_shape(self):
        df = generate_charges(40, months=3)
        for keyword in ("Procedure", "Provider", "Insurance", "Location"):
            assert f"{keyword}_Group" in df.columns
            assert f"{keyword}_Group_Final" in df.columns
        assert str(df["Final_Visit_Count"].dtype) == "Int64"
        assert df["DOS_Period"].isin(["2023-01", "2023-02", "2023-03"]).all()


class TestWorkspace:

    def test_offline_without_api(self, workspace):
        assert workspace.projects.api is None
        assert workspace.mappings.projects_api is None

    def test_full_table_round_trip(self, workspace):
        instance = Instance("localhost", "Demo", "Charges")

        view = asyncio.run(workspace.instance.set_instance(instance))
        assert workspace.instance.state.status == LoadStatus.READY
        assert view.keywords == ("Procedure", "Provider", "Insurance", "Location")
        assert all(c.count > 0 for c in view.waterfall_cohorts_table_data)

        asyncio.run(workspace.mappings.set_mappings_state(view))
        assert [m.tab_name for m in workspace.mappings.state.mappings] == [
            "Insurance", "Location", "Procedure", "Provider",
        ]
        view = workspace.instance.recompute_cohort_lists()
        assert set(view.waterfall_cohort_list_data["Insurance"]) <= {"Commercial", "Medicaid", "Medicare", "Self Pay"}

    def test_payer_slice_has_one_keyword(self, workspace):
        view = asyncio.run(workspace.instance.set_instance(Instance("localhost", "Demo", "Charges_Payer")))
        assert view.keywords == ("Insurance",)
