"""
CASCADE - Synthetic billing data generator.
Builds a local DuckDB database with healthcare charge lines shaped like a revenue-cycle
waterfall source table:
- Charge / payment amounts and units
- Final charge / visit count flags
- DOS and posting periods
- <Keyword>_Group / <Keyword>_Group_Final pairs for Procedure, Provider, Insurance, Location

Run from the project root: python -m generators.generate_synthetic_data --rows 5000
"""

import argparse
import os
from datetime import date

import duckdb
import numpy as np
import pandas as pd
from faker import Faker

from config.settings import load_settings, resolve_path

fake = Faker()
Faker.seed(42)
np.random.seed(42)

# ─── Configuration ───────────────────────────────────────────────────────────

SETTINGS = load_settings()
DATA_DIR = resolve_path(SETTINGS["local_sql"]["data_dir"])
DATABASE = SETTINGS["local_sql"]["demo_database"]
TABLE = SETTINGS["local_sql"]["demo_table"]

# CPT-style procedure groups rolled up to service lines
PROCEDURES = {
    "Evaluation & Management": [
        ("99203", "New patient visit, low"), ("99213", "Established visit, low"),
        ("99214", "Established visit, moderate"), ("99215", "Established visit, high"),
    ],
    "Radiology": [
        ("71046", "Chest X-ray 2 views"), ("70450", "CT head w/o contrast"),
        ("72148", "MRI lumbar spine"), ("76700", "Abdominal ultrasound"),
    ],
    "Laboratory": [
        ("80053", "Comprehensive metabolic panel"), ("85025", "CBC w/ differential"),
        ("83036", "Hemoglobin A1C"), ("81001", "Urinalysis"),
    ],
    "Surgery": [
        ("29881", "Knee arthroscopy"), ("47562", "Laparoscopic cholecystectomy"),
        ("66984", "Cataract removal"), ("45378", "Colonoscopy diagnostic"),
    ],
}

SPECIALTIES = ["Family Medicine", "Internal Medicine", "Orthopedics", "Radiology", "Cardiology", "General Surgery"]

PAYERS = {
    "Commercial": ["Aetna PPO", "BCBS HMO", "Cigna Open Access", "UnitedHealthcare Choice"],
    "Medicare": ["Medicare Part B", "Medicare Advantage - Humana", "Medicare Advantage - Aetna"],
    "Medicaid": ["State Medicaid", "Medicaid Managed Care"],
    "Self Pay": ["Self Pay", "Charity Care"],
}
PAYER_WEIGHTS = [0.45, 0.3, 0.15, 0.1]
# average share of charges collected
PAYER_YIELD = {"Commercial": 0.55, "Medicare": 0.38, "Medicaid": 0.25, "Self Pay": 0.12}

REGIONS = ["North", "South", "East", "West"]

PROCEDURE_CHARGE = {
    "Evaluation & Management": (90, 350),
    "Radiology": (120, 2400),
    "Laboratory": (15, 180),
    "Surgery": (1800, 14000),
}


def month_periods(start: date, months: int):
    periods = []
    year, month = start.year, start.month
    for _ in range(months):
        periods.append(f"{year}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return periods


def generate_providers(n=24):
    return [
        {"name": f"Dr. {fake.last_name()}, {fake.first_name()[0]}.", "specialty": SPECIALTIES[i % len(SPECIALTIES)]}
        for i in range(n)
    ]


def generate_locations(n=10):
    return [
        {"name": f"{fake.city()} Clinic", "region": REGIONS[i % len(REGIONS)]}
        for i in range(n)
    ]


def generate_charges(n=5000, months=18, start=date(2023, 1, 1)):
    """Generate charge lines. Roughly one visit per two charges."""
    providers = generate_providers()
    locations = generate_locations()
    periods = month_periods(start, months)
    payer_classes = list(PAYERS)

    rows = []
    for i in range(n):
        service_line = str(np.random.choice(list(PROCEDURES)))
        code, desc = PROCEDURES[service_line][np.random.randint(len(PROCEDURES[service_line]))]
        provider = providers[np.random.randint(len(providers))]
        location = locations[np.random.randint(len(locations))]
        payer_class = str(np.random.choice(payer_classes, p=PAYER_WEIGHTS))
        plan = PAYERS[payer_class][np.random.randint(len(PAYERS[payer_class]))]

        dos_index = np.random.randint(len(periods))
        # posting lags service by 0-2 months
        posting_index = min(dos_index + np.random.randint(0, 3), len(periods) - 1)

        low, high = PROCEDURE_CHARGE[service_line]
        units = 1 if service_line != "Laboratory" else int(np.random.randint(1, 4))
        charge = round(float(np.random.uniform(low, high)) * units, 2)
        paid = np.random.random() < 0.85
        payment = round(charge * PAYER_YIELD[payer_class] * float(np.random.uniform(0.8, 1.2)), 2) if paid else 0.0
        new_visit = i % 2 == 0

        rows.append({
            "Charge_Id": f"CHG-{i+1:07d}",
            "Charge_Amount": charge,
            "Payment_Amount": payment,
            "Unit": units,
            "Final_Charge_Count": 1,
            "Final_Charge_Count_w_Payment": 1 if paid else None,
            "Final_Visit_Count": 1 if new_visit else None,
            "Final_Visit_Count_w_Payment": 1 if new_visit and paid else None,
            "DOS_Period": periods[dos_index],
            "Posting_Period": periods[posting_index],
            "Procedure_Group": f"{code} - {desc}",
            "Procedure_Group_Final": service_line,
            "Provider_Group": provider["name"],
            "Provider_Group_Final": provider["specialty"],
            "Insurance_Group": plan,
            "Insurance_Group_Final": payer_class,
            "Location_Group": location["name"],
            "Location_Group_Final": location["region"],
        })

    df = pd.DataFrame(rows)
    for col in ["Final_Charge_Count", "Final_Charge_Count_w_Payment", "Final_Visit_Count", "Final_Visit_Count_w_Payment"]:
        df[col] = df[col].astype("Int64")
    return df


def load_into_duckdb(charges_df: pd.DataFrame, db_path: str, table: str):
    """Write the charge table plus a payer-only slice used to demo partial keyword coverage."""
    if os.path.exists(db_path):
        os.remove(db_path)

    con = duckdb.connect(db_path)
    try:
        con.register("charges_df", charges_df)
        con.execute(f'CREATE TABLE "{table}" AS SELECT * FROM charges_df')
        print(f"  ✓ Created table '{table}' with {len(charges_df):,} rows")

        payer_columns = [c for c in charges_df.columns if not c.startswith(("Provider_", "Location_", "Procedure_"))]
        select = ", ".join(f'"{c}"' for c in payer_columns)
        con.execute(f'CREATE TABLE "{table}_Payer" AS SELECT {select} FROM charges_df')
        print(f"  ✓ Created table '{table}_Payer' (Insurance keyword only)")
        con.unregister("charges_df")
    finally:
        con.close()


def main(data_dir: str = None, database: str = None, rows: int = 5000) -> str:
    """Generate the demo database and return its path."""
    data_dir = data_dir or DATA_DIR
    database = database or DATABASE
    os.makedirs(data_dir, exist_ok=True)
    db_path = os.path.join(data_dir, f"{database}.duckdb")

    print("🏥 CASCADE - Generating synthetic billing data\n")
    print("1. Generating charge lines...")
    charges_df = generate_charges(rows)
    print(f"   {len(charges_df):,} charges")

    print("\n2. Loading into DuckDB...")
    load_into_duckdb(charges_df, db_path, TABLE)

    print("\n✅ Data generation complete!")
    print(f"   Database: {db_path}")
    return db_path


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate the CASCADE demo billing database")
    parser.add_argument("--data-dir", default=None)
    parser.add_argument("--database", default=None)
    parser.add_argument("--rows", type=int, default=5000)
    args = parser.parse_args()
    main(args.data_dir, args.database, args.rows)
