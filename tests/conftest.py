"""Shared fixtures: a small hardware sales dataset across two fiscal years.

Expected FY2021 values (2020-09-01 to 2021-08-31):

    record                           gross   net_invoice  net_sales  post deduction
    2020-09-01|A0118150101|90002002  200.00  180.00       126.00     0.25 + 0.05
    2020-10-01|A0118150101|90002008  100.00   80.00        64.00     0.10 + 0.10
    2020-11-01|A0118150102|90002002   61.33   55.20        55.20     missing
    2021-01-01|A9999999999|90002002  (no gross price, excluded)
    2021-08-01|A0118150102|70002017   46.00   43.70        32.78     0.20 + 0.05

FY2022 holds one record, 2021-09-01|A0118150101|90002002 (net_sales 34.83).
"""

from pathlib import Path

import pandas as pd
import pytest

from netsales_core.config import (
    CUSTOMER_FILE,
    GROSS_PRICE_FILE,
    POST_INVOICE_FILE,
    PRE_INVOICE_FILE,
    PRODUCT_FILE,
    SALES_FILE,
    DataPaths,
)
from netsales_core.store import FactSnapshot, snapshot_from_frames


@pytest.fixture
def sales_df() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "date": [
                "2020-09-01",
                "2020-10-01",
                "2020-11-01",
                "2021-01-01",
                "2021-08-01",
                "2021-09-01",
            ],
            "product_code": [
                "A0118150101",
                "A0118150101",
                "A0118150102",
                "A9999999999",
                "A0118150102",
                "A0118150101",
            ],
            "customer_code": [
                "90002002",
                "90002008",
                "90002002",
                "90002002",
                "70002017",
                "90002002",
            ],
            "sold_quantity": [10, 5, 4, 1, 3, 2],
        }
    )


@pytest.fixture
def prices_df() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "product_code": ["A0118150101", "A0118150101", "A0118150102"],
            "fiscal_year": [2021, 2022, 2021],
            "gross_price": ["20.00", "21.50", "15.3333"],
        }
    )


@pytest.fixture
def pre_invoice_df() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "customer_code": ["90002002", "90002002", "90002008", "70002017"],
            "fiscal_year": [2021, 2022, 2021, 2021],
            "pre_invoice_discount_pct": ["0.10", "0.10", "0.20", "0.05"],
        }
    )


@pytest.fixture
def post_invoice_df() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "customer_code": ["90002002", "90002008", "70002017", "90002002"],
            "product_code": ["A0118150101", "A0118150101", "A0118150102", "A0118150101"],
            "date": ["2020-09-01", "2020-10-01", "2021-08-01", "2021-09-01"],
            "discounts_pct": ["0.25", "0.10", "0.20", "0.10"],
            "other_deductions_pct": ["0.05", "0.10", "0.05", "0.00"],
        }
    )


@pytest.fixture
def customers_df() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "customer_code": ["90002002", "90002008", "70002017"],
            "customer": ["Atliq Exclusive", "Amazon", "Atliq e Store"],
            "platform": ["Brick & Mortar", "E-Commerce", "E-Commerce"],
            "channel": ["Direct", "Retailer", "Direct"],
            "market": ["India", "India", "USA"],
            "region": ["APAC", "APAC", "NA"],
        }
    )


@pytest.fixture
def products_df() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "product_code": ["A0118150101", "A0118150102"],
            "division": ["P & A", "P & A"],
            "segment": ["Peripherals", "Peripherals"],
            "category": ["Internal HDD", "Internal HDD"],
            "product": ["AQ Dracula HDD 3.5 Inch SATA", "AQ Dracula HDD"],
            "variant": ["Standard", "Plus"],
        }
    )


@pytest.fixture
def raw_tables(
    sales_df: pd.DataFrame,
    prices_df: pd.DataFrame,
    pre_invoice_df: pd.DataFrame,
    post_invoice_df: pd.DataFrame,
    customers_df: pd.DataFrame,
    products_df: pd.DataFrame,
) -> dict[str, pd.DataFrame]:
    return {
        SALES_FILE: sales_df,
        GROSS_PRICE_FILE: prices_df,
        PRE_INVOICE_FILE: pre_invoice_df,
        POST_INVOICE_FILE: post_invoice_df,
        CUSTOMER_FILE: customers_df,
        PRODUCT_FILE: products_df,
    }


@pytest.fixture
def data_paths(tmp_path: Path, raw_tables: dict[str, pd.DataFrame]) -> DataPaths:
    """DataPaths whose bronze layer holds the fixture tables as CSV."""
    paths = DataPaths.from_root(tmp_path / "data")
    paths.raw.mkdir(parents=True)
    for name, df in raw_tables.items():
        df.to_csv(paths.raw_table(name), index=False, encoding="utf-8")
    return paths


@pytest.fixture
def snapshot(
    sales_df: pd.DataFrame,
    prices_df: pd.DataFrame,
    pre_invoice_df: pd.DataFrame,
    post_invoice_df: pd.DataFrame,
    customers_df: pd.DataFrame,
    products_df: pd.DataFrame,
) -> FactSnapshot:
    return snapshot_from_frames(
        sales_df, prices_df, pre_invoice_df, post_invoice_df, customers_df, products_df
    )
