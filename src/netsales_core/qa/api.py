"""Public API for the net sales QA pass.

This module runs in-memory checks over a net sales fact without reading or
writing files.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import pandas as pd

from netsales_core.exceptions import DataQualityError
from netsales_core.sales.cascade import invariant_violations

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = [
    "record_id",
    "date",
    "customer_code",
    "product_code",
    "fiscal_year",
    "gross_price_total",
    "net_invoice_sales",
    "net_sales",
    "post_invoice_discount_pct",
    "deduction_missing",
]

KEY_COLUMNS = ["record_id", "date", "customer_code", "product_code", "fiscal_year"]


@dataclass
class NetSalesQAResult:
    """Result of the net sales QA pass.

    Attributes:
        summary: Dictionary with summary statistics and counts.
        duplicate_records: Rows sharing a record_id, or None if none found.
        invariant_violations: Rows breaking
            ``0 <= net_sales <= net_invoice_sales <= gross_price_total``, or None.
        excessive_deductions: Rows whose post-invoice percentage exceeds 1, or None.
        missing_deductions: Rows without a post-invoice deduction, or None.
    """

    summary: dict
    duplicate_records: pd.DataFrame | None
    invariant_violations: pd.DataFrame | None
    excessive_deductions: pd.DataFrame | None
    missing_deductions: pd.DataFrame | None

    @property
    def passed(self) -> bool:
        return not (
            self.summary["schema_errors"]
            or self.summary["duplicate_records_count"]
            or self.summary["invariant_violations_count"]
        )


def _none_if_empty(df: pd.DataFrame) -> Optional[pd.DataFrame]:
    return None if df.empty else df


def run_net_sales_qa(net_df: pd.DataFrame) -> NetSalesQAResult:
    """Run the QA checks over a net sales fact.

    This function:
    - does NOT read or write any files,
    - does NOT print (logging only).

    Args:
        net_df: Net sales fact, typically the output of ``sales.core.fetch``.

    Returns:
        NetSalesQAResult with a summary and the offending rows per check.

    Raises:
        DataQualityError: If required columns are missing.

    """
    missing_cols = [col for col in REQUIRED_COLUMNS if col not in net_df.columns]
    if missing_cols:
        raise DataQualityError(
            f"Missing required columns in net_df: {missing_cols}. Required: {REQUIRED_COLUMNS}"
        )
    df = net_df.copy()
    logger.info("Running net sales QA for %d rows", len(df))

    null_errors = []
    for col in KEY_COLUMNS + ["net_sales"]:
        null_count = int(df[col].isna().sum())
        if null_count > 0:
            null_errors.append(f"{col}: {null_count} nulls")

    duplicates = df[df.duplicated("record_id", keep=False)]
    violations = invariant_violations(df.dropna(subset=["net_sales"]))
    above_one = df["post_invoice_discount_pct"].map(lambda pct: not pd.isna(pct) and pct > Decimal(1))
    excessive = df[above_one.astype(bool)]
    no_deduction = df[df["deduction_missing"].astype(bool)]

    summary = {
        "total_rows": len(df),
        "total_customers": int(df["customer_code"].nunique()),
        "fiscal_years": sorted(int(fy) for fy in df["fiscal_year"].dropna().unique()),
        "min_date": df["date"].min().isoformat() if not df.empty else None,
        "max_date": df["date"].max().isoformat() if not df.empty else None,
        "duplicate_records_count": len(duplicates),
        "invariant_violations_count": len(violations),
        "excessive_deductions_count": len(excessive),
        "missing_deductions_count": len(no_deduction),
        "schema_errors": null_errors,
    }

    logger.info(
        "QA complete: %d duplicates, %d invariant violations, %d post-invoice sums above 1, "
        "%d records without post-invoice deduction",
        summary["duplicate_records_count"],
        summary["invariant_violations_count"],
        summary["excessive_deductions_count"],
        summary["missing_deductions_count"],
    )

    return NetSalesQAResult(
        summary=summary,
        duplicate_records=_none_if_empty(duplicates),
        invariant_violations=_none_if_empty(violations),
        excessive_deductions=_none_if_empty(excessive),
        missing_deductions=_none_if_empty(no_deduction),
    )
