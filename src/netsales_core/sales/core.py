"""Silver layer: the net sales fact (fact_net_sales).

This module runs the fiscal year annotation, enrichment and discount cascade
over a snapshot of raw facts, and provides fetch/load functions for the
persisted fact at sales record grain (one row per product/customer/month).

The computation is partitioned by fiscal year. Partitions share nothing, so
they may run on a thread pool; a cancellation event is checked between
partitions only, never in the middle of one.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

import pandas as pd

from netsales_core.exceptions import ETLError
from netsales_core.fiscal import annotate_fiscal_year, load_fiscal_year_map
from netsales_core.metadata import StageMetadata, range_key, read_metadata, should_run_stage, write_metadata
from netsales_core.models import (
    DUPLICATE_POST_INVOICE,
    DUPLICATE_PRE_INVOICE,
    DUPLICATE_PRICE,
    ExclusionReport,
    to_decimal,
)
from netsales_core.sales.aggregate import parse_keys
from netsales_core.sales.cascade import NET_SALES_COLUMNS, compute_net_sales, invariant_violations
from netsales_core.sales.enrich import enrich
from netsales_core.store import CsvFactStore, open_snapshot
from netsales_core.utils import write_csv_atomic

if TYPE_CHECKING:
    from netsales_core.config import DataPaths
    from netsales_core.store import FactSnapshot, FactStore

logger = logging.getLogger(__name__)

VERSION = "net_sales_v1"

DECIMAL_COLUMNS = [
    "gross_price",
    "gross_price_total",
    "pre_invoice_discount_pct",
    "discounts_pct",
    "other_deductions_pct",
    "post_invoice_discount_pct",
    "net_invoice_sales",
    "net_sales",
]

SORT_COLUMNS = ["date", "customer_code", "product_code"]

INTEGRITY_REASONS = {DUPLICATE_PRICE, DUPLICATE_PRE_INVOICE, DUPLICATE_POST_INVOICE}


@dataclass
class NetSalesResult:
    """Net sales fact plus everything that was left out or flagged.

    Attributes:
        net: One row per sales record that went through both discount stages.
        report: Every excluded record with its stage and reason.
        violations: Rows of ``net`` breaking the invariant chain.
    """

    net: pd.DataFrame
    report: ExclusionReport
    violations: pd.DataFrame


def _run_partition(
    fiscal_year: int,
    sales: pd.DataFrame,
    snapshot: FactSnapshot,
    strict: bool,
    cancel_event: threading.Event | None,
) -> NetSalesResult:
    if cancel_event is not None and cancel_event.is_set():
        raise ETLError(f"Net sales run cancelled before fiscal year {fiscal_year}")

    prices = snapshot.prices[snapshot.prices["fiscal_year"] == fiscal_year]
    pre_invoice = snapshot.pre_invoice[snapshot.pre_invoice["fiscal_year"] == fiscal_year]
    enriched = enrich(sales, prices, snapshot.customers, snapshot.products, strict=strict)
    cascade = compute_net_sales(enriched.enriched, pre_invoice, snapshot.post_invoice, strict=strict)

    report = ExclusionReport()
    report.extend(enriched.report)
    report.extend(cascade.report)
    logger.info(
        "FY%d: %d net sales record(s), %d excluded",
        fiscal_year,
        len(cascade.net),
        len(report),
    )
    return NetSalesResult(net=cascade.net, report=report, violations=cascade.violations)


def build_net_sales(
    snapshot: FactSnapshot,
    *,
    strict: bool = False,
    max_workers: int = 1,
    cancel_event: threading.Event | None = None,
    annotation: pd.Series | None = None,
) -> NetSalesResult:
    """Compute the net sales fact from a snapshot of raw facts.

    Args:
        snapshot: Raw facts read by :func:`netsales_core.store.open_snapshot`.
        strict: Raise DataIntegrityError on the first ambiguous join instead
            of reporting the affected records.
        max_workers: Number of fiscal-year partitions processed concurrently.
        cancel_event: If set, the run stops before the next partition starts
            and raises ETLError; no partial result is returned.
        annotation: Optional materialized fiscal year mapping.

    Returns:
        NetSalesResult sorted by date, customer and product.

    """
    sales = annotate_fiscal_year(snapshot.sales, annotation)
    partitions = [(int(fy), part) for fy, part in sales.groupby("fiscal_year", sort=True)]

    def run(item: tuple[int, pd.DataFrame]) -> NetSalesResult:
        fy, part = item
        return _run_partition(fy, part, snapshot, strict, cancel_event)

    if max_workers > 1 and len(partitions) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = list(pool.map(run, partitions))
    else:
        results = [run(item) for item in partitions]

    report = ExclusionReport()
    for result in results:
        report.extend(result.report)

    frames = [r.net for r in results if len(r.net)]
    if frames:
        net = pd.concat(frames, ignore_index=True)
        net = net.sort_values(SORT_COLUMNS, kind="stable").reset_index(drop=True)
    else:
        net = pd.DataFrame(columns=NET_SALES_COLUMNS)

    if len(report):
        logger.warning("Excluded %d sales record(s): %s", len(report), report.counts())
    return NetSalesResult(net=net, report=report, violations=invariant_violations(net))


def _fact_path(paths: DataPaths, start_date: str, end_date: str):
    return paths.clean / f"fact_net_sales_{range_key(start_date, end_date)}.csv"


def _exclusions_path(paths: DataPaths, start_date: str, end_date: str):
    return paths.clean / f"exclusions_{range_key(start_date, end_date)}.csv"


def read_net_sales_csv(path) -> pd.DataFrame:
    """Read a persisted net sales fact, restoring dates and Decimal columns."""
    df = pd.read_csv(
        path,
        encoding="utf-8",
        dtype={c: str for c in DECIMAL_COLUMNS + ["product_code", "customer_code", "record_id"]},
    )
    if len(df):
        df["date"] = pd.to_datetime(df["date"]).dt.date
    for col in DECIMAL_COLUMNS:
        if col in df.columns:
            df[col] = df[col].map(lambda v: None if pd.isna(v) else to_decimal(v))
    if "deduction_missing" in df.columns:
        df["deduction_missing"] = df["deduction_missing"].astype(bool)
    return df


def _has_integrity_exclusions(paths: DataPaths, start_date: str, end_date: str) -> bool:
    path = _exclusions_path(paths, start_date, end_date)
    if not path.exists():
        return False
    reasons = pd.read_csv(path, dtype=str).get("reason", pd.Series(dtype=str))
    return bool(reasons.isin(INTEGRITY_REASONS).any())


def _filter_customers(df: pd.DataFrame, customers) -> pd.DataFrame:
    codes = parse_keys(customers)
    if codes is None:
        return df
    return df[df["customer_code"].isin(codes)].reset_index(drop=True)


def fetch(
    paths: DataPaths,
    start_date: str,
    end_date: str,
    customers=None,
    *,
    mode: str = "missing",
    store: FactStore | None = None,
    strict: bool = False,
    max_workers: int = 1,
) -> pd.DataFrame:
    """Ensure fact_net_sales exists for the given range, then return it.

    Args:
        paths: DataPaths configuration.
        start_date: Start date in YYYY-MM-DD format (inclusive).
        end_date: End date in YYYY-MM-DD format (inclusive).
        customers: Optional customer codes (one or many) to return.
        mode: Processing mode - "missing" (default) or "force".
        store: Raw fact store; defaults to the CSV store under ``paths``. Passing a
            store always rebuilds the fact.
        strict: Abort on the first data integrity error. A cached fact that
            recorded integrity exclusions is rebuilt so the error is raised.
        max_workers: Fiscal-year partitions processed concurrently.

    Returns:
        DataFrame with the net sales fact structure.

    Raises:
        ValueError: If mode is not "missing" or "force".

    """
    if mode not in ("missing", "force"):
        raise ValueError(f"Invalid mode '{mode}'. Must be 'missing' or 'force'.")

    paths.ensure_dirs()
    key = range_key(start_date, end_date)
    fact_path = _fact_path(paths, start_date, end_date)

    reusable = (
        mode == "missing"
        and store is None
        and fact_path.exists()
        and not should_run_stage(paths.clean, key, VERSION)
        and not (strict and _has_integrity_exclusions(paths, start_date, end_date))
    )
    if reusable:
        logger.debug("Net sales fact already exists for %s to %s", start_date, end_date)
        return _filter_customers(read_net_sales_csv(fact_path), customers)

    logger.info("Building net sales fact for %s to %s", start_date, end_date)
    annotation = None
    if paths.fiscal_year_annotation.exists():
        annotation = load_fiscal_year_map(paths.fiscal_year_annotation)

    try:
        with open_snapshot(store or CsvFactStore(paths), start_date, end_date) as snapshot:
            result = build_net_sales(
                snapshot, strict=strict, max_workers=max_workers, annotation=annotation
            )
        write_csv_atomic(result.net, fact_path)
        write_csv_atomic(result.report.to_frame(), _exclusions_path(paths, start_date, end_date))
    except Exception as e:
        logger.error("Error building net sales fact: %s", e)
        write_metadata(paths.clean, StageMetadata.now(key, VERSION, "failed"))
        raise

    write_metadata(
        paths.clean,
        StageMetadata.now(
            key,
            VERSION,
            "ok",
            row_count=len(result.net),
            skipped_count=len(result.report),
        ),
    )
    return _filter_customers(result.net, customers)


def load(
    paths: DataPaths,
    start_date: str,
    end_date: str,
    customers=None,
) -> pd.DataFrame:
    """Load fact_net_sales from disk without running the pipeline.

    Raises:
        FileNotFoundError: If the fact for this range has not been built.

    """
    meta = read_metadata(paths.clean, range_key(start_date, end_date))
    fact_path = _fact_path(paths, start_date, end_date)
    if meta is None or meta.status != "ok" or not fact_path.exists():
        raise FileNotFoundError(
            f"Net sales fact not found for range {start_date} to {end_date}. "
            f"Use sales.core.fetch() to build it."
        )
    return _filter_customers(read_net_sales_csv(fact_path), customers)


def load_exclusions(paths: DataPaths, start_date: str, end_date: str) -> pd.DataFrame:
    """Load the exclusion report written alongside the fact."""
    path = _exclusions_path(paths, start_date, end_date)
    if not path.exists():
        raise FileNotFoundError(f"Exclusion report not found: {path}")
    return pd.read_csv(path, dtype=str).fillna("")
