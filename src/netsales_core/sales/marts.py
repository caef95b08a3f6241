"""Gold layer: net sales marts (aggregated tables).

Marts are built from the net sales fact and persisted under ``c_processed/``:

- **monthly**: measure per month, optionally per customer or market, for one
  or many entity codes (see :func:`netsales_core.sales.aggregate.aggregate`)
- **top_n**: top markets, customers or products by net sales in a fiscal year
- **net_sales_share**: each customer's share of net sales, optionally within
  its region
"""

from __future__ import annotations

import hashlib
import logging
from decimal import Decimal
from typing import TYPE_CHECKING

import pandas as pd

from netsales_core.exceptions import DataQualityError, InvalidInputError
from netsales_core.metadata import StageMetadata, range_key, read_metadata, should_run_stage, write_metadata
from netsales_core.models import round_money, to_decimal
from netsales_core.sales.aggregate import (
    MONEY_MEASURES,
    KeysParam,
    aggregate,
    output_columns,
    parse_keys,
)
from netsales_core.sales.core import fetch as fetch_core
from netsales_core.utils import write_csv_atomic

if TYPE_CHECKING:
    from netsales_core.config import DataPaths
    from netsales_core.store import FactStore

logger = logging.getLogger(__name__)

VERSION = "monthly_v1"

_MILLION = Decimal(1_000_000)
_HUNDRED = Decimal(100)

TOP_N_DIMENSIONS = ("market", "customer", "product")


def _mart_key(start_date: str, end_date: str, group_by: str, measure: str, keys) -> str:
    codes = parse_keys(keys)
    if codes is None:
        scope = "all"
    elif not codes:
        scope = "none"
    else:
        # The readable key list lives in the stage metadata
        scope = hashlib.sha1("\n".join(sorted(codes)).encode("utf-8")).hexdigest()[:16]
    return f"{group_by.replace('+', '_')}_{measure}_{range_key(start_date, end_date)}_{scope}"


def _read_mart(path, group_by: str, measure: str) -> pd.DataFrame:
    columns = output_columns(group_by, measure)
    df = pd.read_csv(path, dtype={c: str for c in columns if c != "date"})
    if len(df) == 0:
        return pd.DataFrame(columns=columns)
    df["date"] = pd.to_datetime(df["date"]).dt.date
    if measure in MONEY_MEASURES:
        df[measure] = df[measure].map(to_decimal)
    else:
        df[measure] = df[measure].astype("int64")
    return df[columns]


def fetch_monthly(
    paths: DataPaths,
    start_date: str,
    end_date: str,
    keys: KeysParam = None,
    *,
    group_by: str = "date+customer",
    measure: str = "gross_price_total",
    mode: str = "missing",
    store: FactStore | None = None,
) -> pd.DataFrame:
    """Build (or reuse) a monthly mart for one or many entity codes.

    The default arguments give the monthly gross sales report per customer.

    Args:
        paths: DataPaths configuration.
        start_date: Start date in YYYY-MM-DD format (inclusive).
        end_date: End date in YYYY-MM-DD format (inclusive).
        keys: Customer or market codes (see :func:`parse_keys`).
        group_by: "date", "date+customer" or "date+market".
        measure: Measure to sum.
        mode: Processing mode - "missing" (default) or "force".
        store: Raw fact store; defaults to the CSV store under ``paths``. Passing a
            store always rebuilds the mart.

    Returns:
        DataFrame sorted by date then entity.

    Raises:
        ValueError: If mode is not "missing" or "force".

    """
    if mode not in ("missing", "force"):
        raise ValueError(f"Invalid mode '{mode}'. Must be 'missing' or 'force'.")

    paths.ensure_dirs()
    key = _mart_key(start_date, end_date, group_by, measure, keys)
    mart_path = paths.marts / f"mart_{key}.csv"
    reusable = (
        mode == "missing"
        and store is None
        and mart_path.exists()
        and not should_run_stage(paths.marts, key, VERSION)
    )
    if reusable:
        logger.debug("Loading existing mart %s", mart_path)
        return _read_mart(mart_path, group_by, measure)

    net = fetch_core(paths, start_date, end_date, mode=mode, store=store)
    logger.info("Building %s by %s for %s to %s", measure, group_by, start_date, end_date)
    try:
        result = aggregate(net, group_by, keys, measure=measure)
        write_csv_atomic(result, mart_path)
    except Exception as e:
        logger.error("Error building monthly mart: %s", e)
        write_metadata(paths.marts, StageMetadata.now(key, VERSION, "failed"))
        raise

    codes = parse_keys(keys)
    write_metadata(
        paths.marts,
        StageMetadata.now(
            key,
            VERSION,
            "ok",
            keys=sorted(codes) if codes is not None else [],
            row_count=len(result),
        ),
    )
    return result


def load_monthly(
    paths: DataPaths,
    start_date: str,
    end_date: str,
    keys: KeysParam = None,
    *,
    group_by: str = "date+customer",
    measure: str = "gross_price_total",
) -> pd.DataFrame:
    """Load a monthly mart from disk without running the pipeline.

    Raises:
        FileNotFoundError: If the mart has not been built.

    """
    key = _mart_key(start_date, end_date, group_by, measure, keys)
    mart_path = paths.marts / f"mart_{key}.csv"
    meta = read_metadata(paths.marts, key)
    if not mart_path.exists() or meta is None or meta.status != "ok":
        raise FileNotFoundError(
            f"Monthly mart not found for range {start_date} to {end_date}. "
            f"Use sales.marts.fetch_monthly() to build the mart."
        )
    return _read_mart(mart_path, group_by, measure)


def _in_fiscal_year(net: pd.DataFrame, fiscal_year: int) -> pd.DataFrame:
    if "fiscal_year" not in net.columns:
        raise DataQualityError("Net sales frame has no fiscal_year column")
    return net[net["fiscal_year"] == fiscal_year]


def top_n(net: pd.DataFrame, fiscal_year: int, by: str = "market", n: int = 5) -> pd.DataFrame:
    """Top ``n`` markets, customers or products by net sales in a fiscal year.

    Args:
        net: Net sales fact with label columns.
        fiscal_year: Fiscal year to rank.
        by: "market", "customer" or "product".
        n: Number of rows to return.

    Returns:
        DataFrame with columns ``by`` and ``net_sales_mln`` (millions, 2 dp),
        highest first; ties are ordered by name.

    """
    if by not in TOP_N_DIMENSIONS:
        raise InvalidInputError(f"Invalid dimension '{by}'. Must be one of {list(TOP_N_DIMENSIONS)}.")
    if n < 1:
        raise InvalidInputError(f"n must be at least 1, got {n}")
    df = _in_fiscal_year(net, fiscal_year)
    if by not in df.columns:
        raise DataQualityError(f"Net sales frame has no '{by}' label column")
    if len(df) == 0:
        return pd.DataFrame(columns=[by, "net_sales_mln"])

    totals = df.groupby(by)["net_sales"].agg(lambda s: sum(s, Decimal(0))).reset_index()
    totals["_order"] = [-v for v in totals["net_sales"]]
    totals = totals.sort_values(["_order", by]).head(n)
    totals["net_sales_mln"] = [round_money(v / _MILLION) for v in totals["net_sales"]]
    return totals[[by, "net_sales_mln"]].reset_index(drop=True)


def net_sales_share(net: pd.DataFrame, fiscal_year: int, within: str | None = None) -> pd.DataFrame:
    """Each customer's percentage share of net sales in a fiscal year.

    Args:
        net: Net sales fact with the ``customer`` label column.
        fiscal_year: Fiscal year to report.
        within: Optional grouping column (e.g. "region"); shares then add up to
            100 within each group.

    Returns:
        DataFrame with ``within`` (if given), ``customer``, ``net_sales_mln`` and
        ``pct_share``, largest share first.

    """
    df = _in_fiscal_year(net, fiscal_year)
    group_cols = ([within] if within else []) + ["customer"]
    missing = [c for c in group_cols if c not in df.columns]
    if missing:
        raise DataQualityError(f"Net sales frame has no label column(s) {missing}")
    columns = group_cols + ["net_sales_mln", "pct_share"]
    if len(df) == 0:
        return pd.DataFrame(columns=columns)

    totals = df.groupby(group_cols)["net_sales"].agg(lambda s: sum(s, Decimal(0))).reset_index()
    if within:
        denominators = totals.groupby(within)["net_sales"].agg(lambda s: sum(s, Decimal(0)))
        denom = totals[within].map(denominators)
    else:
        denom = pd.Series([sum(totals["net_sales"], Decimal(0))] * len(totals), index=totals.index)

    totals["net_sales_mln"] = [round_money(v / _MILLION) for v in totals["net_sales"]]
    totals["pct_share"] = [
        round_money(v * _HUNDRED / d) if d else Decimal("0.00") for v, d in zip(totals["net_sales"], denom)
    ]
    totals["_order"] = [-v for v in totals["net_sales"]]
    sort_cols = ([within] if within else []) + ["_order", "customer"]
    return totals.sort_values(sort_cols)[columns].reset_index(drop=True)
