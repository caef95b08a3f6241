"""Fiscal calendar resolver.

The fiscal year starts on the 1st of September and is labelled by the calendar
year in which it ends, i.e. ``fiscal_year(d) == year(d + 4 months)``:

    >>> from datetime import date
    >>> get_fiscal_year(date(2020, 9, 1))
    2021
    >>> get_fiscal_year(date(2021, 8, 31))
    2021

The rule is available as a scalar function for ad hoc use, as a vectorized
function over a date column, and as a precomputed annotation attached once per
sales record so that downstream joins never recompute it. The annotation can
be materialized to disk as a ``(record_id, fiscal_year)`` mapping.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from netsales_core.config import FISCAL_YEAR_START_MONTH
from netsales_core.exceptions import DataQualityError
from netsales_core.metadata import StageMetadata, write_metadata
from netsales_core.utils import write_csv_atomic

if TYPE_CHECKING:
    from netsales_core.config import DataPaths

logger = logging.getLogger(__name__)

ANNOTATION_VERSION = "fiscal_v1"

RECORD_KEY_COLUMNS = ["date", "product_code", "customer_code"]


@lru_cache(maxsize=4096)
def get_fiscal_year(d: date, start_month: int = FISCAL_YEAR_START_MONTH) -> int:
    """Return the fiscal year label for a calendar date.

    Args:
        d: Calendar date (no time of day).
        start_month: First calendar month of the fiscal year. With 1 the fiscal
            year is the calendar year.

    Returns:
        The calendar year in which the fiscal year containing ``d`` ends.

    """
    if start_month > 1 and d.month >= start_month:
        return d.year + 1
    return d.year


def get_fiscal_quarter(d: date, start_month: int = FISCAL_YEAR_START_MONTH) -> str:
    """Return the fiscal quarter label ("Q1".."Q4") for a calendar date.

    Q1 covers the first three months of the fiscal year (Sep, Oct, Nov).
    """
    return f"Q{(d.month - start_month) % 12 // 3 + 1}"


def fiscal_year_bounds(fiscal_year: int, start_month: int = FISCAL_YEAR_START_MONTH) -> tuple[date, date]:
    """First and last calendar day of a fiscal year.

    Examples:
        >>> fiscal_year_bounds(2021)
        (datetime.date(2020, 9, 1), datetime.date(2021, 8, 31))

    """
    if start_month == 1:
        return date(fiscal_year, 1, 1), date(fiscal_year, 12, 31)
    start = date(fiscal_year - 1, start_month, 1)
    end = date(fiscal_year, start_month, 1) - timedelta(days=1)
    return start, end


def fiscal_year_series(
    dates: pd.Series | list,
    start_month: int = FISCAL_YEAR_START_MONTH,
) -> pd.Series:
    """Vectorized ``get_fiscal_year`` over a column of dates."""
    dates = dates if isinstance(dates, pd.Series) else pd.Series(dates)
    ts = pd.to_datetime(dates)
    years = ts.dt.year.to_numpy(dtype="int64")
    if start_month > 1:
        years = np.where(ts.dt.month.to_numpy() >= start_month, years + 1, years)
    return pd.Series(years, index=dates.index, name="fiscal_year", dtype="int64")


def make_record_ids(sales: pd.DataFrame) -> pd.Series:
    """Build the natural key ``YYYY-MM-DD|product_code|customer_code`` per row."""
    missing = [c for c in RECORD_KEY_COLUMNS if c not in sales.columns]
    if missing:
        raise DataQualityError(f"Missing record key columns: {missing}")
    day = pd.to_datetime(sales["date"]).dt.strftime("%Y-%m-%d")
    return (
        day + "|" + sales["product_code"].astype(str) + "|" + sales["customer_code"].astype(str)
    ).rename("record_id")


def annotate_fiscal_year(
    sales: pd.DataFrame,
    annotation: pd.Series | None = None,
) -> pd.DataFrame:
    """Attach ``record_id`` and ``fiscal_year`` to each sales record.

    Records that already carry a ``fiscal_year`` keep it. Otherwise the value
    is looked up in ``annotation`` (a Series indexed by record_id, as returned
    by :func:`load_fiscal_year_map`) and computed only for ids not found there.

    Args:
        sales: Sales records with date, product_code and customer_code columns.
        annotation: Optional precomputed fiscal year mapping.

    Returns:
        A new DataFrame with ``date`` normalized to ``datetime.date``.

    """
    df = sales.copy()
    if len(df) == 0:
        df["record_id"] = pd.Series(dtype="object")
        df["fiscal_year"] = pd.Series(dtype="int64")
        return df

    df["date"] = pd.to_datetime(df["date"]).dt.date
    if "record_id" not in df.columns:
        df["record_id"] = make_record_ids(df)

    if "fiscal_year" in df.columns and df["fiscal_year"].notna().all():
        df["fiscal_year"] = df["fiscal_year"].astype("int64")
        return df

    if annotation is not None:
        fy = df["record_id"].map(annotation)
        todo = fy.isna()
        if todo.any():
            logger.debug("Fiscal year annotation missing for %d record(s), computing", todo.sum())
            fy[todo] = fiscal_year_series(df.loc[todo, "date"])
        df["fiscal_year"] = fy.astype("int64")
    else:
        df["fiscal_year"] = fiscal_year_series(df["date"])
    return df


def materialize_fiscal_years(sales: pd.DataFrame, path: Path) -> pd.DataFrame:
    """Write the ``(record_id, fiscal_year)`` mapping for ``sales`` to ``path``.

    The file is rebuilt completely and swapped into place, so a concurrent
    reader sees either the previous mapping or the new one.

    Returns:
        The mapping that was written.

    """
    annotated = annotate_fiscal_year(sales.drop(columns=["fiscal_year"], errors="ignore"))
    mapping = annotated[["record_id", "fiscal_year"]].drop_duplicates("record_id")
    write_csv_atomic(mapping, path)
    logger.info("Materialized fiscal years for %d record(s) to %s", len(mapping), path)
    return mapping


def load_fiscal_year_map(path: Path) -> pd.Series:
    """Read a materialized mapping as a Series of fiscal years indexed by record_id."""
    df = pd.read_csv(path, dtype={"record_id": str, "fiscal_year": "int64"})
    return df.set_index("record_id")["fiscal_year"]


def refresh_annotation(paths: DataPaths, sales: pd.DataFrame) -> pd.Series:
    """Rebuild the materialized annotation under ``paths`` and record stage metadata."""
    paths.ensure_dirs()
    try:
        mapping = materialize_fiscal_years(sales, paths.fiscal_year_annotation)
    except Exception:
        write_metadata(paths.clean, StageMetadata.now("fiscal_year_annotation", ANNOTATION_VERSION, "failed"))
        raise
    write_metadata(
        paths.clean,
        StageMetadata.now(
            "fiscal_year_annotation", ANNOTATION_VERSION, "ok", row_count=len(mapping)
        ),
    )
    return mapping.set_index("record_id")["fiscal_year"]
