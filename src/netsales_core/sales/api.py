"""Public API for net sales data.

This module provides the main entry point for loading net sales data.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pandas as pd

from netsales_core.sales.aggregate import KeysParam

if TYPE_CHECKING:
    from netsales_core.config import DataPaths
    from netsales_core.store import FactStore

logger = logging.getLogger(__name__)

GRAINS = ("record", "monthly")


def get_net_sales(
    paths: DataPaths,
    start_date: str,
    end_date: str,
    grain: str = "record",
    keys: KeysParam = None,
    *,
    group_by: str = "date+customer",
    measure: str = "net_sales",
    refresh: bool = False,
    store: FactStore | None = None,
) -> pd.DataFrame:
    """Load net sales data at the specified grain.

    This function orchestrates the pipeline to deliver net sales data:
    1. Builds fact_net_sales from the raw facts (if needed)
    2. Aggregates to the monthly grain (if requested and needed)

    Args:
        paths: DataPaths configuration with data directories.
        start_date: Start date in YYYY-MM-DD format (inclusive).
        end_date: End date in YYYY-MM-DD format (inclusive).
        grain: Data grain to return:
            - "record": Core fact (fact_net_sales). One row per sales record.
            - "monthly": Monthly mart, summed per ``group_by``.
        keys: Optional customer (or market) codes, one or many.
        group_by: Grouping for the monthly grain.
        measure: Measure summed by the monthly grain.
        refresh: If True, force re-run all stages. Default False uses cached data.
        store: Raw fact store; defaults to the CSV store under ``paths``.

    Returns:
        DataFrame at the requested grain.

    Raises:
        ValueError: If grain is not "record" or "monthly", or a date is invalid.

    Examples:
        >>> from netsales_core import DataPaths
        >>> paths = DataPaths.from_root("data")
        >>> df = get_net_sales(paths, "2020-09-01", "2021-08-31")
        >>> df = get_net_sales(paths, "2020-09-01", "2021-08-31", grain="monthly", keys="90002002")

    """
    if grain not in GRAINS:
        raise ValueError(f"Invalid grain '{grain}'. Must be 'record' or 'monthly'.")

    try:
        pd.to_datetime(start_date)
        pd.to_datetime(end_date)
    except ValueError as e:
        raise ValueError(f"Invalid date format: {e}") from e

    # Import internal modules here to avoid circular imports
    from netsales_core.sales import core, marts

    mode = "force" if refresh else "missing"
    if refresh:
        logger.info("Refresh=True: rebuilding net sales for %s to %s", start_date, end_date)

    if grain == "record":
        return core.fetch(paths, start_date, end_date, keys, mode=mode, store=store)

    if refresh:
        core.fetch(paths, start_date, end_date, mode="force", store=store)
    return marts.fetch_monthly(
        paths,
        start_date,
        end_date,
        keys,
        group_by=group_by,
        measure=measure,
        mode=mode,
        store=store,
    )
