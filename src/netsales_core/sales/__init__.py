"""Sales domain module.

This module provides functions to load net sales data at different grains:

- **fact_net_sales** (grain="record"): Core fact at sales record grain. One
  row per product, customer and month, carrying the fiscal year, gross totals
  and both discount stages.

- **mart_*** (grain="monthly"): Monthly sums of a measure, per month only,
  per customer or per market, for one or many entity codes.

Example:
    >>> from netsales_core import DataPaths
    >>> from netsales_core.sales import get_net_sales
    >>>
    >>> paths = DataPaths.from_root("data")
    >>>
    >>> # Core fact (record grain, default)
    >>> fact_df = get_net_sales(paths, "2020-09-01", "2021-08-31")
    >>>
    >>> # Monthly gross sales for two customers
    >>> monthly_df = get_net_sales(
    ...     paths, "2020-09-01", "2021-08-31", grain="monthly",
    ...     keys="90002002,90002008", measure="gross_price_total",
    ... )
"""

from netsales_core.sales.api import get_net_sales

__all__ = ["get_net_sales"]
