"""Net Sales Core - fiscal-year net sales computation and market tiering.

This package turns monthly sales facts of a hardware manufacturer into net
sales across the data layers:

- **Bronze (raw)**: Sales, prices, deductions and dimensions (read-only)
- **Silver (core facts)**: fact_net_sales, one row per sales record
- **Gold (marts)**: Monthly reports, top-N rankings and market badges

Module Structure:
    netsales_core.fiscal: Fiscal calendar resolver (September start)
    netsales_core.store: Raw fact store and scoped snapshots
    netsales_core.sales: Enrichment, discount cascade, aggregation, marts
    netsales_core.markets: Gold/Silver market tiering
    netsales_core.qa: Data quality assurance
    netsales_core.config: DataPaths configuration and business constants

Quick Start:
    >>> from netsales_core import DataPaths
    >>> from netsales_core.sales import core as sales_core
    >>> from netsales_core.sales import marts as sales_marts
    >>>
    >>> paths = DataPaths.from_root("data")
    >>>
    >>> # Core fact: net sales per sales record
    >>> net = sales_core.fetch(paths, "2020-09-01", "2021-08-31")
    >>>
    >>> # Monthly gross sales for one or many customers
    >>> monthly = sales_marts.fetch_monthly(paths, "2020-09-01", "2021-08-31", "90002002")

Grain Reference:
    - core: fact_net_sales - date x product x customer
    - marts.monthly: mart_* - date (x customer | x market)
    - markets: mart_market_badges_fy* - market x fiscal year
"""

__version__ = "0.1.0"

from netsales_core.config import DataPaths
from netsales_core.exceptions import (
    ConfigError,
    DataIntegrityError,
    DataQualityError,
    ETLError,
    InvalidInputError,
    NetSalesError,
)

__all__ = [
    "ConfigError",
    "DataIntegrityError",
    "DataPaths",
    "DataQualityError",
    "ETLError",
    "InvalidInputError",
    "NetSalesError",
    "__version__",
]
