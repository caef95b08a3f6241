"""Example: Net sales for one fiscal year using the domain API

This example builds the net sales fact for fiscal year 2021 (2020-09-01 to
2021-08-31), prints the monthly gross sales report for two customers, ranks
markets by net sales and classifies the default market.

Prerequisites:
- data/a_raw/ holds the raw facts and dimensions as CSV:
  fact_sales_monthly.csv, fact_gross_price.csv,
  fact_pre_invoice_deductions.csv, fact_post_invoice_deductions.csv,
  dim_customer.csv, dim_product.csv
"""

from pathlib import Path

from netsales_core import DataPaths
from netsales_core.fiscal import fiscal_year_bounds
from netsales_core.markets import MarketTiering
from netsales_core.sales import core as sales_core
from netsales_core.sales import get_net_sales
from netsales_core.sales import marts as sales_marts
from netsales_core.store import CsvFactStore

fiscal_year = 2021  # MODIFY AS NEEDED
customers = "90002002,90002008"  # MODIFY AS NEEDED

paths = DataPaths.from_root(Path("data"))
start, end = (d.isoformat() for d in fiscal_year_bounds(fiscal_year))

# Core fact: one row per product, customer and month
print(f"Building net sales for FY{fiscal_year} ({start} to {end})...")
net = get_net_sales(paths, start, end, refresh=True)
print(f"Net sales fact: {len(net)} rows")
print(net[["record_id", "gross_price_total", "net_invoice_sales", "net_sales"]].head())

exclusions = sales_core.load_exclusions(paths, start, end)
print(f"\nExcluded records: {len(exclusions)}")
if len(exclusions):
    print(exclusions["reason"].value_counts())

# Monthly gross sales report, one or many customers in a single call
print(f"\nMonthly gross sales for {customers}...")
report = sales_marts.fetch_monthly(paths, start, end, customers)
print(report)

# Top markets by net sales (millions)
print(f"\nTop 5 markets in FY{fiscal_year}:")
print(sales_marts.top_n(net, fiscal_year, by="market", n=5))

# Market tiering
store = CsvFactStore(paths)
tiering = MarketTiering(store.sales(), store.customers())
store.close()
print(f"\nDefault market badge for FY{fiscal_year}: {tiering.classify(fiscal_year).value}")
print(tiering.badges(fiscal_year))
