"""Data quality checks for the net sales fact.

Example:
    >>> from netsales_core.qa import run_net_sales_qa
    >>> result = run_net_sales_qa(net_df)
    >>> result.summary["invariant_violations_count"]
    0
"""

from netsales_core.qa.api import NetSalesQAResult, run_net_sales_qa

__all__ = ["NetSalesQAResult", "run_net_sales_qa"]
