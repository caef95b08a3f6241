"""Markets domain module.

Example:
    >>> from netsales_core.markets import MarketTiering
    >>> MarketTiering(sales_df, customers_df).classify(2021)
"""

from netsales_core.markets.tiering import MarketTiering, classify_quantity, write_badges

__all__ = ["MarketTiering", "classify_quantity", "write_badges"]
