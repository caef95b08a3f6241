"""Market tiering: Gold/Silver badges from yearly sold quantity.

A market earns a Gold badge for a fiscal year when its customers sold strictly
more than 5,000,000 units in that year; otherwise it is Silver. A market with no
sales in the year has a total of 0 and is Silver.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pandas as pd

from netsales_core.config import DEFAULT_MARKET, GOLD_THRESHOLD
from netsales_core.fiscal import annotate_fiscal_year
from netsales_core.metadata import StageMetadata, write_metadata
from netsales_core.models import Badge
from netsales_core.sales.enrich import validate_sales
from netsales_core.store import CUSTOMERS, require_columns
from netsales_core.utils import write_csv_atomic

if TYPE_CHECKING:
    from netsales_core.config import DataPaths

logger = logging.getLogger(__name__)

BADGE_COLUMNS = ["market", "fiscal_year", "total_qty", "badge"]


def classify_quantity(total_qty: int, threshold: int = GOLD_THRESHOLD) -> Badge:
    """Apply the badge rule to a yearly quantity (the boundary itself is Silver)."""
    return Badge.GOLD if total_qty > threshold else Badge.SILVER


def resolve_market(market: str | None) -> str:
    """Return ``market`` stripped, or the default market when empty or None."""
    if market is None or not market.strip():
        return DEFAULT_MARKET
    return market.strip()


class MarketTiering:
    """Yearly sold quantity per market and the badge it earns.

    Sales are annotated with their fiscal year once, at construction.

    Example:
        >>> tiering = MarketTiering(sales_df, customers_df)
        >>> tiering.classify(2021, "India")
        <Badge.GOLD: 'Gold'>
        >>> tiering.classify(2021)  # default market
        <Badge.GOLD: 'Gold'>

    """

    def __init__(
        self,
        sales: pd.DataFrame,
        customers: pd.DataFrame,
        threshold: int = GOLD_THRESHOLD,
    ) -> None:
        validate_sales(sales)
        require_columns(customers, CUSTOMERS)
        self.threshold = threshold
        annotated = annotate_fiscal_year(sales)
        markets = customers[["customer_code", "market"]].drop_duplicates("customer_code")
        markets = markets.assign(customer_code=markets["customer_code"].astype(str))
        annotated = annotated.assign(customer_code=annotated["customer_code"].astype(str))
        joined = annotated.merge(markets, on="customer_code", how="inner")
        unmatched = len(annotated) - len(joined)
        if unmatched:
            logger.warning("%d sales record(s) belong to no known customer and count for no market", unmatched)
        if len(joined):
            self._totals = joined.groupby(["market", "fiscal_year"])["sold_quantity"].sum().astype("int64")
        else:
            self._totals = pd.Series(dtype="int64")

    def total_quantity(self, fiscal_year: int, market: str | None = None) -> int:
        """Units sold in ``market`` (default market if empty) during ``fiscal_year``."""
        key = (resolve_market(market), int(fiscal_year))
        if len(self._totals) == 0 or key not in self._totals.index:
            return 0
        return int(self._totals[key])

    def classify(self, fiscal_year: int, market: str | None = None) -> Badge:
        """Badge of ``market`` (default market if empty) for ``fiscal_year``."""
        total = self.total_quantity(fiscal_year, market)
        badge = classify_quantity(total, self.threshold)
        logger.debug("%s FY%d: %d units -> %s", resolve_market(market), fiscal_year, total, badge.value)
        return badge

    def list_markets(self) -> list[str]:
        if len(self._totals) == 0:
            return []
        return sorted(set(self._totals.index.get_level_values("market")))

    def badges(self, fiscal_year: int) -> pd.DataFrame:
        """Badge of every known market for ``fiscal_year``, sorted by market."""
        rows = []
        for market in self.list_markets():
            total = self.total_quantity(fiscal_year, market)
            rows.append((market, int(fiscal_year), total, classify_quantity(total, self.threshold).value))
        return pd.DataFrame(rows, columns=BADGE_COLUMNS)


def write_badges(paths: DataPaths, tiering: MarketTiering, fiscal_year: int) -> pd.DataFrame:
    """Persist the badge mart for ``fiscal_year`` under ``paths.marts``."""
    paths.ensure_dirs()
    key = f"market_badges_fy{fiscal_year}"
    badges = tiering.badges(fiscal_year)
    write_csv_atomic(badges, paths.marts / f"mart_{key}.csv")
    write_metadata(paths.marts, StageMetadata.now(key, "badges_v1", "ok", row_count=len(badges)))
    logger.info("Wrote %d market badge(s) for FY%d", len(badges), fiscal_year)
    return badges
