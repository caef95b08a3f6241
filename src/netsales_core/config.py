"""Unified configuration for Net Sales Core.

This module provides the filesystem layout used by the pipeline and the
business constants shared by all components (fiscal calendar, default
market, badge threshold).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

# Fiscal year starts on the 1st of this calendar month and is labelled by the
# calendar year in which it ends.
FISCAL_YEAR_START_MONTH = 9

# Market used by the tiering classifier when none is given.
DEFAULT_MARKET = "India"

# Markets selling strictly more than this many units in a fiscal year are Gold.
GOLD_THRESHOLD = 5_000_000

# Currency precision for gross and net figures.
MONEY_PLACES = 2

# Raw table file names under a_raw/
SALES_FILE = "fact_sales_monthly.csv"
GROSS_PRICE_FILE = "fact_gross_price.csv"
PRE_INVOICE_FILE = "fact_pre_invoice_deductions.csv"
POST_INVOICE_FILE = "fact_post_invoice_deductions.csv"
CUSTOMER_FILE = "dim_customer.csv"
PRODUCT_FILE = "dim_product.csv"

RAW_TABLES = [
    SALES_FILE,
    GROSS_PRICE_FILE,
    PRE_INVOICE_FILE,
    POST_INVOICE_FILE,
    CUSTOMER_FILE,
    PRODUCT_FILE,
]


@dataclass
class DataPaths:
    """All filesystem paths used by the pipeline.

    Attributes:
        data_root: Root directory for all data layers.

    Directory Structure:
        data_root/
        ├── a_raw/           # Bronze: raw facts and dimensions (read-only)
        ├── b_clean/         # Silver: fact_net_sales + fiscal year annotation
        └── c_processed/     # Gold: marts (monthly, customer, market, badges)

    """

    data_root: Path

    @classmethod
    def from_root(cls, data_root: str | Path) -> DataPaths:
        """Create DataPaths from a root directory.

        Args:
            data_root: Root directory for pipeline data.

        Returns:
            DataPaths instance.

        Examples:
            >>> paths = DataPaths.from_root("data")
            >>> paths.raw
            PosixPath('data/a_raw')

        """
        if isinstance(data_root, str):
            data_root = Path(data_root)
        return cls(data_root=data_root)

    @property
    def raw(self) -> Path:
        """Bronze layer: raw fact and dimension CSVs."""
        return self.data_root / "a_raw"

    @property
    def clean(self) -> Path:
        """Silver layer: fact_net_sales CSVs."""
        return self.data_root / "b_clean"

    @property
    def marts(self) -> Path:
        """Gold layer: aggregated marts."""
        return self.data_root / "c_processed"

    @property
    def fiscal_year_annotation(self) -> Path:
        """Materialized (record_id, fiscal_year) mapping."""
        return self.clean / "fiscal_year_annotation.csv"

    def raw_table(self, name: str) -> Path:
        """Path of a raw table file by file name."""
        return self.raw / name

    def ensure_dirs(self) -> None:
        """Create the derived-layer directories.

        The raw layer is owned by the loader and is never created here.
        """
        for path in [self.clean, self.marts]:
            path.mkdir(parents=True, exist_ok=True)
