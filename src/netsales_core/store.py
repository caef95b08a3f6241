"""Raw fact and dimension retrieval.

The raw store is owned by an external loader and is treated as read-only.
This module defines the interface the pipeline needs from it, an in-memory
implementation over DataFrames, and a CSV-backed implementation reading the
bronze layer (``a_raw/``).

Example:
    >>> from netsales_core import DataPaths
    >>> from netsales_core.store import CsvFactStore, open_snapshot
    >>>
    >>> store = CsvFactStore(DataPaths.from_root("data"))
    >>> with open_snapshot(store, "2020-09-01", "2021-08-31") as snapshot:
    ...     print(len(snapshot.sales))
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import pandas as pd

from netsales_core import config
from netsales_core.exceptions import ConfigError, DataQualityError
from netsales_core.fiscal import fiscal_year_series
from netsales_core.models import to_decimal
from netsales_core.utils import parse_date

if TYPE_CHECKING:
    from netsales_core.config import DataPaths

logger = logging.getLogger(__name__)

SALES = "sales"
PRICES = "prices"
PRE_INVOICE = "pre_invoice"
POST_INVOICE = "post_invoice"
CUSTOMERS = "customers"
PRODUCTS = "products"

REQUIRED_COLUMNS: dict[str, list[str]] = {
    SALES: ["date", "product_code", "customer_code", "sold_quantity"],
    PRICES: ["product_code", "fiscal_year", "gross_price"],
    PRE_INVOICE: ["customer_code", "fiscal_year", "pre_invoice_discount_pct"],
    POST_INVOICE: [
        "customer_code",
        "product_code",
        "date",
        "discounts_pct",
        "other_deductions_pct",
    ],
    CUSTOMERS: ["customer_code", "market"],
    PRODUCTS: ["product_code"],
}

DECIMAL_COLUMNS: dict[str, list[str]] = {
    PRICES: ["gross_price"],
    PRE_INVOICE: ["pre_invoice_discount_pct"],
    POST_INVOICE: ["discounts_pct", "other_deductions_pct"],
}

TABLE_FILES: dict[str, str] = {
    SALES: config.SALES_FILE,
    PRICES: config.GROSS_PRICE_FILE,
    PRE_INVOICE: config.PRE_INVOICE_FILE,
    POST_INVOICE: config.POST_INVOICE_FILE,
    CUSTOMERS: config.CUSTOMER_FILE,
    PRODUCTS: config.PRODUCT_FILE,
}

CodeFilter = Optional[Iterable[str]]


def require_columns(df: pd.DataFrame, table: str) -> None:
    """Raise DataQualityError if ``df`` lacks a required column of ``table``."""
    missing = [c for c in REQUIRED_COLUMNS[table] if c not in df.columns]
    if missing:
        raise DataQualityError(
            f"Missing required columns in {table}: {missing}. Required: {REQUIRED_COLUMNS[table]}"
        )


def _isin(df: pd.DataFrame, column: str, values: CodeFilter) -> pd.DataFrame:
    if values is None:
        return df
    return df[df[column].isin(set(values))]


def _between(df: pd.DataFrame, start_date, end_date) -> pd.DataFrame:
    if start_date is None and end_date is None:
        return df
    day = pd.to_datetime(df["date"]).dt.date
    mask = pd.Series(True, index=df.index)
    if start_date is not None:
        mask &= day >= parse_date(start_date)
    if end_date is not None:
        mask &= day <= parse_date(end_date)
    return df[mask]


class FactStore(ABC):
    """Read-only access to the raw facts and dimensions.

    Every method returns a new DataFrame; filters left as None are not applied.
    Money and percentage columns hold ``Decimal`` values.
    """

    @abstractmethod
    def sales(
        self,
        start_date=None,
        end_date=None,
        customer_codes: CodeFilter = None,
        product_codes: CodeFilter = None,
    ) -> pd.DataFrame:
        """Monthly sold quantities (date, product_code, customer_code, sold_quantity)."""

    @abstractmethod
    def prices(
        self,
        product_codes: CodeFilter = None,
        fiscal_years: Optional[Iterable[int]] = None,
    ) -> pd.DataFrame:
        """Annual gross prices (product_code, fiscal_year, gross_price)."""

    @abstractmethod
    def pre_invoice_deductions(
        self,
        customer_codes: CodeFilter = None,
        fiscal_years: Optional[Iterable[int]] = None,
    ) -> pd.DataFrame:
        """Annual pre-invoice discount rates per customer."""

    @abstractmethod
    def post_invoice_deductions(
        self,
        start_date=None,
        end_date=None,
        customer_codes: CodeFilter = None,
        product_codes: CodeFilter = None,
    ) -> pd.DataFrame:
        """Monthly post-invoice discount and other deduction rates."""

    @abstractmethod
    def customers(self, customer_codes: CodeFilter = None, markets: CodeFilter = None) -> pd.DataFrame:
        """Customer dimension (customer_code, market, platform, channel, ...)."""

    @abstractmethod
    def products(self, product_codes: CodeFilter = None) -> pd.DataFrame:
        """Product dimension, used for labels only."""

    def close(self) -> None:
        """Release any resources held by the store."""


class FrameFactStore(FactStore):
    """FactStore over tables held as DataFrames.

    Subclasses override :meth:`_table` to load tables from somewhere else.
    """

    def __init__(self, tables: dict[str, pd.DataFrame] | None = None) -> None:
        self._tables: dict[str, pd.DataFrame] = {}
        for name, df in (tables or {}).items():
            self._tables[name] = self._prepare(name, df)

    def _prepare(self, name: str, df: pd.DataFrame) -> pd.DataFrame:
        if name not in REQUIRED_COLUMNS:
            raise ConfigError(f"Unknown table '{name}'. Expected one of {sorted(REQUIRED_COLUMNS)}")
        require_columns(df, name)
        df = df.copy()
        for col in ("product_code", "customer_code"):
            if col in df.columns:
                df[col] = df[col].astype(str)
        for col in DECIMAL_COLUMNS.get(name, []):
            df[col] = df[col].map(to_decimal)
        if "fiscal_year" in REQUIRED_COLUMNS[name]:
            df["fiscal_year"] = df["fiscal_year"].astype("int64")
        if "date" in df.columns:
            df["date"] = pd.to_datetime(df["date"]).dt.date
        if name == SALES:
            df["sold_quantity"] = df["sold_quantity"].astype("int64")
        return df

    def _table(self, name: str) -> pd.DataFrame:
        if name not in self._tables:
            raise ConfigError(f"Table '{name}' is not loaded")
        return self._tables[name]

    def sales(
        self,
        start_date=None,
        end_date=None,
        customer_codes: CodeFilter = None,
        product_codes: CodeFilter = None,
    ) -> pd.DataFrame:
        df = _between(self._table(SALES), start_date, end_date)
        df = _isin(df, "customer_code", customer_codes)
        return _isin(df, "product_code", product_codes).reset_index(drop=True)

    def prices(
        self,
        product_codes: CodeFilter = None,
        fiscal_years: Optional[Iterable[int]] = None,
    ) -> pd.DataFrame:
        df = _isin(self._table(PRICES), "product_code", product_codes)
        return _isin(df, "fiscal_year", fiscal_years).reset_index(drop=True)

    def pre_invoice_deductions(
        self,
        customer_codes: CodeFilter = None,
        fiscal_years: Optional[Iterable[int]] = None,
    ) -> pd.DataFrame:
        df = _isin(self._table(PRE_INVOICE), "customer_code", customer_codes)
        return _isin(df, "fiscal_year", fiscal_years).reset_index(drop=True)

    def post_invoice_deductions(
        self,
        start_date=None,
        end_date=None,
        customer_codes: CodeFilter = None,
        product_codes: CodeFilter = None,
    ) -> pd.DataFrame:
        df = _between(self._table(POST_INVOICE), start_date, end_date)
        df = _isin(df, "customer_code", customer_codes)
        return _isin(df, "product_code", product_codes).reset_index(drop=True)

    def customers(self, customer_codes: CodeFilter = None, markets: CodeFilter = None) -> pd.DataFrame:
        df = _isin(self._table(CUSTOMERS), "customer_code", customer_codes)
        return _isin(df, "market", markets).reset_index(drop=True)

    def products(self, product_codes: CodeFilter = None) -> pd.DataFrame:
        return _isin(self._table(PRODUCTS), "product_code", product_codes).reset_index(drop=True)


class CsvFactStore(FrameFactStore):
    """FactStore reading the bronze layer CSVs under ``paths.raw``.

    Tables are read on first use and kept until :meth:`close`. Money and
    percentage columns are parsed from their text form straight into Decimal.
    """

    def __init__(self, paths: DataPaths) -> None:
        super().__init__()
        self.paths = paths
        if not paths.raw.exists():
            raise ConfigError(f"Raw data directory not found: {paths.raw}")

    def _table(self, name: str) -> pd.DataFrame:
        if name not in self._tables:
            path = self.paths.raw_table(TABLE_FILES[name])
            if not path.exists():
                raise ConfigError(f"Raw table file not found: {path}")
            text_cols = ["product_code", "customer_code"] + DECIMAL_COLUMNS.get(name, [])
            df = pd.read_csv(path, encoding="utf-8", dtype={c: str for c in text_cols})
            self._tables[name] = self._prepare(name, df)
            logger.debug("Loaded %s: %d rows from %s", name, len(df), path)
        return self._tables[name]

    def close(self) -> None:
        self._tables = {}


@dataclass(frozen=True)
class FactSnapshot:
    """The raw facts needed for one computation, read once."""

    sales: pd.DataFrame
    prices: pd.DataFrame
    pre_invoice: pd.DataFrame
    post_invoice: pd.DataFrame
    customers: pd.DataFrame
    products: pd.DataFrame


@contextmanager
def open_snapshot(
    store: FactStore,
    start_date=None,
    end_date=None,
    customer_codes: CodeFilter = None,
) -> Iterator[FactSnapshot]:
    """Read every raw table needed for a date range in one scoped acquisition.

    Prices and pre-invoice rates are restricted to the fiscal years covered by
    the selected sales. The store is closed when the block exits, whether it
    succeeded or raised.

    Args:
        store: Raw fact store.
        start_date: Optional first sales date (inclusive).
        end_date: Optional last sales date (inclusive).
        customer_codes: Optional customer restriction.

    Yields:
        FactSnapshot with the selected tables.

    """
    codes = None if customer_codes is None else set(customer_codes)
    try:
        sales = store.sales(start_date, end_date, customer_codes=codes)
        fiscal_years = sorted(set(fiscal_year_series(sales["date"]).tolist())) if len(sales) else []
        snapshot = FactSnapshot(
            sales=sales,
            prices=store.prices(fiscal_years=fiscal_years),
            pre_invoice=store.pre_invoice_deductions(customer_codes=codes, fiscal_years=fiscal_years),
            post_invoice=store.post_invoice_deductions(start_date, end_date, customer_codes=codes),
            customers=store.customers(),
            products=store.products(),
        )
        logger.info(
            "Opened snapshot: %d sales record(s) across fiscal years %s",
            len(sales),
            fiscal_years,
        )
        yield snapshot
    finally:
        store.close()
        logger.debug("Released fact store")


def snapshot_from_frames(
    sales: pd.DataFrame,
    prices: pd.DataFrame,
    pre_invoice: pd.DataFrame,
    post_invoice: pd.DataFrame,
    customers: pd.DataFrame,
    products: pd.DataFrame | None = None,
) -> FactSnapshot:
    """Validate and normalize in-memory tables into a FactSnapshot."""
    tables = {
        SALES: sales,
        PRICES: prices,
        PRE_INVOICE: pre_invoice,
        POST_INVOICE: post_invoice,
        CUSTOMERS: customers,
        PRODUCTS: products if products is not None else pd.DataFrame({"product_code": []}),
    }
    store = FrameFactStore(tables)
    return FactSnapshot(
        sales=store.sales(),
        prices=store.prices(),
        pre_invoice=store.pre_invoice_deductions(),
        post_invoice=store.post_invoice_deductions(),
        customers=store.customers(),
        products=store.products(),
    )


__all__ = [
    "CsvFactStore",
    "FactSnapshot",
    "FactStore",
    "FrameFactStore",
    "open_snapshot",
    "require_columns",
    "snapshot_from_frames",
]
