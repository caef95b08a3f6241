"""Silver layer, step 1: enrich sales records with gross prices.

Each sales record is joined to the gross price of its product for the record's
fiscal year, and ``gross_price_total`` is computed and rounded to cents here so
that the discount cascade works on reporting-grade values.

Join policy on ``(product_code, fiscal_year)``:
- exactly one price: the record is enriched
- no price: the record is dropped and reported as ``missing_price``
- several prices: a DataIntegrityError; the affected records are reported as
  ``duplicate_price`` (or the error is raised when ``strict=True``)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

import pandas as pd

from netsales_core.exceptions import DataIntegrityError, InvalidInputError
from netsales_core.fiscal import annotate_fiscal_year, get_fiscal_year, make_record_ids
from netsales_core.models import (
    DUPLICATE_PRICE,
    MISSING_PRICE,
    Customer,
    EnrichedSalesRecord,
    ExclusionReport,
    PriceRecord,
    Product,
    SalesRecord,
    as_frame,
    round_money,
    to_decimal,
)
from netsales_core.sales.joins import join_exactly_one
from netsales_core.store import CUSTOMERS, PRICES, PRODUCTS, SALES, require_columns

logger = logging.getLogger(__name__)

STAGE = "enrich"

PRICE_KEY = ["product_code", "fiscal_year"]

ENRICHED_COLUMNS = [
    "record_id",
    "date",
    "product_code",
    "customer_code",
    "sold_quantity",
    "fiscal_year",
    "gross_price",
    "gross_price_total",
]


@dataclass
class EnrichmentResult:
    """Output of :func:`enrich`.

    Attributes:
        enriched: One row per enriched sales record (ENRICHED_COLUMNS plus any
            customer/product label columns).
        report: Records that were excluded, with reasons.
    """

    enriched: pd.DataFrame
    report: ExclusionReport


def validate_sales(sales: pd.DataFrame) -> None:
    """Reject sales input with missing columns or negative quantities."""
    require_columns(sales, SALES)
    negative = sales["sold_quantity"] < 0
    if negative.any():
        ids = make_record_ids(sales[negative]).tolist()
        raise InvalidInputError(
            f"{len(ids)} sales record(s) with negative sold_quantity: {ids[:5]}"
        )


def add_labels(
    df: pd.DataFrame,
    customers: pd.DataFrame | None,
    products: pd.DataFrame | None,
) -> pd.DataFrame:
    """Left-join descriptive customer and product columns onto ``df``.

    Label columns already present in ``df`` are left untouched.
    """
    if customers is not None and len(customers.columns):
        require_columns(customers, CUSTOMERS)
        cols = ["customer_code"] + [c for c in customers.columns if c not in df.columns]
        labels = customers[cols].drop_duplicates("customer_code")
        labels = labels.assign(customer_code=labels["customer_code"].astype(str))
        df = df.merge(labels, on="customer_code", how="left")
    if products is not None and len(products.columns):
        require_columns(products, PRODUCTS)
        cols = ["product_code"] + [c for c in products.columns if c not in df.columns]
        labels = products[cols].drop_duplicates("product_code")
        labels = labels.assign(product_code=labels["product_code"].astype(str))
        df = df.merge(labels, on="product_code", how="left")
    return df


def enrich(
    sales: pd.DataFrame | Iterable[SalesRecord],
    prices: pd.DataFrame | Iterable[PriceRecord],
    customers: pd.DataFrame | Iterable[Customer] | None = None,
    products: pd.DataFrame | Iterable[Product] | None = None,
    *,
    strict: bool = False,
    annotation: pd.Series | None = None,
) -> EnrichmentResult:
    """Join sales records to their annual gross price and compute gross totals.

    Args:
        sales: Sales records (DataFrame or SalesRecord iterable). A precomputed
            ``fiscal_year`` column is used as is.
        prices: Gross prices per product and fiscal year.
        customers: Optional customer dimension, joined for labels only.
        products: Optional product dimension, joined for labels only.
        strict: Raise DataIntegrityError on the first duplicate price instead of
            skipping the affected records.
        annotation: Optional materialized fiscal year mapping (record_id index).

    Returns:
        EnrichmentResult with the enriched frame and the exclusion report.

    Raises:
        InvalidInputError: If a sales record has a negative sold_quantity.
        DataQualityError: If required columns are missing.
        DataIntegrityError: Only when ``strict=True``.

    """
    sales_df = as_frame(sales, SalesRecord)
    prices_df = as_frame(prices, PriceRecord)
    validate_sales(sales_df)
    require_columns(prices_df, PRICES)
    report = ExclusionReport()

    annotated = annotate_fiscal_year(sales_df, annotation)
    annotated = annotated.assign(
        product_code=annotated["product_code"].astype(str),
        customer_code=annotated["customer_code"].astype(str),
    )
    price_table = prices_df[PRICE_KEY + ["gross_price"]].assign(
        product_code=prices_df["product_code"].astype(str),
        fiscal_year=prices_df["fiscal_year"].astype("int64"),
        gross_price=prices_df["gross_price"].map(to_decimal),
    )

    enriched = join_exactly_one(
        annotated,
        price_table,
        PRICE_KEY,
        what="gross price",
        stage=STAGE,
        missing_reason=MISSING_PRICE,
        duplicate_reason=DUPLICATE_PRICE,
        report=report,
        strict=strict,
    )
    enriched["gross_price_total"] = pd.Series(
        [
            round_money(price * qty)
            for price, qty in zip(enriched["gross_price"].tolist(), enriched["sold_quantity"].tolist())
        ],
        index=enriched.index,
        dtype="object",
    )
    extra = [c for c in enriched.columns if c not in ENRICHED_COLUMNS]
    enriched = enriched[ENRICHED_COLUMNS + extra]

    enriched = add_labels(
        enriched,
        None if customers is None else as_frame(customers, Customer),
        None if products is None else as_frame(products, Product),
    )
    logger.info("Enriched %d of %d sales record(s)", len(enriched), len(sales_df))
    return EnrichmentResult(enriched=enriched, report=report)


def enrich_record(sale: SalesRecord, prices: Iterable[PriceRecord]) -> EnrichedSalesRecord | None:
    """Enrich a single sales record.

    Returns None when no price exists for the product in the record's fiscal
    year (the record is dropped).

    Raises:
        InvalidInputError: If sold_quantity is negative.
        DataIntegrityError: If more than one price matches.

    """
    if sale.sold_quantity < 0:
        raise InvalidInputError(f"Negative sold_quantity {sale.sold_quantity} for {sale}")
    fiscal_year = get_fiscal_year(sale.date)
    matches = [
        p for p in prices if p.product_code == sale.product_code and p.fiscal_year == fiscal_year
    ]
    if not matches:
        return None
    if len(matches) > 1:
        raise DataIntegrityError(
            f"{len(matches)} gross prices for product {sale.product_code} in fiscal year {fiscal_year}"
        )
    price = matches[0].gross_price
    return EnrichedSalesRecord(
        record_id=f"{sale.date:%Y-%m-%d}|{sale.product_code}|{sale.customer_code}",
        date=sale.date,
        product_code=sale.product_code,
        customer_code=sale.customer_code,
        sold_quantity=sale.sold_quantity,
        fiscal_year=fiscal_year,
        gross_price=price,
        gross_price_total=round_money(price * sale.sold_quantity),
    )
