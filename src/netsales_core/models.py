"""Record types shared across the pipeline.

Bulk data moves through the pipeline as pandas DataFrames whose columns carry
the same names as the fields below. The dataclasses are the per-record form
used by the record-level operations (``enrich_record``, ``apply_cascade``) and
by callers that build small inputs by hand.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterable

import pandas as pd

from netsales_core.config import MONEY_PLACES

_CENT = Decimal(1).scaleb(-MONEY_PLACES)


def to_decimal(value: Any) -> Decimal:
    """Convert a numeric value to Decimal without binary float drift.

    Floats go through their shortest repr, so ``0.1`` becomes ``Decimal("0.1")``.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value).strip())


def round_money(value: Decimal) -> Decimal:
    """Round a currency amount to two decimal places (half up)."""
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


class Badge(str, Enum):
    """Market performance tier."""

    GOLD = "Gold"
    SILVER = "Silver"


@dataclass(frozen=True)
class Product:
    product_code: str
    product: str = ""
    variant: str = ""
    division: str = ""
    segment: str = ""
    category: str = ""


@dataclass(frozen=True)
class Customer:
    customer_code: str
    market: str
    customer: str = ""
    platform: str = ""
    channel: str = ""
    region: str = ""


@dataclass(frozen=True)
class SalesRecord:
    """One product/customer/month sale. ``date`` is the first of the month."""

    date: date
    product_code: str
    customer_code: str
    sold_quantity: int


@dataclass(frozen=True)
class PriceRecord:
    product_code: str
    fiscal_year: int
    gross_price: Decimal


@dataclass(frozen=True)
class PreInvoiceDeduction:
    customer_code: str
    fiscal_year: int
    pre_invoice_discount_pct: Decimal


@dataclass(frozen=True)
class PostInvoiceDeduction:
    customer_code: str
    product_code: str
    date: date
    discounts_pct: Decimal
    other_deductions_pct: Decimal


@dataclass(frozen=True)
class EnrichedSalesRecord:
    record_id: str
    date: date
    product_code: str
    customer_code: str
    sold_quantity: int
    fiscal_year: int
    gross_price: Decimal
    gross_price_total: Decimal


@dataclass(frozen=True)
class NetSalesRecord:
    """Enriched record after both discount stages.

    ``deduction_missing`` is True when no post-invoice deduction existed and
    ``net_sales`` therefore equals ``net_invoice_sales``.
    """

    record_id: str
    date: date
    product_code: str
    customer_code: str
    sold_quantity: int
    fiscal_year: int
    gross_price: Decimal
    gross_price_total: Decimal
    pre_invoice_discount_pct: Decimal
    post_invoice_discount_pct: Decimal
    net_invoice_sales: Decimal
    net_sales: Decimal
    deduction_missing: bool = False


# Exclusion reasons
MISSING_PRICE = "missing_price"
MISSING_PRE_INVOICE = "missing_pre_invoice"
DUPLICATE_PRICE = "duplicate_price"
DUPLICATE_PRE_INVOICE = "duplicate_pre_invoice"
DUPLICATE_POST_INVOICE = "duplicate_post_invoice"


@dataclass(frozen=True)
class SkippedRecord:
    """A sales record left out of a stage, with the reason.

    Attributes:
        record_id: Natural key of the sales record.
        stage: Stage that skipped it ("enrich" or "cascade").
        reason: One of the exclusion reason constants.
        detail: Human-readable detail (the integrity error message, for example).
    """

    record_id: str
    stage: str
    reason: str
    detail: str = ""


@dataclass
class ExclusionReport:
    """Structured list of records skipped by the pipeline."""

    skipped: list[SkippedRecord] = field(default_factory=list)

    def add(self, record_id: str, stage: str, reason: str, detail: str = "") -> None:
        self.skipped.append(SkippedRecord(record_id, stage, reason, detail))

    def extend(self, other: ExclusionReport) -> None:
        self.skipped.extend(other.skipped)

    def counts(self) -> dict[str, int]:
        """Number of skipped records per reason."""
        result: dict[str, int] = {}
        for item in self.skipped:
            result[item.reason] = result.get(item.reason, 0) + 1
        return result

    def record_ids(self, reason: str | None = None) -> list[str]:
        return [s.record_id for s in self.skipped if reason is None or s.reason == reason]

    def to_frame(self) -> pd.DataFrame:
        columns = [f.name for f in fields(SkippedRecord)]
        return pd.DataFrame([asdict(s) for s in self.skipped], columns=columns)

    def __len__(self) -> int:
        return len(self.skipped)


def to_frame(records: Iterable[Any], record_type: type) -> pd.DataFrame:
    """Build a DataFrame from dataclass records, keeping the field order.

    An empty iterable still yields the right columns.
    """
    columns = [f.name for f in fields(record_type)]
    return pd.DataFrame([asdict(r) for r in records], columns=columns)


def as_frame(data: pd.DataFrame | Iterable[Any], record_type: type) -> pd.DataFrame:
    """Accept either a DataFrame or an iterable of records of ``record_type``."""
    if isinstance(data, pd.DataFrame):
        return data
    return to_frame(data, record_type)
