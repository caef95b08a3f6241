"""Silver layer, step 2: the pre-invoice / post-invoice discount cascade.

The cascade is an explicit sequence of stages, each one inspectable on its own:

    GROSS --apply_pre_invoice--> PRE_INVOICE_APPLIED --apply_post_invoice--> POST_INVOICE_APPLIED
                                                     \\--close_without_post_invoice--/

1. ``net_invoice_sales = gross_price_total * (1 - pre_invoice_discount_pct)``
2. ``post_invoice_discount_pct = discounts_pct + other_deductions_pct`` (not clamped)
3. ``net_sales = net_invoice_sales * (1 - post_invoice_discount_pct)``

All arithmetic is Decimal. ``net_sales`` is rounded to cents at the last step
only. When no post-invoice deduction exists the record keeps
``net_sales == net_invoice_sales`` and is flagged ``deduction_missing``.
Post-invoice sums above 1 give negative net sales; they are passed through and
surfaced by :func:`invariant_violations`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Optional

import pandas as pd

from netsales_core.exceptions import InvalidInputError
from netsales_core.models import (
    DUPLICATE_POST_INVOICE,
    DUPLICATE_PRE_INVOICE,
    MISSING_PRE_INVOICE,
    EnrichedSalesRecord,
    ExclusionReport,
    NetSalesRecord,
    PostInvoiceDeduction,
    PreInvoiceDeduction,
    as_frame,
    round_money,
    to_decimal,
)
from netsales_core.sales.enrich import ENRICHED_COLUMNS
from netsales_core.sales.joins import drop_ambiguous, join_exactly_one
from netsales_core.store import POST_INVOICE, PRE_INVOICE, require_columns

logger = logging.getLogger(__name__)

STAGE = "cascade"

PRE_INVOICE_KEY = ["customer_code", "fiscal_year"]
POST_INVOICE_KEY = ["customer_code", "product_code", "date"]

_ZERO = Decimal(0)
_ONE = Decimal(1)

NET_SALES_COLUMNS = ENRICHED_COLUMNS + [
    "pre_invoice_discount_pct",
    "discounts_pct",
    "other_deductions_pct",
    "post_invoice_discount_pct",
    "net_invoice_sales",
    "net_sales",
    "deduction_missing",
]


class CascadeStage(str, Enum):
    GROSS = "gross"
    PRE_INVOICE_APPLIED = "pre_invoice_applied"
    POST_INVOICE_APPLIED = "post_invoice_applied"


@dataclass(frozen=True)
class CascadeState:
    """Values known after each cascade stage.

    ``net_invoice_sales`` is kept exact; only ``net_sales`` is rounded.
    """

    stage: CascadeStage
    gross_price_total: Decimal
    pre_invoice_discount_pct: Optional[Decimal] = None
    net_invoice_sales: Optional[Decimal] = None
    post_invoice_discount_pct: Optional[Decimal] = None
    net_sales: Optional[Decimal] = None
    deduction_missing: bool = False


def _expect(state: CascadeState, stage: CascadeStage, step: str) -> None:
    if state.stage is not stage:
        raise ValueError(f"Cannot {step} at stage '{state.stage.value}', expected '{stage.value}'")


def start_cascade(gross_price_total: Decimal) -> CascadeState:
    return CascadeState(stage=CascadeStage.GROSS, gross_price_total=to_decimal(gross_price_total))


def apply_pre_invoice(state: CascadeState, pre_invoice_discount_pct: Decimal) -> CascadeState:
    _expect(state, CascadeStage.GROSS, "apply pre-invoice discount")
    pct = to_decimal(pre_invoice_discount_pct)
    return replace(
        state,
        stage=CascadeStage.PRE_INVOICE_APPLIED,
        pre_invoice_discount_pct=pct,
        net_invoice_sales=state.gross_price_total * (_ONE - pct),
    )


def apply_post_invoice(
    state: CascadeState,
    discounts_pct: Decimal,
    other_deductions_pct: Decimal,
) -> CascadeState:
    _expect(state, CascadeStage.PRE_INVOICE_APPLIED, "apply post-invoice deductions")
    pct = to_decimal(discounts_pct) + to_decimal(other_deductions_pct)
    return replace(
        state,
        stage=CascadeStage.POST_INVOICE_APPLIED,
        post_invoice_discount_pct=pct,
        net_sales=round_money(state.net_invoice_sales * (_ONE - pct)),
    )


def close_without_post_invoice(state: CascadeState) -> CascadeState:
    """Terminal transition for records without a post-invoice deduction."""
    _expect(state, CascadeStage.PRE_INVOICE_APPLIED, "close cascade")
    return replace(
        state,
        stage=CascadeStage.POST_INVOICE_APPLIED,
        post_invoice_discount_pct=_ZERO,
        net_sales=round_money(state.net_invoice_sales),
        deduction_missing=True,
    )


def run_cascade(
    gross_price_total: Decimal,
    pre_invoice_discount_pct: Decimal,
    discounts_pct: Optional[Decimal] = None,
    other_deductions_pct: Optional[Decimal] = None,
) -> CascadeState:
    """Run every stage; a None ``discounts_pct`` means no post-invoice deduction."""
    state = apply_pre_invoice(start_cascade(gross_price_total), pre_invoice_discount_pct)
    if discounts_pct is None:
        return close_without_post_invoice(state)
    return apply_post_invoice(state, discounts_pct, other_deductions_pct or _ZERO)


def apply_cascade(
    enriched: EnrichedSalesRecord,
    pre: PreInvoiceDeduction,
    post: Optional[PostInvoiceDeduction] = None,
) -> NetSalesRecord:
    """Apply both discount stages to one enriched record.

    Raises:
        InvalidInputError: If ``pre`` or ``post`` belongs to another record.

    """
    if (pre.customer_code, pre.fiscal_year) != (enriched.customer_code, enriched.fiscal_year):
        raise InvalidInputError(
            f"Pre-invoice rate for {pre.customer_code}/FY{pre.fiscal_year} "
            f"does not apply to record {enriched.record_id}"
        )
    if post is not None and (post.customer_code, post.product_code, post.date) != (
        enriched.customer_code,
        enriched.product_code,
        enriched.date,
    ):
        raise InvalidInputError(f"Post-invoice deduction does not apply to record {enriched.record_id}")

    state = run_cascade(
        enriched.gross_price_total,
        pre.pre_invoice_discount_pct,
        None if post is None else post.discounts_pct,
        None if post is None else post.other_deductions_pct,
    )
    return NetSalesRecord(
        record_id=enriched.record_id,
        date=enriched.date,
        product_code=enriched.product_code,
        customer_code=enriched.customer_code,
        sold_quantity=enriched.sold_quantity,
        fiscal_year=enriched.fiscal_year,
        gross_price=enriched.gross_price,
        gross_price_total=enriched.gross_price_total,
        pre_invoice_discount_pct=state.pre_invoice_discount_pct,
        post_invoice_discount_pct=state.post_invoice_discount_pct,
        net_invoice_sales=round_money(state.net_invoice_sales),
        net_sales=state.net_sales,
        deduction_missing=state.deduction_missing,
    )


def check_invariants(record: NetSalesRecord) -> list[str]:
    """Return the broken links of ``0 <= net_sales <= net_invoice_sales <= gross_price_total``."""
    problems = []
    if record.net_sales < 0:
        problems.append(f"net_sales {record.net_sales} is negative")
    if record.net_sales > record.net_invoice_sales:
        problems.append(f"net_sales {record.net_sales} exceeds net_invoice_sales {record.net_invoice_sales}")
    if record.net_invoice_sales > record.gross_price_total:
        problems.append(
            f"net_invoice_sales {record.net_invoice_sales} exceeds gross_price_total {record.gross_price_total}"
        )
    return problems


def invariant_violations(net: pd.DataFrame) -> pd.DataFrame:
    """Rows of a net sales frame breaking the invariant chain."""
    if len(net) == 0:
        return net.iloc[0:0]
    ok = [
        _ZERO <= ns <= nis <= gross
        for ns, nis, gross in zip(net["net_sales"], net["net_invoice_sales"], net["gross_price_total"])
    ]
    return net[[not flag for flag in ok]]


@dataclass
class CascadeResult:
    """Output of :func:`compute_net_sales`.

    Attributes:
        net: One row per record that went through both stages (NET_SALES_COLUMNS
            plus label columns carried over from the enriched frame).
        report: Records excluded for a missing or ambiguous pre-invoice rate or an
            ambiguous post-invoice deduction.
        violations: Rows of ``net`` breaking the invariant chain.
    """

    net: pd.DataFrame
    report: ExclusionReport
    violations: pd.DataFrame

    @property
    def deduction_missing_count(self) -> int:
        if len(self.net) == 0:
            return 0
        return int(self.net["deduction_missing"].sum())


def _pre_invoice_table(pre_invoice: pd.DataFrame) -> pd.DataFrame:
    require_columns(pre_invoice, PRE_INVOICE)
    table = pre_invoice[PRE_INVOICE_KEY + ["pre_invoice_discount_pct"]]
    return table.assign(
        customer_code=table["customer_code"].astype(str),
        fiscal_year=table["fiscal_year"].astype("int64"),
        pre_invoice_discount_pct=table["pre_invoice_discount_pct"].map(to_decimal),
    )


def _post_invoice_table(post_invoice: pd.DataFrame) -> pd.DataFrame:
    require_columns(post_invoice, POST_INVOICE)
    table = post_invoice[POST_INVOICE_KEY + ["discounts_pct", "other_deductions_pct"]]
    return table.assign(
        customer_code=table["customer_code"].astype(str),
        product_code=table["product_code"].astype(str),
        date=pd.to_datetime(table["date"]).dt.date,
        discounts_pct=table["discounts_pct"].map(to_decimal),
        other_deductions_pct=table["other_deductions_pct"].map(to_decimal),
    )


def compute_net_sales(
    enriched: pd.DataFrame,
    pre_invoice: pd.DataFrame | Iterable[PreInvoiceDeduction],
    post_invoice: pd.DataFrame | Iterable[PostInvoiceDeduction],
    *,
    strict: bool = False,
) -> CascadeResult:
    """Run the discount cascade over an enriched sales frame.

    Args:
        enriched: Output of :func:`netsales_core.sales.enrich.enrich`.
        pre_invoice: Pre-invoice rates per customer and fiscal year.
        post_invoice: Post-invoice deductions per customer, product and month.
        strict: Raise DataIntegrityError on the first ambiguous join.

    Returns:
        CascadeResult with the net sales frame, exclusions and invariant violations.

    """
    report = ExclusionReport()
    pre_table = _pre_invoice_table(as_frame(pre_invoice, PreInvoiceDeduction))
    post_table = _post_invoice_table(as_frame(post_invoice, PostInvoiceDeduction))

    records = join_exactly_one(
        enriched,
        pre_table,
        PRE_INVOICE_KEY,
        what="pre-invoice rate",
        stage=STAGE,
        missing_reason=MISSING_PRE_INVOICE,
        duplicate_reason=DUPLICATE_PRE_INVOICE,
        report=report,
        strict=strict,
    )
    records, post_table = drop_ambiguous(
        records,
        post_table,
        POST_INVOICE_KEY,
        what="post-invoice deduction",
        stage=STAGE,
        reason=DUPLICATE_POST_INVOICE,
        report=report,
        strict=strict,
    )
    merged = records.merge(post_table, on=POST_INVOICE_KEY, how="left", indicator=True)
    has_post = (merged["_merge"] == "both").tolist()
    merged = merged.drop(columns="_merge").reset_index(drop=True)

    states = [
        run_cascade(gross, pre, disc if found else None, other if found else None)
        for gross, pre, disc, other, found in zip(
            merged["gross_price_total"].tolist(),
            merged["pre_invoice_discount_pct"].tolist(),
            merged["discounts_pct"].tolist(),
            merged["other_deductions_pct"].tolist(),
            has_post,
        )
    ]
    merged["discounts_pct"] = pd.Series(
        [d if found else None for d, found in zip(merged["discounts_pct"].tolist(), has_post)],
        index=merged.index,
        dtype="object",
    )
    merged["other_deductions_pct"] = pd.Series(
        [o if found else None for o, found in zip(merged["other_deductions_pct"].tolist(), has_post)],
        index=merged.index,
        dtype="object",
    )
    for column in ("post_invoice_discount_pct", "net_sales"):
        merged[column] = pd.Series([getattr(s, column) for s in states], index=merged.index, dtype="object")
    merged["net_invoice_sales"] = pd.Series(
        [round_money(s.net_invoice_sales) for s in states], index=merged.index, dtype="object"
    )
    merged["deduction_missing"] = pd.Series([s.deduction_missing for s in states], index=merged.index, dtype="bool")

    extra = [c for c in merged.columns if c not in NET_SALES_COLUMNS]
    net = merged[NET_SALES_COLUMNS + extra]

    violations = invariant_violations(net)
    if len(violations):
        logger.warning(
            "%d net sales record(s) break 0 <= net_sales <= net_invoice_sales <= gross_price_total",
            len(violations),
        )
    result = CascadeResult(net=net, report=report, violations=violations)
    logger.info(
        "Cascade applied to %d record(s); %d without post-invoice deduction",
        len(net),
        result.deduction_missing_count,
    )
    return result
