"""Tests for the pre-invoice / post-invoice discount cascade."""

from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from netsales_core.exceptions import DataIntegrityError, InvalidInputError
from netsales_core.models import (
    DUPLICATE_POST_INVOICE,
    MISSING_PRE_INVOICE,
    EnrichedSalesRecord,
    PostInvoiceDeduction,
    PreInvoiceDeduction,
)
from netsales_core.sales.cascade import (
    NET_SALES_COLUMNS,
    CascadeStage,
    apply_cascade,
    apply_post_invoice,
    apply_pre_invoice,
    check_invariants,
    close_without_post_invoice,
    compute_net_sales,
    run_cascade,
    start_cascade,
)
from netsales_core.sales.enrich import enrich


@pytest.fixture
def enriched_record() -> EnrichedSalesRecord:
    return EnrichedSalesRecord(
        record_id="2020-09-01|P1|C1",
        date=date(2020, 9, 1),
        product_code="P1",
        customer_code="C1",
        sold_quantity=10,
        fiscal_year=2021,
        gross_price=Decimal("10.00"),
        gross_price_total=Decimal("100.00"),
    )


class TestStages:
    """Tests for the explicit stage transitions."""

    def test_full_cascade(self) -> None:
        state = apply_pre_invoice(start_cascade(Decimal("100.00")), Decimal("0.10"))
        assert state.stage is CascadeStage.PRE_INVOICE_APPLIED
        assert state.net_invoice_sales == Decimal("90.00")

        state = apply_post_invoice(state, Decimal("0.25"), Decimal("0.05"))
        assert state.stage is CascadeStage.POST_INVOICE_APPLIED
        assert state.post_invoice_discount_pct == Decimal("0.30")
        assert state.net_sales == Decimal("63.00")
        assert not state.deduction_missing

    def test_post_invoice_before_pre_invoice_rejected(self) -> None:
        with pytest.raises(ValueError, match="expected 'pre_invoice_applied'"):
            apply_post_invoice(start_cascade(Decimal("100.00")), Decimal("0.1"), Decimal("0"))

    def test_pre_invoice_applied_once(self) -> None:
        state = apply_pre_invoice(start_cascade(Decimal("100.00")), Decimal("0.10"))
        with pytest.raises(ValueError):
            apply_pre_invoice(state, Decimal("0.10"))

    def test_close_requires_pre_invoice(self) -> None:
        with pytest.raises(ValueError):
            close_without_post_invoice(start_cascade(Decimal("100.00")))

    def test_zero_discounts_keep_gross(self) -> None:
        state = run_cascade(Decimal("123.45"), Decimal("0"), Decimal("0"), Decimal("0"))
        assert state.net_invoice_sales == Decimal("123.45")
        assert state.net_sales == Decimal("123.45")

    def test_missing_post_invoice_flags_record(self) -> None:
        state = run_cascade(Decimal("100.00"), Decimal("0.10"))

        assert state.deduction_missing
        assert state.post_invoice_discount_pct == Decimal("0")
        assert state.net_sales == state.net_invoice_sales == Decimal("90.00")

    def test_rounding_only_at_last_step(self) -> None:
        """Net sales come from the exact net invoice value, not a rounded one."""
        state = run_cascade(Decimal("10.01"), Decimal("0.5"), Decimal("0.5"), Decimal("0"))

        assert state.net_invoice_sales == Decimal("5.005")
        assert state.net_sales == Decimal("2.50")

    def test_post_invoice_sum_above_one_not_clamped(self) -> None:
        state = run_cascade(Decimal("100.00"), Decimal("0.10"), Decimal("0.8"), Decimal("0.3"))
        assert state.net_sales == Decimal("-9.00")


class TestApplyCascade:
    """Tests for the record-level cascade."""

    def test_net_sales_record(self, enriched_record: EnrichedSalesRecord) -> None:
        record = apply_cascade(
            enriched_record,
            PreInvoiceDeduction("C1", 2021, Decimal("0.10")),
            PostInvoiceDeduction("C1", "P1", date(2020, 9, 1), Decimal("0.25"), Decimal("0.05")),
        )

        assert record.net_invoice_sales == Decimal("90.00")
        assert record.net_sales == Decimal("63.00")
        assert record.post_invoice_discount_pct == Decimal("0.30")
        assert check_invariants(record) == []

    def test_monotone_chain(self, enriched_record: EnrichedSalesRecord) -> None:
        record = apply_cascade(
            enriched_record,
            PreInvoiceDeduction("C1", 2021, Decimal("0.3333")),
            PostInvoiceDeduction("C1", "P1", date(2020, 9, 1), Decimal("0.1234"), Decimal("0.0567")),
        )
        assert Decimal(0) <= record.net_sales <= record.net_invoice_sales <= record.gross_price_total

    def test_missing_post_invoice(self, enriched_record: EnrichedSalesRecord) -> None:
        record = apply_cascade(enriched_record, PreInvoiceDeduction("C1", 2021, Decimal("0.10")))

        assert record.deduction_missing
        assert record.net_sales == record.net_invoice_sales

    def test_excessive_deduction_flagged(self, enriched_record: EnrichedSalesRecord) -> None:
        record = apply_cascade(
            enriched_record,
            PreInvoiceDeduction("C1", 2021, Decimal("0.10")),
            PostInvoiceDeduction("C1", "P1", date(2020, 9, 1), Decimal("0.8"), Decimal("0.3")),
        )

        problems = check_invariants(record)
        assert len(problems) == 1
        assert "negative" in problems[0]

    def test_pre_invoice_of_other_year_rejected(self, enriched_record: EnrichedSalesRecord) -> None:
        with pytest.raises(InvalidInputError):
            apply_cascade(enriched_record, PreInvoiceDeduction("C1", 2020, Decimal("0.10")))

    def test_post_invoice_of_other_month_rejected(self, enriched_record: EnrichedSalesRecord) -> None:
        with pytest.raises(InvalidInputError):
            apply_cascade(
                enriched_record,
                PreInvoiceDeduction("C1", 2021, Decimal("0.10")),
                PostInvoiceDeduction("C1", "P1", date(2020, 10, 1), Decimal("0.1"), Decimal("0")),
            )


class TestComputeNetSales:
    """Tests for the frame form of the cascade."""

    @pytest.fixture
    def enriched(self) -> pd.DataFrame:
        sales = pd.DataFrame(
            {
                "date": ["2020-09-01", "2020-10-01", "2020-11-01"],
                "product_code": ["P1", "P1", "P1"],
                "customer_code": ["C1", "C1", "C2"],
                "sold_quantity": [10, 20, 5],
            }
        )
        prices = pd.DataFrame({"product_code": ["P1"], "fiscal_year": [2021], "gross_price": ["10.00"]})
        return enrich(sales, prices).enriched

    @pytest.fixture
    def pre_invoice(self) -> pd.DataFrame:
        return pd.DataFrame(
            {"customer_code": ["C1", "C2"], "fiscal_year": [2021, 2021], "pre_invoice_discount_pct": ["0.10", "0.20"]}
        )

    @pytest.fixture
    def post_invoice(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "customer_code": ["C1", "C2"],
                "product_code": ["P1", "P1"],
                "date": ["2020-09-01", "2020-11-01"],
                "discounts_pct": ["0.25", "0.10"],
                "other_deductions_pct": ["0.05", "0.00"],
            }
        )

    def test_net_sales_values(
        self, enriched: pd.DataFrame, pre_invoice: pd.DataFrame, post_invoice: pd.DataFrame
    ) -> None:
        result = compute_net_sales(enriched, pre_invoice, post_invoice)
        net = result.net.set_index("record_id")

        assert list(result.net.columns[: len(NET_SALES_COLUMNS)]) == NET_SALES_COLUMNS
        assert net.loc["2020-09-01|P1|C1", "net_sales"] == Decimal("63.00")
        assert net.loc["2020-11-01|P1|C2", "net_invoice_sales"] == Decimal("40.00")
        assert net.loc["2020-11-01|P1|C2", "net_sales"] == Decimal("36.00")
        assert len(result.report) == 0
        assert len(result.violations) == 0

    def test_missing_post_invoice_flag(
        self, enriched: pd.DataFrame, pre_invoice: pd.DataFrame, post_invoice: pd.DataFrame
    ) -> None:
        result = compute_net_sales(enriched, pre_invoice, post_invoice)
        row = result.net.set_index("record_id").loc["2020-10-01|P1|C1"]

        assert bool(row["deduction_missing"])
        assert row["net_sales"] == row["net_invoice_sales"] == Decimal("180.00")
        assert pd.isna(row["discounts_pct"])
        assert result.deduction_missing_count == 1

    def test_missing_pre_invoice_excluded(
        self, enriched: pd.DataFrame, pre_invoice: pd.DataFrame, post_invoice: pd.DataFrame
    ) -> None:
        result = compute_net_sales(enriched, pre_invoice.iloc[[0]], post_invoice)

        assert result.report.record_ids(MISSING_PRE_INVOICE) == ["2020-11-01|P1|C2"]
        assert len(result.net) == 2

    def test_duplicate_post_invoice_reported(
        self, enriched: pd.DataFrame, pre_invoice: pd.DataFrame, post_invoice: pd.DataFrame
    ) -> None:
        dup = pd.concat([post_invoice, post_invoice.iloc[[0]]], ignore_index=True)

        result = compute_net_sales(enriched, pre_invoice, dup)

        assert result.report.record_ids(DUPLICATE_POST_INVOICE) == ["2020-09-01|P1|C1"]
        assert "2020-09-01|P1|C1" not in set(result.net["record_id"])

    def test_duplicate_pre_invoice_strict(
        self, enriched: pd.DataFrame, pre_invoice: pd.DataFrame, post_invoice: pd.DataFrame
    ) -> None:
        dup = pd.concat([pre_invoice, pre_invoice.iloc[[1]]], ignore_index=True)

        with pytest.raises(DataIntegrityError, match="pre-invoice rate"):
            compute_net_sales(enriched, dup, post_invoice, strict=True)

    def test_violation_surfaced(
        self, enriched: pd.DataFrame, pre_invoice: pd.DataFrame, post_invoice: pd.DataFrame
    ) -> None:
        excessive = post_invoice.assign(discounts_pct=["0.9", "0.10"], other_deductions_pct=["0.2", "0.00"])

        result = compute_net_sales(enriched, pre_invoice, excessive)

        assert result.violations["record_id"].tolist() == ["2020-09-01|P1|C1"]
        assert result.violations["net_sales"].iloc[0] == Decimal("-9.00")
