"""Tests for sales enrichment with gross prices."""

from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from netsales_core.exceptions import (
    DataIntegrityError,
    DataQualityError,
    InvalidInputError,
    MissingReferenceWarning,
)
from netsales_core.models import DUPLICATE_PRICE, MISSING_PRICE, PriceRecord, SalesRecord
from netsales_core.sales.enrich import ENRICHED_COLUMNS, enrich, enrich_record


@pytest.fixture
def sales() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "date": ["2020-09-01", "2020-10-01", "2021-09-01"],
            "product_code": ["P1", "P2", "P1"],
            "customer_code": ["C1", "C1", "C2"],
            "sold_quantity": [10, 3, 1],
        }
    )


@pytest.fixture
def prices() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "product_code": ["P1", "P1"],
            "fiscal_year": [2021, 2022],
            "gross_price": [Decimal("19.0573"), Decimal("21.4565")],
        }
    )


class TestEnrich:
    """Tests for the frame form of enrichment."""

    def test_joins_price_of_record_fiscal_year(self, sales: pd.DataFrame, prices: pd.DataFrame) -> None:
        result = enrich(sales, prices)
        enriched = result.enriched.set_index("record_id")

        assert list(result.enriched.columns[: len(ENRICHED_COLUMNS)]) == ENRICHED_COLUMNS
        assert enriched.loc["2020-09-01|P1|C1", "gross_price"] == Decimal("19.0573")
        assert enriched.loc["2021-09-01|P1|C2", "gross_price"] == Decimal("21.4565")
        assert enriched.loc["2021-09-01|P1|C2", "fiscal_year"] == 2022

    def test_gross_total_rounded_to_cents(self, sales: pd.DataFrame, prices: pd.DataFrame) -> None:
        result = enrich(sales, prices)
        totals = dict(zip(result.enriched["record_id"], result.enriched["gross_price_total"]))

        assert totals["2020-09-01|P1|C1"] == Decimal("190.57")
        assert totals["2021-09-01|P1|C2"] == Decimal("21.46")

    def test_rounding_is_half_up(self) -> None:
        sales = pd.DataFrame(
            {"date": ["2020-09-01"], "product_code": ["P1"], "customer_code": ["C1"], "sold_quantity": [1]}
        )
        prices = pd.DataFrame({"product_code": ["P1"], "fiscal_year": [2021], "gross_price": ["0.125"]})

        result = enrich(sales, prices)
        assert result.enriched["gross_price_total"].tolist() == [Decimal("0.13")]

    def test_missing_price_excluded_exactly_once(self, sales: pd.DataFrame, prices: pd.DataFrame) -> None:
        result = enrich(sales, prices)

        assert "2020-10-01|P2|C1" not in set(result.enriched["record_id"])
        assert result.report.record_ids() == ["2020-10-01|P2|C1"]
        assert result.report.counts() == {MISSING_PRICE: 1}
        assert len(result.enriched) + len(result.report) == len(sales)

    def test_missing_price_warns(self, sales: pd.DataFrame, prices: pd.DataFrame) -> None:
        with pytest.warns(MissingReferenceWarning, match="no gross price"):
            enrich(sales, prices)

    def test_duplicate_price_reported(self, sales: pd.DataFrame, prices: pd.DataFrame) -> None:
        dup = pd.concat([prices, prices.iloc[[0]]], ignore_index=True)

        result = enrich(sales, dup)

        assert result.report.record_ids(DUPLICATE_PRICE) == ["2020-09-01|P1|C1"]
        assert "2020-09-01|P1|C1" not in set(result.enriched["record_id"])
        assert "2021-09-01|P1|C2" in set(result.enriched["record_id"])

    def test_duplicate_price_raises_when_strict(self, sales: pd.DataFrame, prices: pd.DataFrame) -> None:
        dup = pd.concat([prices, prices.iloc[[0]]], ignore_index=True)

        with pytest.raises(DataIntegrityError, match="2 gross price rows"):
            enrich(sales, dup, strict=True)

    def test_negative_quantity_rejected(self, sales: pd.DataFrame, prices: pd.DataFrame) -> None:
        bad = sales.assign(sold_quantity=[10, -1, 1])

        with pytest.raises(InvalidInputError, match="negative sold_quantity"):
            enrich(bad, prices)

    def test_zero_quantity_gives_zero_total(self, sales: pd.DataFrame, prices: pd.DataFrame) -> None:
        result = enrich(sales.assign(sold_quantity=0), prices)
        assert set(result.enriched["gross_price_total"]) == {Decimal("0.00")}

    def test_missing_columns(self, prices: pd.DataFrame) -> None:
        with pytest.raises(DataQualityError):
            enrich(pd.DataFrame({"date": ["2020-09-01"]}), prices)

    def test_labels_joined(self, sales: pd.DataFrame, prices: pd.DataFrame) -> None:
        customers = pd.DataFrame({"customer_code": ["C1", "C2"], "market": ["India", "USA"]})

        result = enrich(sales, prices, customers)

        markets = dict(zip(result.enriched["record_id"], result.enriched["market"]))
        assert markets == {"2020-09-01|P1|C1": "India", "2021-09-01|P1|C2": "USA"}

    def test_accepts_records(self) -> None:
        result = enrich(
            [SalesRecord(date(2020, 9, 1), "P1", "C1", 2)],
            [PriceRecord("P1", 2021, Decimal("10.005"))],
        )
        assert result.enriched["gross_price_total"].tolist() == [Decimal("20.01")]


class TestEnrichRecord:
    """Tests for the single-record form."""

    def test_enriches(self) -> None:
        sale = SalesRecord(date(2020, 9, 1), "P1", "C1", 10)

        record = enrich_record(sale, [PriceRecord("P1", 2021, Decimal("19.0573"))])

        assert record is not None
        assert record.record_id == "2020-09-01|P1|C1"
        assert record.fiscal_year == 2021
        assert record.gross_price_total == Decimal("190.57")

    def test_no_price_returns_none(self) -> None:
        sale = SalesRecord(date(2020, 9, 1), "P1", "C1", 10)
        assert enrich_record(sale, [PriceRecord("P1", 2020, Decimal("19.0573"))]) is None

    def test_duplicate_price_raises(self) -> None:
        sale = SalesRecord(date(2020, 9, 1), "P1", "C1", 10)
        prices = [PriceRecord("P1", 2021, Decimal("19")), PriceRecord("P1", 2021, Decimal("20"))]

        with pytest.raises(DataIntegrityError):
            enrich_record(sale, prices)

    def test_negative_quantity_raises(self) -> None:
        with pytest.raises(InvalidInputError):
            enrich_record(SalesRecord(date(2020, 9, 1), "P1", "C1", -1), [])
