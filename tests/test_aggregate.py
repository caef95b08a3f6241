"""Tests for one-or-many key parsing and monthly aggregation."""

from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from netsales_core.exceptions import DataQualityError, InvalidInputError
from netsales_core.sales.aggregate import aggregate, output_columns, parse_keys


class TestParseKeys:
    """Tests for normalizing the key parameter."""

    def test_none_means_no_restriction(self) -> None:
        assert parse_keys(None) is None

    def test_single_code(self) -> None:
        assert parse_keys("90002002") == frozenset({"90002002"})

    def test_delimited_string(self) -> None:
        assert parse_keys(" A, B;A ") == frozenset({"A", "B"})

    def test_iterable(self) -> None:
        assert parse_keys(["A", "B", "A"]) == frozenset({"A", "B"})
        assert parse_keys({"A"}) == frozenset({"A"})

    def test_integer_codes(self) -> None:
        assert parse_keys([90002002, "70002017"]) == frozenset({"90002002", "70002017"})

    def test_empty_inputs(self) -> None:
        assert parse_keys("") == frozenset()
        assert parse_keys("   ") == frozenset()
        assert parse_keys([]) == frozenset()

    @pytest.mark.parametrize("value", ["A,,B", "A; ;B", "A,", [None], ["A", ""], [True], [1.5], 42])
    def test_malformed(self, value) -> None:
        with pytest.raises(InvalidInputError):
            parse_keys(value)


@pytest.fixture
def net() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "date": [
                date(2020, 10, 1),
                date(2020, 9, 1),
                date(2020, 9, 1),
                date(2020, 9, 1),
                date(2020, 10, 1),
            ],
            "customer_code": ["C2", "C2", "C1", "C1", "C3"],
            "market": ["India", "India", "India", "India", "USA"],
            "sold_quantity": [5, 3, 2, 1, 7],
            "net_sales": [
                Decimal("10.10"),
                Decimal("0.20"),
                Decimal("0.10"),
                Decimal("0.20"),
                Decimal("99.99"),
            ],
        }
    )


class TestAggregate:
    """Tests for the single aggregation path."""

    def test_sums_per_month_and_customer(self, net: pd.DataFrame) -> None:
        result = aggregate(net, "date+customer", "C1")

        assert list(result.columns) == ["date", "customer_code", "net_sales"]
        assert result.to_dict("records") == [
            {"date": date(2020, 9, 1), "customer_code": "C1", "net_sales": Decimal("0.30")}
        ]

    def test_sorted_by_date_then_entity(self, net: pd.DataFrame) -> None:
        result = aggregate(net, "date+customer")

        assert list(zip(result["date"], result["customer_code"])) == [
            (date(2020, 9, 1), "C1"),
            (date(2020, 9, 1), "C2"),
            (date(2020, 10, 1), "C2"),
            (date(2020, 10, 1), "C3"),
        ]

    def test_batch_equals_union_of_single_reports(self, net: pd.DataFrame) -> None:
        batch = aggregate(net, "date+customer", "C1;C2")
        singles = pd.concat(
            [aggregate(net, "date+customer", "C1"), aggregate(net, "date+customer", ["C2"])],
            ignore_index=True,
        )
        singles = singles.sort_values(["date", "customer_code"]).reset_index(drop=True)

        pd.testing.assert_frame_equal(batch, singles)

    def test_key_order_and_duplicates_do_not_matter(self, net: pd.DataFrame) -> None:
        a = aggregate(net, "date+customer", "C2,C1")
        b = aggregate(net, "date+customer", ["C1", "C2", "C1"])
        pd.testing.assert_frame_equal(a, b)

    def test_empty_key_set_gives_empty_frame(self, net: pd.DataFrame) -> None:
        result = aggregate(net, "date+customer", "")

        assert len(result) == 0
        assert list(result.columns) == output_columns("date+customer", "net_sales")

    def test_unknown_key_gives_empty_frame(self, net: pd.DataFrame) -> None:
        assert len(aggregate(net, "date+customer", "NOPE")) == 0

    def test_date_grouping_filters_on_customer(self, net: pd.DataFrame) -> None:
        result = aggregate(net, "date", "C1,C3")

        assert list(result.columns) == ["date", "net_sales"]
        assert result["net_sales"].tolist() == [Decimal("0.30"), Decimal("99.99")]

    def test_market_grouping(self, net: pd.DataFrame) -> None:
        result = aggregate(net, "date+market", "India", measure="sold_quantity")

        assert result.to_dict("records") == [
            {"date": date(2020, 9, 1), "market": "India", "sold_quantity": 6},
            {"date": date(2020, 10, 1), "market": "India", "sold_quantity": 5},
        ]

    def test_decimal_sums_are_exact(self) -> None:
        df = pd.DataFrame(
            {
                "date": [date(2020, 9, 1)] * 3,
                "customer_code": ["C1"] * 3,
                "net_sales": [Decimal("0.10"), Decimal("0.20"), Decimal("0.70")],
            }
        )
        assert aggregate(df, "date+customer")["net_sales"].tolist() == [Decimal("1.00")]

    def test_invalid_group_by(self, net: pd.DataFrame) -> None:
        with pytest.raises(InvalidInputError, match="group_by"):
            aggregate(net, "date+product")

    def test_invalid_measure(self, net: pd.DataFrame) -> None:
        with pytest.raises(InvalidInputError, match="measure"):
            aggregate(net, "date", measure="profit")

    def test_malformed_keys_rejected_before_work(self, net: pd.DataFrame) -> None:
        with pytest.raises(InvalidInputError):
            aggregate(net, "date+customer", "C1,,C2")

    def test_market_column_required(self, net: pd.DataFrame) -> None:
        with pytest.raises(DataQualityError):
            aggregate(net.drop(columns=["market"]), "date+market")
