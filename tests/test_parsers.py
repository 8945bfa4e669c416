"""Tests for amount and date parsing."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from rapprochement.utils.amount_parser import parse_amount
from rapprochement.utils.date_parser import parse_date


class TestParseAmount:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("123.45", "123.45"),
            ("123,45", "123.45"),
            ("-123,45 €", "-123.45"),
            ("1 234,56", "1234.56"),
            ("1 234,56", "1234.56"),
            ("1.234,56", "1234.56"),
            ("1,234.56", "1234.56"),
            ("(123.45)", "-123.45"),
            ("120 EUR", "120"),
        ],
    )
    def test_formats(self, text, expected):
        assert parse_amount(text) == Decimal(expected)

    @pytest.mark.parametrize("text", ["", "   ", "abc", "12,3,4x"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_amount(text)


class TestParseDate:
    def test_iso(self):
        assert parse_date("2024-03-05") == date(2024, 3, 5)

    def test_day_first(self):
        assert parse_date("05/03/2024") == date(2024, 3, 5)

    def test_relative(self):
        assert parse_date("today") == date.today()
        assert parse_date(" Yesterday ") == date.today() - timedelta(days=1)

    def test_invalid(self):
        with pytest.raises(ValueError, match="Could not parse date"):
            parse_date("pas une date")
