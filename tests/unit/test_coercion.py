from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from xlport.services.coercion import coerce_cell, coerce_parameter, neutral_type_of


@pytest.mark.parametrize("blank", [None, "", "   ", float("nan")])
def test_blank_cells_become_none(blank):
    assert coerce_cell(blank, "INT") is None
    assert coerce_cell(blank, "VARCHAR(10)") is None


def test_int():
    assert coerce_cell("1,234", "INT") == 1234
    assert coerce_cell(12.0, "INT") == 12
    assert coerce_cell(" 7 ", "BIGINT") == 7
    with pytest.raises(ValueError):
        coerce_cell("12.5", "INT")
    with pytest.raises(ValueError):
        coerce_cell("abc", "INT")


def test_decimal_quantizes_and_checks_precision():
    assert coerce_cell("12.346", "DECIMAL(10,2)") == Decimal("12.35")
    assert coerce_cell(3, "DECIMAL(10,2)") == Decimal("3.00")
    with pytest.raises(ValueError, match="exceeds DECIMAL"):
        coerce_cell("123456789", "DECIMAL(10,2)")
    with pytest.raises(ValueError):
        coerce_cell("n/a", "DECIMAL(10,2)")


def test_float():
    assert coerce_cell("1.5", "FLOAT") == 1.5
    assert coerce_cell(2, "FLOAT") == 2.0


def test_date_and_datetime_text():
    assert coerce_cell("2024-01-15", "DATE") == date(2024, 1, 15)
    assert coerce_cell("2024/01/15", "DATE") == date(2024, 1, 15)
    assert coerce_cell("2024-01-15 08:30:00", "DATETIME") == datetime(2024, 1, 15, 8, 30)
    assert coerce_cell(datetime(2024, 1, 15, 8, 30), "DATE") == date(2024, 1, 15)
    with pytest.raises(ValueError):
        coerce_cell("not a date", "DATE")


def test_excel_serial_date():
    assert coerce_cell(45306, "DATE") == date(2024, 1, 15)


def test_decimal_beyond_context_precision_is_value_error():
    with pytest.raises(ValueError, match="exceeds DECIMAL"):
        coerce_cell(1e30, "DECIMAL(10,2)")
    with pytest.raises(ValueError, match="exceeds DECIMAL"):
        coerce_cell("123456789012345678901234567890", "DECIMAL(38,4)")


@pytest.mark.parametrize("text", ["inf", "-Infinity", "NaN"])
def test_int_rejects_non_finite_text(text):
    with pytest.raises(ValueError, match="not an integer"):
        coerce_cell(text, "INT")


@pytest.mark.parametrize("serial", [5_000_000, -1e9, float("inf")])
def test_out_of_range_excel_serial_is_value_error(serial):
    with pytest.raises(ValueError, match="not a date"):
        coerce_cell(serial, "DATE")


def test_boolean():
    assert coerce_cell("yes", "BOOLEAN") is True
    assert coerce_cell("否", "BOOLEAN") is False
    assert coerce_cell(0, "BOOLEAN") is False
    with pytest.raises(ValueError):
        coerce_cell("maybe", "BOOLEAN")


def test_text_and_varchar():
    assert coerce_cell(1001.0, "VARCHAR(50)") == "1001"
    assert coerce_cell(datetime(2024, 1, 2, 3, 4, 5), "TEXT") == "2024-01-02 03:04:05"
    assert coerce_cell("abc", "TEXT") == "abc"
    with pytest.raises(ValueError, match="longer than 3"):
        coerce_cell("abcd", "VARCHAR(3)")


def test_blob():
    assert coerce_cell("hi", "BLOB") == b"hi"
    assert coerce_cell(b"\x00\x01", "BLOB") == b"\x00\x01"


@pytest.mark.parametrize(
    "text,expected",
    [
        ("42", 42),
        ("-3", -3),
        ("2.5", 2.5),
        ("TRUE", True),
        ("false", False),
        ("2024-03-01", date(2024, 3, 1)),
        ("2024/3/1", date(2024, 3, 1)),
        ("2024-03-01 10:20:30", datetime(2024, 3, 1, 10, 20, 30)),
        ("C001", "C001"),
        ("2024-13-45", "2024-13-45"),
    ],
)
def test_coerce_parameter(text, expected):
    assert coerce_parameter(text) == expected
    assert type(coerce_parameter(text)) is type(expected)


def test_coerce_parameter_passes_non_text_through():
    assert coerce_parameter(5) == 5
    assert coerce_parameter(None) is None


@pytest.mark.parametrize(
    "value,expected",
    [
        (True, "BOOLEAN"),
        (1, "INT"),
        (2**40, "BIGINT"),
        (1.5, "FLOAT"),
        (Decimal("1.25"), "DECIMAL(18,2)"),
        (datetime(2024, 1, 1, 1), "DATETIME"),
        (date(2024, 1, 1), "DATE"),
        (b"x", "BLOB"),
        ("x", "TEXT"),
    ],
)
def test_neutral_type_of(value, expected):
    assert neutral_type_of(value) == expected
