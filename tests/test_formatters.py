import pytest

from marginsight.utils.formatters import (
    calculate_isoline,
    format_number,
    format_percent,
    format_persons,
    format_signed_percent,
    format_thousand_yen,
    to_oku,
)


def test_format_number():
    assert format_number(12345.67) == "12,345.7"
    assert format_number(None) == "N/A"
    assert format_number("x") == "N/A"


def test_format_thousand_yen():
    assert format_thousand_yen(21000) == "21,000千円"
    assert format_thousand_yen(None) == "N/A"


def test_format_percent():
    assert format_percent(55) == "55.0%"
    assert format_signed_percent(4.3) == "+4.3%"
    assert format_signed_percent(-3) == "-3.0%"


def test_format_persons():
    assert format_persons(12) == "12人"
    assert format_persons(None) == "N/A"


def test_to_oku():
    assert to_oku(150000) == pytest.approx(1.5)


def test_isoline():
    assert calculate_isoline(1.0, 50) == pytest.approx(2.0)
    assert calculate_isoline(1.0, 0) is None
