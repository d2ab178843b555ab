import pytest

from voicespend.utils.formatting import (
    capitalize_first, currency_weight, currency_with_flag, format_amount, to_minor_units,
)


@pytest.mark.parametrize("minor, expected", [
    (50000, "500"),
    (50050, "500.50"),
    (5, "0.05"),
    (100, "1"),
    (123456789, "1234567.89"),
])
def test_format_amount(minor, expected):
    assert format_amount(minor) == expected


@pytest.mark.parametrize("amount, expected", [
    (500, 50000),
    ("500.5", 50050),
    (0.1, 10),
    ("19.995", 2000),
])
def test_to_minor_units(amount, expected):
    assert to_minor_units(amount) == expected


def test_to_minor_units_rejects_garbage():
    with pytest.raises(ValueError):
        to_minor_units("пятьсот")
    with pytest.raises(ValueError):
        to_minor_units("NaN")


def test_currency_helpers():
    assert currency_weight("usd") > currency_weight("RUB") > currency_weight("KZT")
    assert currency_weight("XYZ") == 1.0
    assert currency_with_flag("eur") == "EUR🇪🇺"
    assert currency_with_flag("XYZ") == "XYZ"
    assert capitalize_first("хлеб") == "Хлеб"
    assert capitalize_first("") == ""
