import pytest

from services.validators import (
    normalize_full_name,
    normalize_sim_number,
    normalize_vendor_code,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("8970 1234 ab", "89701234AB"),
        ("  r1\t", "R1"),
        ("", ""),
        ("   ", ""),
        (None, ""),
    ],
)
def test_normalize_sim_number(value, expected):
    assert normalize_sim_number(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [(" V1 ", "V1"), ("", None), ("   ", None), (None, None)],
)
def test_normalize_vendor_code(value, expected):
    assert normalize_vendor_code(value) == expected


def test_normalize_full_name():
    assert normalize_full_name("  дюпон   жан-мари ") == "Дюпон Жан-Мари"
