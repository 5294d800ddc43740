from __future__ import annotations

import pytest

from attendry.tools.country import COUNTRIES, get_country_context, is_valid_iso2, to_iso2


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("de", "DE"),
        (" FR ", "FR"),
        ("Germany", "DE"),
        ("Deutschland", "DE"),
        ("United Kingdom", "GB"),
        ("España", "ES"),
        ("pl", "PL"),
    ],
)
def test_to_iso2_normalizes_codes_and_names(raw, expected):
    assert to_iso2(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "  ", "Narnia", "D3", "DEU"])
def test_to_iso2_rejects_invalid(raw):
    assert to_iso2(raw) is None
    assert not is_valid_iso2(raw)


def test_known_country_context():
    ctx = get_country_context("gb")
    assert ctx is COUNTRIES["GB"]
    assert ctx.tld == ".uk"
    assert "London" in ctx.cities


def test_unknown_country_gets_generic_context():
    ctx = get_country_context("PL")
    assert ctx is not None
    assert ctx.iso2 == "PL"
    assert ctx.tld == ".pl"
    assert ctx.in_phrase == ""


def test_invalid_country_has_no_context():
    assert get_country_context("not a country") is None
