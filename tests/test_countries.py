"""Tests for the country reference data."""

from georules.countries import (
    COUNTRY_NAMES,
    COUNTRY_TLDS,
    country_name,
    country_tlds,
    to_ascii_domain,
)


def test_every_code_is_two_uppercase_letters():
    for code in COUNTRY_NAMES:
        assert len(code) == 2 and code.isalpha() and code.isupper()


def test_tlds_default_to_lowercase_code():
    assert country_tlds("DE") == ("de",)
    assert country_tlds("FR") == ("fr",)


def test_tld_exceptions():
    assert country_tlds("GB") == ("uk",)
    assert "su" in country_tlds("RU")
    assert country_tlds("XK") == ()


def test_unknown_code():
    assert country_tlds("ZZ") == ()
    assert country_tlds("") == ()
    assert country_name("ZZ") == "ZZ"


def test_names():
    assert country_name("DE") == "Germany"
    assert country_name("EU") == "European Union"


def test_to_ascii_domain():
    assert to_ascii_domain(".de") == "de"
    assert to_ascii_domain("рф") == "xn--p1ai"
    assert to_ascii_domain("укр") == "xn--j1amh"


def test_tld_table_covers_names():
    assert set(COUNTRY_TLDS) == set(COUNTRY_NAMES)
