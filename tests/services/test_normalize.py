"""Tests for payer name and invoice number normalization."""

import pytest

from billing_recon.services.normalize import (
    extract_invoice_number,
    normalize_invoice_number,
    normalize_name,
    normalize_whitespace,
    strip_diacritics,
)


def test_normalize_whitespace_collapses_nbsp_and_tabs():
    assert normalize_whitespace("  a \tb \n c ") == "a b c"
    assert normalize_whitespace(None) == ""


def test_strip_diacritics_handles_polish_letters():
    assert strip_diacritics("Zażółć gęślą jaźń") == "Zazolc gesla jazn"
    assert strip_diacritics("Łódź") == "Lodz"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("  Łukasz  Żółć, ", "lukasz zolc"),
        ("ACME Sp. z o.o.", "acme sp z o o"),
        ("Smith & Sons", "smith & sons"),
        ("Jean-Luc", "jean-luc"),
        (",.;", None),
        (None, None),
    ],
)
def test_normalize_name(raw, expected):
    assert normalize_name(raw) == expected


def test_normalize_name_is_case_and_accent_insensitive():
    assert normalize_name("JÓZEF NOWAK") == normalize_name("jozef nowak")


@pytest.mark.parametrize(
    "text",
    [
        "Payment CO-PROF 143/2025 thanks",
        "payment co-prof 143/2025",
        "CO PROF 143 / 2025",
        "COPROF143/2025",
        "CO-PROF 0143/2025",
    ],
)
def test_extract_invoice_number_variants(text):
    assert extract_invoice_number(text) == "CO-PROF 143/2025"


def test_extract_invoice_number_takes_first_match():
    assert extract_invoice_number("CO-PROF 1/2025 and CO-PROF 2/2025") == "CO-PROF 1/2025"


def test_extract_invoice_number_rejects_partial_year():
    assert extract_invoice_number("CO-PROF 1/20251") is None
    assert extract_invoice_number("no number here") is None
    assert extract_invoice_number(None) is None


def test_extract_invoice_number_custom_prefix():
    assert extract_invoice_number("FV 12/2024", prefix="FV") == "FV 12/2024"


def test_normalize_invoice_number_falls_back_to_upper_text():
    assert normalize_invoice_number("co-prof  7/2025") == "CO-PROF 7/2025"
    assert normalize_invoice_number(" inv  42 ") == "INV 42"
    assert normalize_invoice_number("") is None
