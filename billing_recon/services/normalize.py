"""Identity normalization shared by statement parsing and matching.

Payer names and invoice numbers are compared only in their normalized form,
so the parser and the matcher must use the same functions.
"""

from __future__ import annotations

import re
import unicodedata
from functools import lru_cache

from billing_recon.config import settings

_WHITESPACE_RE = re.compile(r"\s+")
_NAME_NOISE_RE = re.compile(r"[^\w\s&-]")

# Letters that NFKD does not decompose into base + combining mark
_EXTRA_FOLDS = str.maketrans(
    {
        "ł": "l",
        "Ł": "L",
        "đ": "d",
        "Đ": "D",
        "ø": "o",
        "Ø": "O",
        "æ": "ae",
        "Æ": "AE",
        "ß": "ss",
    }
)


def normalize_whitespace(value: str | None) -> str:
    """Collapse whitespace runs (including NBSP) to single spaces and trim."""
    if not value:
        return ""
    return _WHITESPACE_RE.sub(" ", value).strip()


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value.translate(_EXTRA_FOLDS))
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_name(value: str | None) -> str | None:
    """Canonical form of a person or company name, or None if nothing is left.

    >>> normalize_name("  Łukasz  Żółć, ")
    'lukasz zolc'
    """
    if not value:
        return None
    folded = strip_diacritics(value).casefold()
    cleaned = normalize_whitespace(_NAME_NOISE_RE.sub(" ", folded).replace("_", " "))
    return cleaned or None


def _prefix_parts(prefix: str) -> list[str]:
    return [part for part in re.split(r"[-\s]+", prefix.strip()) if part]


@lru_cache(maxsize=8)
def invoice_number_pattern(prefix: str) -> re.Pattern[str]:
    """Regex for '<prefix> <id>/<year>' tolerant of spacing and the prefix hyphen."""
    prefix_re = r"[-\s]*".join(re.escape(part) for part in _prefix_parts(prefix))
    return re.compile(
        rf"(?<![A-Za-z0-9])({prefix_re})\s*(\d+)\s*/\s*(\d{{4}})(?!\d)",
        re.IGNORECASE,
    )


def _canonical_prefix(prefix: str) -> str:
    return "-".join(part.upper() for part in _prefix_parts(prefix))


def extract_invoice_number(text: str | None, prefix: str | None = None) -> str | None:
    """Find the first invoice number in free text and return it canonicalized."""
    if not text:
        return None
    prefix = prefix or settings.invoice_number_prefix
    match = invoice_number_pattern(prefix).search(text)
    if not match:
        return None
    number = int(match.group(2))
    return f"{_canonical_prefix(prefix)} {number}/{match.group(3)}"


def normalize_invoice_number(value: str | None, prefix: str | None = None) -> str | None:
    """Canonical invoice number; unrecognized text is upper-cased and collapsed."""
    if not value:
        return None
    extracted = extract_invoice_number(value, prefix)
    if extracted:
        return extracted
    collapsed = normalize_whitespace(value).upper()
    return collapsed or None
