"""Bank and card statement parser.

Two export dialects are recognized by their header signature:

- bank: semicolon-delimited with a ``#Data operacji;#Opis operacji;...`` marker line
- card: comma-delimited with a named header row (``Date started (UTC)``, ``Type``, ...)

Parsing never raises on a bad row; malformed rows are skipped and the rest of
the batch is returned.
"""

from __future__ import annotations

import csv
import hashlib
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum

from billing_recon.config import settings
from billing_recon.logger import get_logger, log_timing
from billing_recon.models import PaymentDirection
from billing_recon.services.normalize import (
    extract_invoice_number,
    invoice_number_pattern,
    normalize_name,
    normalize_whitespace,
)

logger = get_logger(__name__)

BANK_HEADER_MARKER = "#Data operacji;#Opis operacji;#Rachunek;#Kategoria;#Kwota;"
CARD_HEADER_COLUMNS = ("Date started (UTC)", "Type", "Description")
CARD_COMPLETED_STATE = "COMPLETED"
CARD_DEFAULT_ACCOUNT = "Card"

BANK_MIN_COLUMNS = 5
MAX_STATEMENT_ROWS = 200_000

REFUND_KEYWORDS_RE = re.compile(
    r"(?<![A-Z])(?:ZWROT|ZVROT|REFUND|RETURN|REVERSAL|REVERSJA|ANULOWANIE|CANCEL)"
)
EXPENSE_KEYWORDS = (
    "PRZELEW WYCHODZĄCY",
    "PRZELEW WYCHODZACY",
    "ZAKUP",
    "OPŁATA",
    "OPLATA",
    "PŁATNOŚĆ",
    "PLATNOSC",
    "KARTA",
    "BLIK",
)
OUTBOUND_CATEGORY_TAGS = ("WYCHODZĄCY", "WYCHODZACY")
INBOUND_CATEGORY_TAGS = ("PRZYCHODZĄCY", "PRZYCHODZACY")

_UPPER_WORD = r"[A-ZĄĆĘŁŃÓŚŹŻ]{2,}"
PERSONAL_NAME_RE = re.compile(rf"^{_UPPER_WORD}\s+{_UPPER_WORD}(?:\s+{_UPPER_WORD})?(?:\s|,|$)")

ADDRESS_STOP_WORDS = frozenset(
    {
        "UL",
        "ULICA",
        "ULICY",
        "ULICZNA",
        "PRZELEW",
        "PROSPEKT",
        "PR",
        "STR",
        "ST",
        "STREET",
        "AV",
        "AVENUE",
        "AVE",
        "PL",
        "PLAC",
        "PLZ",
    }
)
_TRANSFER_TAIL_RE = re.compile(r"\bPRZELEW\b.*$", re.IGNORECASE)

_AMOUNT_RE = re.compile(
    r"^(?P<sign>[-+\u2212]?)\s*(?P<number>\d[\d\s.,]*?)\s*(?P<currency>[A-Za-z]{3})?$"
)
_NUMBER_RE = re.compile(r"^(?P<integer>[\d.,]*?)(?:[.,](?P<fraction>\d{1,2}))?$")

_DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%d-%m-%Y", "%d/%m/%Y", "%Y/%m/%d")


class StatementDialect(str, Enum):
    BANK = "bank"
    CARD = "card"


class DirectionSource(str, Enum):
    """Which rule decided the transaction direction."""

    AMOUNT = "amount"
    CATEGORY = "category"
    REFUND_KEYWORD = "refund_keyword"
    NAME_PATTERN = "name_pattern"


@dataclass(frozen=True)
class ParsedAmount:
    amount: Decimal
    currency: str | None
    negative: bool
    resolved: bool


@dataclass(frozen=True)
class StatementRecord:
    """One parsed statement line, ready for the ledger."""

    operation_date: date
    description: str
    account: str | None
    category: str | None
    amount: Decimal
    currency: str | None
    direction: PaymentDirection
    direction_source: DirectionSource
    amount_raw: str
    payer_name: str | None
    payer_normalized_name: str | None
    invoice_number_hint: str | None
    content_hash: str
    raw_line: str
    dialect: StatementDialect


def calculate_content_hash(raw_line: str) -> str:
    """SHA256 over the source line with whitespace runs collapsed.

    Re-exports that only reflow whitespace keep their hash; any change to the
    data itself produces a new one.
    """
    canonical = normalize_whitespace(raw_line.replace("\ufeff", ""))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_amount(raw: str | None) -> ParsedAmount:
    """Parse amount text such as ``-1 234,56 PLN``, ``425.00 EUR`` or ``1 000 PLN``.

    Unparseable text gives amount 0 and unknown currency instead of an error.
    """
    text = normalize_whitespace(raw)
    match = _AMOUNT_RE.match(text)
    if match:
        number = re.sub(r"\s", "", match.group("number"))
        parts = _NUMBER_RE.match(number)
        if parts:
            integer = re.sub(r"[.,]", "", parts.group("integer")) or "0"
            fraction = parts.group("fraction") or "0"
            try:
                amount = Decimal(f"{integer}.{fraction}")
            except InvalidOperation:
                amount = None
            if amount is not None:
                currency = match.group("currency")
                return ParsedAmount(
                    amount=amount,
                    currency=currency.upper() if currency else None,
                    negative=match.group("sign") in ("-", "\u2212") and amount != 0,
                    resolved=True,
                )
    return ParsedAmount(amount=Decimal("0"), currency=None, negative=False, resolved=False)


def _category_direction(category: str | None) -> PaymentDirection | None:
    if not category:
        return None
    upper = category.upper()
    if any(tag in upper for tag in INBOUND_CATEGORY_TAGS):
        return PaymentDirection.IN
    if any(tag in upper for tag in OUTBOUND_CATEGORY_TAGS):
        return PaymentDirection.OUT
    return None


def resolve_direction(
    *,
    negative: bool,
    description: str,
    category: str | None,
) -> tuple[PaymentDirection, DirectionSource]:
    """Decide in/out for a statement line.

    Precedence: refund keyword in the description, then category tag, then the
    amount sign. A negative amount is read as inbound when the description starts
    with a personal-name pattern and carries no expense keyword.
    """
    upper = description.upper()
    if REFUND_KEYWORDS_RE.search(upper):
        return PaymentDirection.OUT, DirectionSource.REFUND_KEYWORD

    category_direction = _category_direction(category)
    if category_direction is not None:
        return category_direction, DirectionSource.CATEGORY

    if not negative:
        return PaymentDirection.IN, DirectionSource.AMOUNT

    if PERSONAL_NAME_RE.match(upper.strip()) and not any(k in upper for k in EXPENSE_KEYWORDS):
        return PaymentDirection.IN, DirectionSource.NAME_PATTERN
    return PaymentDirection.OUT, DirectionSource.AMOUNT


def extract_payer(description: str | None) -> str | None:
    """Payer name from a transfer title: the leading words before any address part."""
    text = normalize_whitespace(description)
    if not text:
        return None
    first_part = text.split(",", 1)[0]
    first_part = invoice_number_pattern(settings.invoice_number_prefix).sub(" ", first_part)
    first_part = normalize_whitespace(_TRANSFER_TAIL_RE.sub("", first_part))
    if not first_part:
        return None

    collected: list[str] = []
    for token in first_part.split(" "):
        if token.upper().rstrip(".") in ADDRESS_STOP_WORDS:
            break
        if any(ch.isdigit() for ch in token):
            break
        collected.append(token)
    return " ".join(collected) if collected else first_part


def parse_date(raw: str | None) -> date | None:
    text = normalize_whitespace(raw)
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    head = text.split(" ", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(head, fmt).date()
        except ValueError:
            continue
    return None


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        # Polish bank exports are frequently Windows-1250
        return content.decode("cp1250", errors="replace")


def _split_line(line: str, delimiter: str) -> list[str] | None:
    try:
        return next(csv.reader([line], delimiter=delimiter, quotechar='"'), [])
    except csv.Error:
        return None


def detect_dialect(lines: list[str]) -> tuple[StatementDialect, int] | None:
    """Return the dialect and the index of its header line."""
    for index, line in enumerate(lines):
        if all(column in line for column in CARD_HEADER_COLUMNS):
            return StatementDialect.CARD, index
    for index, line in enumerate(lines):
        if line.strip().lstrip("\ufeff").startswith(BANK_HEADER_MARKER):
            return StatementDialect.BANK, index
    return None


def _build_record(
    *,
    raw_line: str,
    operation_date: date,
    description: str,
    account: str | None,
    category: str | None,
    amount_raw: str,
    parsed: ParsedAmount,
    currency: str | None,
    payer_name: str | None,
    dialect: StatementDialect,
    extra_amount: Decimal = Decimal("0"),
) -> StatementRecord:
    direction, source = resolve_direction(
        negative=parsed.negative,
        description=description,
        category=category,
    )
    amount = abs(parsed.amount)
    if direction == PaymentDirection.OUT:
        amount += abs(extra_amount)
    payer = payer_name or extract_payer(description)
    return StatementRecord(
        operation_date=operation_date,
        description=description,
        account=account or None,
        category=category or None,
        amount=amount,
        currency=currency,
        direction=direction,
        direction_source=source,
        amount_raw=amount_raw,
        payer_name=payer,
        payer_normalized_name=normalize_name(payer),
        invoice_number_hint=extract_invoice_number(description),
        content_hash=calculate_content_hash(raw_line),
        raw_line=raw_line,
        dialect=dialect,
    )


def _parse_bank_rows(lines: list[str]) -> tuple[list[StatementRecord], int]:
    records: list[StatementRecord] = []
    skipped = 0
    for line in lines:
        cells = _split_line(line, ";")
        if cells is None or len(cells) < BANK_MIN_COLUMNS:
            skipped += 1
            continue
        date_raw, description, account, category, amount_raw = (
            normalize_whitespace(cell) for cell in cells[:BANK_MIN_COLUMNS]
        )
        operation_date = parse_date(date_raw)
        if not description or operation_date is None:
            skipped += 1
            continue
        parsed = parse_amount(amount_raw)
        records.append(
            _build_record(
                raw_line=line,
                operation_date=operation_date,
                description=description,
                account=account,
                category=category,
                amount_raw=amount_raw,
                parsed=parsed,
                currency=parsed.currency,
                payer_name=None,
                dialect=StatementDialect.BANK,
            )
        )
    return records, skipped


def _parse_card_rows(header: str, lines: list[str]) -> tuple[list[StatementRecord], int]:
    header_cells = _split_line(header, ",") or []
    columns = {normalize_whitespace(name): index for index, name in enumerate(header_cells)}

    def cell(cells: list[str], *names: str) -> str:
        for name in names:
            index = columns.get(name)
            if index is not None and index < len(cells) and cells[index].strip():
                return normalize_whitespace(cells[index])
        return ""

    records: list[StatementRecord] = []
    skipped = 0
    for line in lines:
        cells = _split_line(line, ",")
        if not cells:
            skipped += 1
            continue
        state = cell(cells, "State")
        if state and state.upper() != CARD_COMPLETED_STATE:
            skipped += 1
            continue
        description = cell(cells, "Description")
        operation_date = parse_date(cell(cells, "Date completed (UTC)", "Date started (UTC)"))
        if not description or operation_date is None:
            skipped += 1
            continue
        amount_raw = cell(cells, "Amount", "Total amount")
        parsed = parse_amount(amount_raw)
        currency = cell(cells, "Payment currency", "Currency").upper() or parsed.currency
        fee = parse_amount(cell(cells, "Fee"))
        records.append(
            _build_record(
                raw_line=line,
                operation_date=operation_date,
                description=description,
                account=cell(cells, "Account") or CARD_DEFAULT_ACCOUNT,
                category=cell(cells, "Type"),
                amount_raw=amount_raw,
                parsed=parsed,
                currency=currency or None,
                payer_name=cell(cells, "Payer") or None,
                dialect=StatementDialect.CARD,
                extra_amount=fee.amount,
            )
        )
    return records, skipped


def parse_statement(content: bytes) -> list[StatementRecord]:
    """Parse raw statement bytes into records; unknown formats give an empty list."""
    text = _decode(content)
    lines = text.splitlines()
    detected = detect_dialect(lines)
    if detected is None:
        logger.warning("Statement format not recognized", size=len(content), lines=len(lines))
        return []

    dialect, header_index = detected
    data_lines = [line for line in lines[header_index + 1 :] if line.strip()]
    if len(data_lines) > MAX_STATEMENT_ROWS:
        logger.warning(
            "Statement row limit exceeded - truncating",
            rows=len(data_lines),
            limit=MAX_STATEMENT_ROWS,
        )
        data_lines = data_lines[:MAX_STATEMENT_ROWS]

    with log_timing("parse_statement", logger=logger, dialect=dialect.value) as timing:
        if dialect == StatementDialect.CARD:
            records, skipped = _parse_card_rows(lines[header_index], data_lines)
        else:
            records, skipped = _parse_bank_rows(data_lines)
        timing["records"] = len(records)
        timing["skipped_rows"] = skipped
    return records
