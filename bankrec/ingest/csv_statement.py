"""Bank statement CSV → candidate records.

Accepts the loosely structured CSV exports banks hand out: optional preamble
lines above the header, arbitrary header names, summary rows mixed in with
transactions, amounts with currency symbols or accounting parentheses.

Pipeline
--------
1. Split into lines and drop blank ones.
2. The header is the first of the first ``HEADER_SCAN_LINES`` lines with a
   field equal to or containing ``"date"``. Without one, every line is data
   in ``(date, description, amount)`` order.
3. Map columns by header text (see :func:`detect_columns`).
4. Per row: extract fields (positional 0/1/2 fallback), skip statement summary
   rows, rows with an unparseable date or amount, and zero amounts.
5. Emit a :class:`bankrec.models.CandidateRecord` with the absolute amount and
   a type inferred from the sign.

Everything here is pure: one input string in, a list of records out.
"""

from __future__ import annotations

import csv
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from ..logging_setup import get_logger
from ..models import MAX_AMOUNT, CandidateRecord, TransactionType, to_cents
from ..validation import sanitize_string

HEADER_SCAN_LINES = 10
DEFAULT_HEADERS = ("date", "description", "amount")
SUMMARY_MARKERS = ("beginning balance", "ending balance", "total credits", "total debits")

_ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_US_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_AMOUNT_NOISE_RE = re.compile(r"[$€£¥,\"'\s]")

# Tried in order after the ISO and M/D/YYYY fast paths.
_FALLBACK_DATE_FORMATS = (
    "%m/%d/%y",
    "%m-%d-%Y",
    "%Y/%m/%d",
    "%Y.%m.%d",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%d-%b-%Y",
    "%a, %d %b %Y",
    "%Y%m%d",
)

_CREDIT_WORDS = {"credit", "deposit", "income"}
_DEBIT_WORDS = {"debit", "withdrawal", "expense"}

_logger = get_logger("bankrec.ingest.csv_statement")


@dataclass(frozen=True, slots=True)
class ColumnMap:
    """Column positions by role; ``-1`` when the header has no such column."""

    date: int = -1
    description: int = -1
    amount: int = -1
    category: int = -1
    check_number: int = -1


@dataclass(frozen=True, slots=True)
class ParsedAmount:
    magnitude: Decimal
    negative: bool


def parse_csv_line(line: str) -> list[str]:
    """Split one line on commas outside double quotes.

    An unterminated quote runs to the end of the line.
    """

    return next(csv.reader([line]), [""])


def detect_columns(headers: list[str]) -> ColumnMap:
    """Map header texts to column roles, case-insensitively.

    Each header takes the first role it qualifies for, checked in the order
    date, description, amount, category, check number. Only the first
    amount-like column is used, so a ``Debit``/``Credit`` pair maps ``amount``
    to ``Debit``.
    """

    found = {"date": -1, "description": -1, "amount": -1, "category": -1, "check_number": -1}
    for index, header in enumerate(headers):
        h = header.strip().lower()
        if "date" in h:
            found["date"] = index
        elif any(word in h for word in ("description", "payee", "memo")):
            found["description"] = index
        elif h in ("amount", "debit", "credit") or "amt" in h:
            if found["amount"] == -1:
                found["amount"] = index
        elif "category" in h:
            found["category"] = index
        elif "check" in h:
            found["check_number"] = index
    return ColumnMap(**found)


def _valid_iso(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def normalize_date(raw: str | None) -> str | None:
    """Return ``YYYY-MM-DD`` or ``None`` when the text is not a date."""

    if raw is None:
        return None
    s = raw.strip()
    if not s:
        return None
    if _ISO_RE.fullmatch(s):
        y, m, d = (int(p) for p in s.split("-"))
        return _valid_iso(y, m, d)
    us = _US_DATE_RE.fullmatch(s)
    if us:
        return _valid_iso(int(us.group(3)), int(us.group(1)), int(us.group(2)))
    try:
        return datetime.fromisoformat(s).date().isoformat()
    except ValueError:
        pass
    for fmt in _FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def parse_amount(raw: str | None) -> ParsedAmount | None:
    """Parse a statement amount into magnitude and sign.

    Currency symbols, thousands separators, quotes and whitespace are removed;
    surrounding parentheses or a leading minus mark a negative amount.
    """

    if not raw:
        return None
    s = _AMOUNT_NOISE_RE.sub("", raw)
    negative = False
    if len(s) >= 2 and s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1]
    if s.startswith("-"):
        negative = True
        s = s[1:]
    elif s.startswith("+"):
        s = s[1:]
    try:
        value = Decimal(s)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return ParsedAmount(magnitude=abs(value), negative=negative)


def determine_type_from_amount(raw: str | None) -> TransactionType:
    """Negative or parenthesized ⇒ debit; anything else ⇒ credit."""

    if not raw:
        return "debit"
    cleaned = re.sub(r"[\"'\s]", "", raw)
    if cleaned.startswith("-") or (cleaned.startswith("(") and cleaned.endswith(")")):
        return "debit"
    return "credit"


def determine_type(raw_amount: str | None, explicit_type: str | None = None) -> TransactionType:
    """Resolve the type from an explicit column first, then from the amount's sign."""

    if explicit_type:
        t = explicit_type.strip().lower()
        if t in _CREDIT_WORDS:
            return "credit"
        if t in _DEBIT_WORDS:
            return "debit"
    return determine_type_from_amount(raw_amount)


def _field(fields: list[str], index: int) -> str:
    if 0 <= index < len(fields):
        return fields[index]
    return ""


def _optional_field(fields: list[str], index: int) -> str | None:
    value = _field(fields, index).strip()
    return value or None


def _find_header(lines: list[str]) -> tuple[int, list[str]] | None:
    for index, line in enumerate(lines[:HEADER_SCAN_LINES]):
        lowered = [f.strip().lower() for f in parse_csv_line(line)]
        if any("date" in f for f in lowered):
            return index, lowered
    return None


def parse_statement(text: str) -> list[CandidateRecord]:
    """Parse a whole CSV statement into candidate records, in input order."""

    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return []

    header = _find_header(lines)
    if header is None:
        _logger.warning("no header row found, assuming date,description,amount")
        columns = detect_columns(list(DEFAULT_HEADERS))
        data_start = 0
    else:
        header_index, header_fields = header
        columns = detect_columns(header_fields)
        data_start = header_index + 1

    candidates: list[CandidateRecord] = []
    for line_no, line in enumerate(lines[data_start:], start=data_start + 1):
        fields = parse_csv_line(line.strip())
        if len(fields) < 2:
            _logger.debug("line %d: skipped, insufficient fields", line_no)
            continue

        date_raw = _field(fields, columns.date) or _field(fields, 0)
        description = sanitize_string(_field(fields, columns.description) or _field(fields, 1), 500)
        amount_raw = _field(fields, columns.amount) or _field(fields, 2)

        if not date_raw.strip() or not amount_raw.strip():
            continue
        lowered = description.lower()
        if any(marker in lowered for marker in SUMMARY_MARKERS):
            continue

        parsed_date = normalize_date(date_raw)
        parsed_amount = parse_amount(amount_raw)
        if parsed_date is None or parsed_amount is None:
            _logger.debug("line %d: skipped, invalid date or amount", line_no)
            continue
        amount = to_cents(parsed_amount.magnitude)
        if amount == 0:
            _logger.debug("line %d: skipped, zero amount", line_no)
            continue
        if amount > MAX_AMOUNT or not description:
            _logger.debug("line %d: skipped, amount out of range or no description", line_no)
            continue

        candidates.append(
            CandidateRecord(
                date=parsed_date,
                description=description,
                amount=amount,
                type=determine_type(amount_raw),
                category=_optional_field(fields, columns.category),
                check_number=_optional_field(fields, columns.check_number),
            )
        )
    return candidates


__all__ = [
    "ColumnMap",
    "DEFAULT_HEADERS",
    "HEADER_SCAN_LINES",
    "ParsedAmount",
    "SUMMARY_MARKERS",
    "detect_columns",
    "determine_type",
    "determine_type_from_amount",
    "normalize_date",
    "parse_amount",
    "parse_csv_line",
    "parse_statement",
]
