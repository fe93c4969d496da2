"""
Reference number generation for invoices and estimates.

Invoices and estimates share one numeric sequence per user. The next number
is one above the highest valid numeric suffix found across both tables, laid
out with the user's configured format (prefix, optional YYYY/MM segments,
zero padding).
"""

import logging
import re
import time
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Literal, Optional

from backend.db.gateway import Entity, PersistenceGateway
from backend.exceptions import PersistenceError

logger = logging.getLogger(__name__)

DocumentType = Literal["invoice", "estimate"]

# Suffixes above this are timestamp fallbacks or corrupted data
REFERENCE_NUMBER_CEILING = 1_000_000

DEFAULT_FORMATS = {"invoice": "INV-001", "estimate": "EST-001"}
DEFAULT_PREFIXES = {"invoice": "INV", "estimate": "EST"}
DEFAULT_NUMBER_LENGTH = 3

_PREFIX_RE = re.compile(r"^([A-Za-z]+)")
_TRAILING_DIGITS_RE = re.compile(r"(\d+)$")


@dataclass(frozen=True)
class ReferenceFormat:
    prefix: str
    include_year: bool
    include_month: bool
    number_length: int


def parse_reference_format(fmt: Optional[str], document_type: DocumentType = "invoice") -> ReferenceFormat:
    """
    Parse a format string such as "INV-001" or "INV-YYYY-MM-0001".

    Year and month segments are only included for the explicit YYYY/MM tokens.
    """
    fmt = (fmt or DEFAULT_FORMATS[document_type]).strip()

    prefix_match = _PREFIX_RE.match(fmt)
    prefix = prefix_match.group(1).upper() if prefix_match else DEFAULT_PREFIXES[document_type]

    digits_match = _TRAILING_DIGITS_RE.search(fmt)
    number_length = len(digits_match.group(1)) if digits_match else DEFAULT_NUMBER_LENGTH

    segments = [segment.upper() for segment in re.split(r"[-/_ ]", fmt)]

    return ReferenceFormat(
        prefix=prefix,
        include_year="YYYY" in segments,
        include_month="MM" in segments,
        number_length=number_length,
    )


def format_reference_number(number: int, ref_format: ReferenceFormat, today: Optional[date] = None) -> str:
    """Lay out a sequence number as PREFIX[-YYYY][-MM]-NNN."""
    today = today or date.today()
    parts = [ref_format.prefix]
    if ref_format.include_year:
        parts.append(f"{today.year:04d}")
    if ref_format.include_month:
        parts.append(f"{today.month:02d}")
    parts.append(str(number).zfill(ref_format.number_length))
    return "-".join(parts)


def extract_numeric_suffix(reference: Optional[str]) -> Optional[int]:
    """
    Numeric suffix of a reference number, or None if it has none or it is
    above the sanity ceiling.
    """
    if not reference:
        return None
    match = _TRAILING_DIGITS_RE.search(reference.strip())
    if not match:
        return None
    value = int(match.group(1))
    if value > REFERENCE_NUMBER_CEILING:
        logger.warning(f"Ignoring out-of-range reference suffix in '{reference}'")
        return None
    return value


def next_sequence_number(references: Iterable[Optional[str]]) -> int:
    """One above the highest valid suffix (1 when there is none)."""
    suffixes = [s for s in (extract_numeric_suffix(r) for r in references) if s is not None]
    return max(suffixes, default=0) + 1


async def generate_next_reference(
    gateway: PersistenceGateway,
    user_id: str,
    document_type: DocumentType = "invoice",
    today: Optional[date] = None,
) -> str:
    """
    Produce the next document number for a user.

    Scans invoice and estimate numbers for the user, takes the highest valid
    suffix, increments it and applies the configured format. If the gateway
    is unavailable, falls back to a timestamp-derived number (which the
    ceiling rule then ignores for future numbering).
    """
    try:
        settings_row = await gateway.find_one(
            Entity.BUSINESS_SETTINGS,
            {"user_id": user_id},
            columns="invoice_reference_format, estimate_reference_format",
        )
        format_column = f"{document_type}_reference_format"
        ref_format = parse_reference_format(
            (settings_row or {}).get(format_column), document_type
        )

        invoices = await gateway.find(Entity.INVOICE, {"user_id": user_id}, columns="invoice_number")
        estimates = await gateway.find(Entity.ESTIMATE, {"user_id": user_id}, columns="estimate_number")

    except PersistenceError as e:
        fallback = f"{DEFAULT_PREFIXES[document_type]}-{int(time.time() * 1000)}"
        logger.error(f"Reference number lookup failed for user {user_id[:8]}: {e.message}; using {fallback}")
        return fallback

    references = [row.get("invoice_number") for row in invoices]
    references += [row.get("estimate_number") for row in estimates]

    number = format_reference_number(next_sequence_number(references), ref_format, today)
    logger.info(f"Generated {document_type} number {number} for user {user_id[:8]}")
    return number
