"""
Canonical forms used when comparing expenses for duplicates.

All functions are pure and total: bad input normalizes to an "absent" value
instead of raising.
"""

import hashlib
import re
from datetime import date, datetime, time, timedelta, UTC
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext

# [\W_] is "not a Unicode letter or digit"
_NON_ALNUM_RUN = re.compile(r"[\W_]+")
_NON_ASCII_ALNUM = re.compile(r"[^a-z0-9]+")
_CENT = Decimal("0.01")


def normalize_vendor(value: str | None) -> str:
    """'  Uber Technologies!! ' -> 'uber technologies'"""
    if not value:
        return ""
    cleaned = _NON_ALNUM_RUN.sub(" ", str(value).strip().lower())
    return cleaned.strip()


def normalize_amount(value) -> Decimal:
    """Round to cents, half-up (100.005 -> 100.01)"""
    if value is None or isinstance(value, bool):
        return Decimal("0.00")
    try:
        # str() first so binary float noise does not leak into the rounding
        amount = Decimal(str(value))
        with localcontext() as ctx:
            ctx.prec = max(ctx.prec, amount.adjusted() + 3)
            return amount.quantize(_CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return Decimal("0.00")


def normalize_invoice_id(value: str | None) -> str:
    """'INV-001' and ' inv 001' both become 'inv001'; '' means absent"""
    if not value:
        return ""
    return _NON_ASCII_ALNUM.sub("", str(value).strip().lower())


def parse_date(value) -> datetime | None:
    """Coerce date/datetime/ISO string to an aware UTC datetime, None if unusable"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def day_bounds(value) -> tuple[datetime, datetime] | None:
    """
    Half-open UTC window [day-1 00:00, day+2 00:00) around ``value``.

    Three calendar days in total; used for candidate queries, not equality.
    """
    dt = parse_date(value)
    if dt is None:
        return None
    midnight = datetime.combine(dt.date(), time.min, tzinfo=UTC)
    return midnight - timedelta(days=1), midnight + timedelta(days=2)


def in_window(value, bounds: tuple[datetime, datetime]) -> bool:
    dt = parse_date(value)
    if dt is None:
        return False
    start, end = bounds
    return start <= dt < end


def compute_invoice_fingerprint(invoice_id, vendor, invoice_date, amount) -> str | None:
    """
    Stable sha256 over the normalized invoice identity.

    Returns None when invoice id, vendor or date is missing.
    """
    invoice_norm = normalize_invoice_id(invoice_id)
    vendor_norm = normalize_vendor(vendor)
    dt = parse_date(invoice_date)
    if not invoice_norm or not vendor_norm or dt is None:
        return None

    minor_units = int(normalize_amount(amount) * 100)
    raw = f"{invoice_norm}|{vendor_norm}|{dt.date().isoformat()}|{minor_units}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
