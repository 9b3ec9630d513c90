"""
Record Fingerprints

Stable content hashes used to recognise a listing that was merged away when
it is imported again, and the exact-duplicate report that groups listings
sharing title, street and city verbatim.
"""

import hashlib
from collections import OrderedDict
from typing import Iterable, List, Optional

from .models import PropertyRecord
from .similarity_scoring import normalize_text


def _text(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _number(value) -> str:
    if value is None:
        return "0"
    # 1200.0 and 1200 must fingerprint identically
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def property_fingerprint(record: PropertyRecord) -> str:
    """MD5 over the identifying fields of a listing.

    Text fields are trimmed and lowercased; missing text becomes the empty
    string and missing numbers become ``0``.
    """
    parts = [
        _text(record.title),
        _text(record.street_name),
        _text(record.street_number),
        _text(record.zip_code),
        _text(record.city),
        _number(record.monthly_rent),
        _number(record.bedrooms),
        _number(record.square_meters),
    ]
    return hashlib.md5("|".join(parts).encode("utf-8")).hexdigest()


def exact_duplicate_key(record: PropertyRecord) -> str:
    return "|".join(
        normalize_text(value) for value in (record.title, record.street_name, record.city)
    )


def find_exact_duplicates(records: Iterable[PropertyRecord]) -> List[List[str]]:
    """Group record ids whose title, street and city match after normalization.

    Only groups of two or more are returned, in order of first appearance,
    each listing its ids in input order. Records with none of the three
    fields are never grouped.
    """
    buckets: "OrderedDict[str, List[str]]" = OrderedDict()
    for record in records:
        key = exact_duplicate_key(record)
        if key == "||":
            continue
        buckets.setdefault(key, []).append(record.id)
    return [ids for ids in buckets.values() if len(ids) > 1]
