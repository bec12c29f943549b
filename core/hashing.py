"""
Deterministic content hashing used for dedup and provenance.
"""

import hashlib
import json
from datetime import date
from typing import Any, Iterable, Optional


def sha256(value: str) -> str:
    """SHA-256 hex digest of a string."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def canonical_json(payload: Any) -> str:
    """Serialize to JSON with sorted keys and no insignificant whitespace."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def content_hash(body: str) -> str:
    """Hash of a raw response body."""
    return sha256(body or "")


def content_signature(payload: Any) -> str:
    """Hash of a structured payload, independent of key order."""
    return sha256(canonical_json(payload))


def compute_dom_signature(labels: Iterable[str]) -> str:
    """
    Hash over the structural labels a parser saw on a page.

    Changes when the portal layout changes even if the values do not.
    """
    return sha256("|".join(sorted({label.strip().lower() for label in labels if label})))


def compute_sale_key(sale_date: Optional[date], sale_price: Optional[float]) -> str:
    """Dedup key for a sale: identical (date, price) tuples collapse."""
    parts = [
        sale_date.isoformat() if sale_date else "",
        f"{sale_price:.2f}" if sale_price is not None else "",
    ]
    return sha256("|".join(parts))
