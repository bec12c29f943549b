"""
Parcel identifier normalization and the canonical parcel key.
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse, parse_qs
import re

_NON_ALNUM = re.compile(r"[^0-9A-Za-z]")
_NON_DIGIT = re.compile(r"\D")
_SARASOTA_DETAIL_PATH = re.compile(r"/parcel(?:/details)?/(\d+)", re.IGNORECASE)
_PARID_QUERY = re.compile(r"parid=([^&#]+)", re.IGNORECASE)


def normalize_parcel_id(raw: Optional[str]) -> str:
    """
    Canonical form of a raw parcel id.

    Whitespace and punctuation are stripped and the result is upper-cased;
    leading zeros are preserved. "0123-45.678 a" and "012345678A" collapse
    to the same id.
    """
    if not raw:
        return ""
    return _NON_ALNUM.sub("", raw).upper()


def normalize_numeric_parcel_id(raw: Optional[str]) -> str:
    """Strip everything but digits."""
    if not raw:
        return ""
    return _NON_DIGIT.sub("", raw)


def extract_parcel_id_from_manatee_url(url: str) -> Optional[str]:
    """
    Parcel id from a Manatee PAO detail URL, e.g.
    https://www.manateepao.gov/parcel/?parid=1234567890
    """
    try:
        values = parse_qs(urlparse(url).query).get("parid")
    except ValueError:
        values = None
    if values:
        return normalize_parcel_id(values[0]) or None

    match = _PARID_QUERY.search(url or "")
    if not match:
        return None
    return normalize_parcel_id(match.group(1)) or None


def extract_parcel_id_from_sarasota_url(url: str) -> Optional[str]:
    """
    Parcel id from a Sarasota PAO detail URL, e.g.
    https://www.sc-pa.com/propertysearch/parcel/details/0123456789
    """
    match = _SARASOTA_DETAIL_PATH.search(url or "")
    return normalize_parcel_id(match.group(1)) if match else None


@dataclass(frozen=True)
class ParcelKey:
    """Unique key of a canonical parcel: (state FIPS, county FIPS, parcel id)."""

    state_fips: str
    county_fips: str
    parcel_id_norm: str

    def __post_init__(self):
        if not (len(self.state_fips) == 2 and self.state_fips.isdigit()):
            raise ValueError(f"State FIPS must be 2 digits, got {self.state_fips!r}")
        if not (len(self.county_fips) == 3 and self.county_fips.isdigit()):
            raise ValueError(f"County FIPS must be 3 digits, got {self.county_fips!r}")
        if not self.parcel_id_norm or self.parcel_id_norm != normalize_parcel_id(self.parcel_id_norm):
            raise ValueError(f"Parcel id must be normalized, got {self.parcel_id_norm!r}")

    @classmethod
    def build(cls, state_fips: str, county_fips: str, parcel_id_raw: str) -> "ParcelKey":
        return cls(state_fips, county_fips, normalize_parcel_id(parcel_id_raw))

    @classmethod
    def parse(cls, value: str) -> "ParcelKey":
        """Parse the "SS-CCC-PARCELID" string form."""
        parts = (value or "").split("-", 2)
        if len(parts) != 3:
            raise ValueError(f"Invalid parcel key: {value!r}")
        return cls.build(parts[0], parts[1], parts[2])

    def __str__(self) -> str:
        return f"{self.state_fips}-{self.county_fips}-{self.parcel_id_norm}"
