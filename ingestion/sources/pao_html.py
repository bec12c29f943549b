"""
Shared HTML parser for county Property Appraiser (PAO) detail pages.

PAO portals differ in markup but print the same facts: label/value pairs
(definition lists, bootstrap rows, two-cell table rows) plus header-driven
tables for values, sales and buildings. The parser reads both shapes and
classifies tables by their header text, so a reordered column or an extra
table does not break extraction.

Parsing never raises: anything it cannot read becomes a warning.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin
import re
import logging

from bs4 import BeautifulSoup

from schemas.records import (
    AssessorRecord,
    BuildingInfo,
    ExtraFeature,
    Inspection,
    LandInfo,
    SaleRow,
    ValuationRow,
)

logger = logging.getLogger(__name__)

SQFT_PER_ACRE = 43560

_WS = re.compile(r"\s+")
_YEAR = re.compile(r"\b(1[89]\d{2}|2[01]\d{2})\b")
_ZIP = re.compile(r"\b(\d{5})(?:-\d{4})?\b")
_STATE_ZIP = re.compile(r"^([A-Z]{2})\s*(\d{5})?", re.IGNORECASE)
_ACRES = re.compile(r"([\d.,]+)\s*(?:ac\b|acres?)", re.IGNORECASE)
_SQFT = re.compile(r"([\d,]+(?:\.\d+)?)\s*(?:sq\.?\s*ft|sf\b|square feet)", re.IGNORECASE)
_TRAILING_DATE = re.compile(r"\s+\d{1,2}/\d{1,2}/\d{4}.*$")
_DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%y", "%Y-%m-%d", "%m-%d-%Y", "%b %d, %Y", "%B %d, %Y")


# ============================================================================
# Value helpers
# ============================================================================

def clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = _WS.sub(" ", value).strip()
    if cleaned in ("", "-", "--", "N/A", "n/a", "None"):
        return None
    return cleaned


def parse_money(value: Optional[str]) -> Optional[float]:
    """"$1,234.50" -> 1234.5; anything unreadable -> None."""
    if not value:
        return None
    cleaned = re.sub(r"[$,\s]", "", value)
    negative = cleaned.startswith("(") and cleaned.endswith(")")
    cleaned = cleaned.strip("()")
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return -number if negative else number


def parse_number(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    match = re.search(r"-?[\d,]*\.?\d+", value)
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def parse_int(value: Optional[str]) -> Optional[int]:
    number = parse_number(value)
    return int(number) if number is not None else None


def parse_year(value: Optional[str]) -> Optional[int]:
    match = _YEAR.search(value or "")
    return int(match.group(1)) if match else None


def parse_date(value: Optional[str]) -> Optional[date]:
    """Dates as PAO portals print them (01/15/2020, 2020-01-15, Jan 15, 2020)."""
    text = clean_text(value)
    if not text:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def split_situs(situs: Optional[str]) -> Tuple[Optional[str], Optional[str], Optional[str], Optional[str]]:
    """"1660 RINGLING BLVD, SARASOTA, FL 34236" -> (street, city, state, zip)."""
    text = clean_text(situs)
    if not text:
        return None, None, None, None

    parts = [p.strip() for p in text.split(",") if p.strip()]
    street = parts[0] if parts else None
    city = parts[1] if len(parts) >= 2 else None
    state = None
    zip_code = None

    if len(parts) >= 3:
        match = _STATE_ZIP.match(parts[2])
        if match:
            state = match.group(1).upper()
            zip_code = match.group(2)

    if zip_code is None and len(parts) >= 2:
        match = _ZIP.search(", ".join(parts[1:]))
        if match:
            zip_code = match.group(1)

    # "SARASOTA FL 34236" printed without a comma before the state
    if city:
        city = re.sub(r"\s+[A-Z]{2}\s+\d{5}(?:-\d{4})?$", "", city).strip() or None

    return street, city, state or "FL", zip_code


def clean_owner(value: Optional[str]) -> Optional[str]:
    text = clean_text(value)
    if not text:
        return None
    first = re.split(r"[;\n]", text)[0]
    return _TRAILING_DATE.sub("", first).strip() or None


# ============================================================================
# Page parser
# ============================================================================

@dataclass
class ParsedPage:
    record: AssessorRecord
    warnings: List[str] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)


@dataclass
class _Table:
    element_id: str
    headers: List[str]
    rows: List[List[str]]


class PaoPageParser:
    """
    Parse one PAO detail page into an AssessorRecord.

    Args:
        parcel_id_from_url: Source-specific fallback that reads the parcel id
            from the detail URL
    """

    OWNER_LABELS = ("owner", "ownership", "owner name", "owners")
    SITUS_LABELS = ("situs address", "situs", "property address", "location address")
    PARCEL_LABELS = ("parcel id", "parcel", "parcel number", "account", "account number")
    USE_CODE_LABELS = ("use code", "land use code", "property use code")
    USE_DESC_LABELS = ("property use", "land use", "use", "use description")
    LEGAL_LABELS = ("legal description", "legal", "short description")
    LAND_LABELS = ("land area", "lot size", "acreage", "acres", "land size")

    def __init__(self, parcel_id_from_url: Optional[Callable[[str], Optional[str]]] = None):
        self.parcel_id_from_url = parcel_id_from_url

    def parse(self, html: str, url: str = "") -> ParsedPage:
        warnings: List[str] = []
        if not html or not html.strip():
            return ParsedPage(record=AssessorRecord(), warnings=["empty document"])

        soup = BeautifulSoup(html, "html.parser")
        fields, labels = _collect_label_values(soup)
        tables = _collect_tables(soup)

        record = AssessorRecord()

        # Identity
        parcel_id = _lookup(fields, self.PARCEL_LABELS)
        if not parcel_id and self.parcel_id_from_url and url:
            parcel_id = self.parcel_id_from_url(url)
        record.parcel_id = clean_text(parcel_id)
        if not record.parcel_id:
            warnings.append("parcel id not found")

        record.owner = clean_owner(_lookup(fields, self.OWNER_LABELS))
        if not record.owner:
            warnings.append("owner not found")

        street, city, state, zip_code = split_situs(_lookup(fields, self.SITUS_LABELS))
        record.address, record.city, record.state, record.zip_code = street, city, state, zip_code
        if not street:
            warnings.append("situs address not found")

        # Land / use
        record.use_code = clean_text(_lookup(fields, self.USE_CODE_LABELS))
        record.use_description = clean_text(_lookup(fields, self.USE_DESC_LABELS, partial=False))
        record.legal_description = clean_text(_lookup(fields, self.LEGAL_LABELS))
        record.subdivision = clean_text(_lookup(fields, ("subdivision",)))
        record.zoning = clean_text(_lookup(fields, ("zoning",)))
        record.land = _parse_land(_lookup(fields, self.LAND_LABELS), record.use_description)

        exemptions = clean_text(_lookup(fields, ("exemptions", "exemption")))
        if exemptions:
            record.exemptions = [e.strip() for e in re.split(r"[;,]", exemptions) if e.strip()]

        # Tables
        for table in tables:
            kind = _classify(table)
            labels.extend(f"table:{kind}:{h}" for h in table.headers)
            try:
                if kind == "valuations":
                    record.valuations.extend(_parse_valuations(table, warnings))
                elif kind == "sales":
                    record.sales.extend(_parse_sales(table, warnings))
                elif kind == "buildings":
                    building = _parse_building(table)
                    if building is not None and record.building == BuildingInfo():
                        record.building = building
                elif kind == "features":
                    record.extra_features.extend(_parse_features(table))
                elif kind == "inspections":
                    record.inspections.extend(_parse_inspections(table))
            except (ValueError, IndexError, AttributeError) as e:
                warnings.append(f"could not parse {kind} table: {e}")

        record.valuations.sort(key=lambda v: v.year, reverse=True)

        if not record.valuations:
            warnings.append("no valuations table")
        if not record.sales:
            warnings.append("no sales history")

        return ParsedPage(record=record, warnings=warnings, labels=labels)


# ============================================================================
# Label / value collection
# ============================================================================

def _collect_label_values(soup) -> Tuple[Dict[str, str], List[str]]:
    """Label (lower-case, no trailing colon) -> value, first occurrence wins."""
    fields: Dict[str, str] = {}
    labels: List[str] = []

    def add(label: str, value: str):
        label = _WS.sub(" ", label).strip().rstrip(":").strip().lower()
        value = _WS.sub(" ", value).strip()
        if not label or not value or len(label) > 50 or len(value) > 500:
            return
        labels.append(label)
        fields.setdefault(label, value)

    # <dl><dt>Owner</dt><dd>...</dd></dl>
    for dt in soup.find_all("dt"):
        dd = dt.find_next_sibling("dd")
        if dd is not None:
            add(dt.get_text(" ", strip=True), dd.get_text(" ", strip=True))

    # <div class="row"><div class="col-4">Owner:</div><div class="col-8">...</div></div>
    for row in soup.find_all("div", class_="row"):
        cols = [
            child for child in row.find_all("div", recursive=False)
            if any(c.startswith("col") for c in (child.get("class") or []))
        ]
        if len(cols) >= 2:
            add(cols[0].get_text(" ", strip=True), cols[1].get_text(" ", strip=True))

    # <tr><th>Owner</th><td>...</td></tr>
    for tr in soup.find_all("tr"):
        cells = tr.find_all(["th", "td"], recursive=False)
        if len(cells) == 2 and cells[0].name == "th" and cells[1].name == "td":
            add(cells[0].get_text(" ", strip=True), cells[1].get_text(" ", strip=True))

    return fields, labels


def _lookup(fields: Dict[str, str], candidates, partial: bool = True) -> Optional[str]:
    for candidate in candidates:
        if candidate in fields:
            return fields[candidate]
    if not partial:
        return None
    for candidate in candidates:
        if " " not in candidate and len(candidate) < 5:
            continue
        for label, value in fields.items():
            if label.startswith(candidate):
                return value
    return None


def _parse_land(value: Optional[str], use_description: Optional[str]) -> LandInfo:
    land = LandInfo(land_use=use_description)
    text = clean_text(value)
    if not text:
        return land

    acres = _ACRES.search(text)
    sqft = _SQFT.search(text)
    if acres:
        land.lot_size_acres = parse_number(acres.group(1))
    if sqft:
        land.lot_size_sqft = parse_number(sqft.group(1))
    if land.lot_size_acres is not None and land.lot_size_sqft is None:
        land.lot_size_sqft = round(land.lot_size_acres * SQFT_PER_ACRE)
    if land.lot_size_sqft is not None and land.lot_size_acres is None:
        land.lot_size_acres = round(land.lot_size_sqft / SQFT_PER_ACRE, 4)
    return land


# ============================================================================
# Tables
# ============================================================================

def _collect_tables(soup) -> List[_Table]:
    tables = []
    for element in soup.find_all("table"):
        header_row = element.find("thead") or element.find("tr")
        if header_row is None:
            continue
        headers = [th.get_text(" ", strip=True).lower() for th in header_row.find_all("th")]
        if len(headers) < 2:
            continue

        body = element.find("tbody") or element
        rows = []
        for tr in body.find_all("tr"):
            cells = tr.find_all("td")
            if not cells:
                continue
            rows.append([td.get_text(" ", strip=True) for td in cells])
        tables.append(_Table(element_id=(element.get("id") or "").lower(), headers=headers, rows=rows))
    return tables


def _classify(table: _Table) -> str:
    joined = " | ".join(table.headers)
    if "inspection" in table.element_id or "inspect" in joined:
        return "inspections"
    if "feature" in table.element_id or "feature" in joined:
        return "features"
    if any(k in joined for k in ("just", "assessed", "taxable", "market value")):
        return "valuations"
    if any(k in joined for k in ("sale", "transfer", "grantee", "consideration", "recorded")):
        return "sales"
    if any(k in joined for k in ("bed", "bath", "living", "rooms", "heated", "year built")):
        return "buildings"
    return "other"


def _cell(row: List[str], index: int) -> Optional[str]:
    return clean_text(row[index]) if index < len(row) else None


def _parse_valuations(table: _Table, warnings: List[str]) -> List[ValuationRow]:
    valuations = []
    for row in table.rows:
        values: Dict[str, Optional[float]] = {}
        year = None
        for index, header in enumerate(table.headers):
            text = _cell(row, index)
            if text is None:
                continue
            if "year" in header:
                year = parse_year(text)
            elif "non" in header and "tax" in header:
                values["non_ad_valorem_taxes"] = parse_money(text)
            elif "tax" in header and "taxable" not in header:
                values["ad_valorem_taxes"] = parse_money(text)
            elif "land" in header:
                values["just_land"] = parse_money(text)
            elif "building" in header or "impr" in header:
                values["just_building"] = parse_money(text)
            elif "just" in header or "market" in header:
                values["just_total"] = parse_money(text)
            elif "assessed" in header:
                values["assessed_total"] = parse_money(text)
            elif "taxable" in header:
                values["taxable_total"] = parse_money(text)
        if year is None:
            if any(cell.strip() for cell in row):
                warnings.append(f"valuation row without a year: {row!r}")
            continue
        valuations.append(ValuationRow(year=year, **values))
    return valuations


def _parse_sales(table: _Table, warnings: List[str]) -> List[SaleRow]:
    sales = []
    for row in table.rows:
        sale = SaleRow()
        for index, header in enumerate(table.headers):
            text = _cell(row, index)
            if text is None:
                continue
            if "date" in header or header == "transfer":
                sale.date = text
            elif "price" in header or "consideration" in header or "amount" in header:
                sale.price = parse_money(text)
                if sale.price is None:
                    warnings.append(f"unreadable sale price {text!r}")
            elif "book" in header or "page" in header:
                sale.book_page = text
            elif "deed" in header or ("instrument" in header and "type" in header):
                sale.deed_type = text
            elif "instrument" in header or "document" in header or header in ("doc", "doc #"):
                sale.instrument_number = text
            elif "qual" in header:
                lowered = text.lower()
                sale.qualified = lowered.startswith("q") or lowered in ("yes", "y")
            elif "grantor" in header or "seller" in header:
                sale.grantor = text
            elif "grantee" in header or "buyer" in header:
                sale.grantee = text
        if sale.date or sale.price is not None:
            sales.append(sale)
    return sales


def _parse_building(table: _Table) -> Optional[BuildingInfo]:
    if not table.rows:
        return None
    row = table.rows[0]
    building = BuildingInfo()
    for index, header in enumerate(table.headers):
        text = _cell(row, index)
        if text is None:
            continue
        if "rooms" in header and "/" in text:
            # bed/bath/half, e.g. "3/2/1"
            parts = [parse_int(p) for p in text.split("/")]
            building.bedrooms = parts[0]
            if len(parts) >= 2 and parts[1] is not None:
                half = parts[2] if len(parts) >= 3 and parts[2] else 0
                building.bathrooms = parts[1] + half * 0.5
        elif "bed" in header:
            building.bedrooms = parse_int(text)
        elif "half" in header:
            half = parse_int(text)
            if half:
                building.bathrooms = (building.bathrooms or 0) + half * 0.5
        elif "bath" in header:
            building.bathrooms = (building.bathrooms or 0) + (parse_number(text) or 0) or None
        elif "effective" in header or "eff" in header:
            building.effective_year_built = parse_year(text)
        elif "year" in header:
            building.year_built = parse_year(text)
        elif "living" in header or "heated" in header:
            building.living_area_sqft = parse_number(text)
        elif "gross" in header or "total" in header or "under roof" in header:
            building.total_area_sqft = parse_number(text)
        elif "stor" in header:
            building.stories = parse_number(text)
        elif "construction" in header or "frame" in header:
            parts = text.split("/")
            building.construction_type = parts[0].strip() or None
            if len(parts) > 1:
                building.exterior_walls = parts[1].strip() or None
        elif "pool" in header:
            building.has_pool = text.lower() in ("y", "yes", "true") or parse_int(text) not in (None, 0)
        elif "garage" in header:
            building.garage_spaces = parse_int(text)
    if building == BuildingInfo():
        return None
    return building


def _parse_features(table: _Table) -> List[ExtraFeature]:
    features = []
    for row in table.rows:
        description = _cell(row, 0)
        if not description:
            continue
        feature = ExtraFeature(description=description)
        for text in row[1:]:
            if feature.year is None:
                feature.year = parse_year(text)
            if feature.area_sqft is None:
                match = _SQFT.search(text)
                if match:
                    feature.area_sqft = parse_number(match.group(1))
            if feature.value is None and "$" in text:
                feature.value = parse_money(text)
        features.append(feature)
    return features


def _parse_inspections(table: _Table) -> List[Inspection]:
    inspections = []
    for row in table.rows:
        inspection = Inspection()
        for index, header in enumerate(table.headers):
            text = _cell(row, index)
            if text is None:
                continue
            if "date" in header:
                inspection.date = text
            elif "type" in header:
                inspection.type = text
            elif "result" in header or "status" in header:
                inspection.result = text
            elif "inspector" in header:
                inspection.inspector = text
            elif "note" in header or "comment" in header:
                inspection.notes = text
        if inspection.date or inspection.type:
            inspections.append(inspection)
    return inspections


# ============================================================================
# Search results
# ============================================================================

NO_RESULTS_PHRASES = (
    "no results",
    "no records found",
    "no properties found",
    "no matching records",
    "0 results",
)


@dataclass
class SearchHit:
    url: str
    text: str
    parcel_id: Optional[str] = None


def has_no_results(html: str) -> bool:
    lowered = (html or "").lower()
    return any(phrase in lowered for phrase in NO_RESULTS_PHRASES)


def parse_search_results(html: str, base_url: str, link_selector: str) -> List[SearchHit]:
    """Result rows that link to a parcel detail page, in page order."""
    soup = BeautifulSoup(html or "", "html.parser")
    hits = []
    seen = set()
    for link in soup.select(link_selector):
        href = link.get("href")
        if not href:
            continue
        url = urljoin(base_url, href)
        if url in seen:
            continue
        seen.add(url)
        row = link.find_parent("tr") or link
        hits.append(SearchHit(url=url, text=row.get_text(" ", strip=True)))
    return hits


def _unit_of(address: str) -> Optional[str]:
    match = re.search(r"(?:#|\bunit\b|\bapt\b|\bste\b)\s*([\w-]+)", address, re.IGNORECASE)
    return match.group(1).upper() if match else None


def pick_best_result(hits: List[SearchHit], address: Optional[str]) -> Optional[SearchHit]:
    """
    Best hit for ``address``: a matching unit number wins, then the hit
    sharing the most address tokens. Ties keep page order.
    """
    if not hits:
        return None
    if not address:
        return hits[0]

    wanted = address.upper()
    unit = _unit_of(wanted)
    tokens = set(re.findall(r"[A-Z0-9]+", wanted))

    def score(hit: SearchHit) -> Tuple[int, int]:
        text = hit.text.upper()
        unit_match = 1 if unit and _unit_of(text) == unit else 0
        overlap = len(tokens & set(re.findall(r"[A-Z0-9]+", text)))
        return unit_match, overlap

    best = hits[0]
    best_score = score(best)
    for hit in hits[1:]:
        current = score(hit)
        if current > best_score:
            best, best_score = hit, current
    return best
