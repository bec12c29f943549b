"""
Unit tests for the shared Property Appraiser page parser
"""

import pytest
from datetime import date
from core.parcel_id import extract_parcel_id_from_manatee_url
from ingestion.sources.pao_html import (
    PaoPageParser,
    clean_owner,
    has_no_results,
    parse_date,
    parse_money,
    parse_search_results,
    pick_best_result,
    split_situs,
)

SEARCH_RESULTS_HTML = """
<table>
  <tbody>
    <tr><td><a href="/parcel/?parid=1111111111">100 MAIN ST UNIT 1</a></td><td>BRADENTON</td></tr>
    <tr><td><a href="/parcel/?parid=2222222222">100 MAIN ST UNIT 2</a></td><td>BRADENTON</td></tr>
    <tr><td><a href="/parcel/?parid=2222222222">100 MAIN ST UNIT 2 (duplicate link)</a></td></tr>
  </tbody>
</table>
"""


class TestValueHelpers:
    """Money, dates, addresses and owners as portals print them"""

    def test_parse_money(self):
        assert parse_money("$1,234.50") == 1234.5
        assert parse_money("($500)") == -500
        assert parse_money("n/a") is None
        assert parse_money(None) is None

    def test_parse_date(self):
        assert parse_date("06/15/2019") == date(2019, 6, 15)
        assert parse_date("2019-06-15") == date(2019, 6, 15)
        assert parse_date("Jan 5, 2020") == date(2020, 1, 5)
        assert parse_date("sometime") is None
        assert parse_date("") is None

    def test_split_situs_with_state_and_zip(self):
        assert split_situs("1234 PALM AVE, BRADENTON, FL 34205") == ("1234 PALM AVE", "BRADENTON", "FL", "34205")

    def test_split_situs_without_comma_before_state(self):
        assert split_situs("1660 RINGLING BLVD, SARASOTA FL 34236") == ("1660 RINGLING BLVD", "SARASOTA", "FL", "34236")

    def test_split_situs_street_only(self):
        assert split_situs("100 MAIN ST") == ("100 MAIN ST", None, "FL", None)
        assert split_situs(None) == (None, None, None, None)

    def test_clean_owner_keeps_first_owner_without_date(self):
        assert clean_owner("DOE JANE 01/02/2020; DOE JOHN") == "DOE JANE"
        assert clean_owner("  ") is None


class TestPaoPageParser:
    """Detail page extraction"""

    def test_full_page(self, parcel_page_html):
        parsed = PaoPageParser().parse(parcel_page_html, "https://www.manateepao.gov/parcel/?parid=5788100009")
        record = parsed.record

        assert parsed.warnings == []
        assert record.parcel_id == "5788-1000-09"
        assert record.owner == "SMITH JOHN & JANE"
        assert (record.address, record.city, record.state, record.zip_code) == (
            "1234 PALM AVE", "BRADENTON", "FL", "34205"
        )
        assert record.use_code == "0100"
        assert record.use_description == "SINGLE FAMILY RESIDENTIAL"
        assert record.legal_description == "LOT 5 BLK 2 PALM GROVE SUB"
        assert record.exemptions == ["HOMESTEAD"]

        assert record.land.lot_size_acres == 0.25
        assert record.land.lot_size_sqft == 10890

    def test_valuations_most_recent_first(self, parcel_page_html):
        record = PaoPageParser().parse(parcel_page_html).record

        assert [v.year for v in record.valuations] == [2024, 2023]
        latest = record.valuations[0]
        assert latest.just_total == 370000
        assert latest.just_land == 110000
        assert latest.just_building == 260000
        assert latest.assessed_total == 309000
        assert latest.taxable_total == 259000

    def test_sales(self, parcel_page_html):
        record = PaoPageParser().parse(parcel_page_html).record

        assert len(record.sales) == 1
        sale = record.sales[0]
        assert sale.date == "06/15/2019"
        assert sale.price == 325000
        assert sale.book_page == "2750/1234"
        assert sale.deed_type == "WD"
        assert sale.qualified is True
        assert sale.grantor == "DOE JANE"

    def test_building(self, parcel_page_html):
        building = PaoPageParser().parse(parcel_page_html).record.building

        assert building.year_built == 1985
        assert building.bedrooms == 3
        assert building.bathrooms == 2
        assert building.living_area_sqft == 1850
        assert building.stories == 1
        assert building.has_pool is True
        assert building.garage_spaces == 2

    def test_rooms_column(self):
        html = """
        <table>
          <thead><tr><th>Year Built</th><th>Rooms</th><th>Living Area</th></tr></thead>
          <tbody><tr><td>1999</td><td>4/2/1</td><td>2,100</td></tr></tbody>
        </table>
        """
        building = PaoPageParser().parse(html).record.building
        assert building.year_built == 1999
        assert building.bedrooms == 4
        assert building.bathrooms == 2.5
        assert building.living_area_sqft == 2100

    def test_table_classification_is_order_independent(self, parcel_page_html):
        reordered = parcel_page_html.replace(
            "<th>Year</th><th>Land</th><th>Building</th><th>Just</th><th>Assessed</th><th>Taxable</th>",
            "<th>Taxable</th><th>Assessed</th><th>Just</th><th>Building</th><th>Land</th><th>Year</th>",
        ).replace(
            "<tr><td>2024</td><td>$110,000</td><td>$260,000</td><td>$370,000</td><td>$309,000</td><td>$259,000</td></tr>",
            "<tr><td>$259,000</td><td>$309,000</td><td>$370,000</td><td>$260,000</td><td>$110,000</td><td>2024</td></tr>",
        )
        record = PaoPageParser().parse(reordered).record
        row_2024 = next(v for v in record.valuations if v.year == 2024)
        assert row_2024.just_total == 370000
        assert row_2024.taxable_total == 259000

    def test_empty_document(self):
        parsed = PaoPageParser().parse("   ")
        assert parsed.warnings == ["empty document"]
        assert parsed.record.parcel_id is None

    def test_unrecognised_page_warns_instead_of_raising(self):
        parsed = PaoPageParser().parse("<html><body><p>Scheduled maintenance</p></body></html>")
        assert "parcel id not found" in parsed.warnings
        assert "owner not found" in parsed.warnings
        assert "situs address not found" in parsed.warnings
        assert "no valuations table" in parsed.warnings
        assert "no sales history" in parsed.warnings

    def test_parcel_id_falls_back_to_url(self):
        parser = PaoPageParser(parcel_id_from_url=extract_parcel_id_from_manatee_url)
        parsed = parser.parse("<html><body><p>Owner</p></body></html>", "https://www.manateepao.gov/parcel/?parid=5788100009")
        assert parsed.record.parcel_id == "5788100009"
        assert "parcel id not found" not in parsed.warnings

    def test_same_bytes_same_labels(self, parcel_page_html):
        first = PaoPageParser().parse(parcel_page_html)
        second = PaoPageParser().parse(parcel_page_html)
        assert first.labels == second.labels
        assert first.record == second.record
        assert "table:valuations:just" in first.labels


class TestSearchResults:
    """Search result pages"""

    def test_links_resolved_and_deduplicated(self):
        hits = parse_search_results(SEARCH_RESULTS_HTML, "https://www.manateepao.gov/search/", "a[href*='parid=']")
        assert [h.url for h in hits] == [
            "https://www.manateepao.gov/parcel/?parid=1111111111",
            "https://www.manateepao.gov/parcel/?parid=2222222222",
        ]
        assert "BRADENTON" in hits[0].text

    def test_unit_number_wins(self):
        hits = parse_search_results(SEARCH_RESULTS_HTML, "https://www.manateepao.gov/search/", "a[href*='parid=']")
        best = pick_best_result(hits, "100 Main St Unit 2, Bradenton, FL")
        assert best.url.endswith("parid=2222222222")

    def test_ties_keep_page_order(self):
        hits = parse_search_results(SEARCH_RESULTS_HTML, "https://www.manateepao.gov/search/", "a[href*='parid=']")
        assert pick_best_result(hits, "100 Main St").url.endswith("parid=1111111111")
        assert pick_best_result([], "100 Main St") is None

    def test_no_results_phrases(self):
        assert has_no_results("<p>No records found for your search.</p>")
        assert not has_no_results("<p>1 result</p>")
