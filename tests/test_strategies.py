#!/usr/bin/env python
"""
Unit tests for the individual page extraction strategies
"""
import sys
sys.path.insert(0, '.')

import pytest

from ingest.strategies import (
    PageContent,
    bar_965_pattern,
    hongkong_pattern,
    last_price_pattern,
    number_after,
    numbers_in,
    parse_number,
    price_selector_scan,
    table_keyword_scan,
    text_section_scan,
)
from market.instruments import Instrument, PriceRange, load_instrument_specs
from tests.page_fixtures import (
    GOLDTRADERS_9999_ONLY_HTML,
    GOLDTRADERS_INLINE_TEXT,
    GOLDTRADERS_LOOSE_TEXT,
    GOLDTRADERS_OUT_OF_RANGE_HTML,
    GOLDTRADERS_TABLE_HTML,
    GOLDTRADERS_TEXT,
    HONG_KONG_TEXT,
    MAINTENANCE_HTML,
    SPOT_HTML,
    SPOT_SCRIPT_ONLY_HTML,
)


RANGES = {instrument: spec.price_range for instrument, spec in load_instrument_specs().items()}

G9999_BUY = (Instrument.GOLD9999, 'buy')
G9999_SELL = (Instrument.GOLD9999, 'sell')
G9650_BUY = (Instrument.GOLD9650, 'buy')
G9650_SELL = (Instrument.GOLD9650, 'sell')


def test_number_helpers():
    assert parse_number("฿ 62,100.50 บาท") == 62100.50
    assert parse_number("n/a") is None
    assert parse_number(None) is None
    assert numbers_in("96.5% 62,000 and 62,100.00") == [96.5, 62000.0, 62100.0]


def test_number_after_skips_purity_figures():
    # 96.5 precedes the price but is far below the plausible range
    text = "ทองคำแท่ง 96.5% รับซื้อ 96.5 62,000.00"
    assert number_after(text, ('รับซื้อ',), PriceRange(50000, 100000)) == 62000.0
    assert number_after(text, ('ขายออก',), PriceRange(50000, 100000)) == 0.0


def test_table_keyword_scan_reads_both_boards():
    found = table_keyword_scan(PageContent(GOLDTRADERS_TABLE_HTML), RANGES)

    assert found[G9650_BUY] == 62000.0
    assert found[G9650_SELL] == 62100.0
    assert found[G9999_BUY] == 37385.0
    assert found[G9999_SELL] == 37485.0


def test_table_keyword_scan_prefers_bar_over_jewelry():
    found = table_keyword_scan(PageContent(GOLDTRADERS_TABLE_HTML), RANGES)
    # Jewelry figures (62,900 / 60,936) only fill fields the bar rows left empty
    assert found[G9650_SELL] != 62900.0
    assert found[G9650_BUY] != 60936.0


def test_table_keyword_scan_partial_page():
    found = table_keyword_scan(PageContent(GOLDTRADERS_9999_ONLY_HTML), RANGES)
    assert G9650_BUY not in found
    assert found[G9999_BUY] == 37385.0
    assert found[G9999_SELL] == 37485.0


def test_table_keyword_scan_without_tables():
    assert table_keyword_scan(PageContent(GOLDTRADERS_TEXT), RANGES) is None


def test_text_section_scan_tracks_sections():
    found = text_section_scan(PageContent(GOLDTRADERS_TEXT), RANGES)

    assert found == {
        G9650_BUY: 62000.0,
        G9650_SELL: 62100.0,
        G9999_BUY: 37385.0,
        G9999_SELL: 37485.0,
    }


def test_text_section_scan_distinguishes_open_from_close():
    # "ราคาเปิด" contains "ปิด"; the close figure must not be read from the open line
    page = PageContent("ราคาทองอ้างอิงตลาดต่างประเทศ\nราคาเปิด 37,385.00\n")
    found = text_section_scan(page, RANGES)
    assert found == {G9999_BUY: 37385.0}


def test_bar_pattern_sell_first_inline():
    found = bar_965_pattern(PageContent(GOLDTRADERS_INLINE_TEXT), RANGES)
    assert found == {G9650_BUY: 62000.0, G9650_SELL: 62100.0}


def test_bar_pattern_buy_first_inline():
    text = "ทองคำแท่ง 96.5% รับซื้อ 62,000.00 ขายออก 62,100.00"
    found = bar_965_pattern(PageContent(text), RANGES)
    assert found == {G9650_BUY: 62000.0, G9650_SELL: 62100.0}


def test_bar_pattern_loose_assigns_min_to_buy():
    found = bar_965_pattern(PageContent(GOLDTRADERS_LOOSE_TEXT), RANGES)
    assert found == {G9650_BUY: 62000.0, G9650_SELL: 62100.0}


def test_bar_pattern_rejects_out_of_range_pair():
    assert bar_965_pattern(PageContent("ทองคำแท่ง 96.5% 620.00 621.00"), RANGES) is None


def test_hongkong_pattern():
    found = hongkong_pattern(PageContent(HONG_KONG_TEXT), RANGES)
    assert found == {G9999_BUY: 37385.0, G9999_SELL: 37485.0}

    swapped = hongkong_pattern(PageContent("ฮ่องกง 37,485.00 37,385.00"), RANGES)
    assert swapped == {G9999_BUY: 37385.0, G9999_SELL: 37485.0}


def test_hongkong_pattern_out_of_range():
    assert hongkong_pattern(PageContent("ฮ่องกง 1,000.00 2,000.00"), RANGES) is None


def test_price_selector_scan():
    found = price_selector_scan(PageContent(SPOT_HTML), RANGES)
    assert found == {(Instrument.SPOT, 'buy'): 2345.60, (Instrument.SPOT, 'sell'): 2345.60}


def test_price_selector_scan_ignores_non_prices():
    assert price_selector_scan(PageContent(SPOT_SCRIPT_ONLY_HTML), RANGES) is None


def test_last_price_pattern_reads_raw_markup():
    found = last_price_pattern(PageContent(SPOT_SCRIPT_ONLY_HTML), RANGES)
    assert found == {(Instrument.SPOT, 'buy'): 2345.60, (Instrument.SPOT, 'sell'): 2345.60}


@pytest.mark.parametrize('strategy', [
    table_keyword_scan,
    text_section_scan,
    bar_965_pattern,
    hongkong_pattern,
    price_selector_scan,
    last_price_pattern,
])
@pytest.mark.parametrize('page', [MAINTENANCE_HTML, GOLDTRADERS_OUT_OF_RANGE_HTML, ''])
def test_strategies_never_report_implausible_values(strategy, page):
    found = strategy(PageContent(page), RANGES) or {}
    for (instrument, _field), value in found.items():
        assert RANGES[instrument].contains(value)
