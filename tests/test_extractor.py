#!/usr/bin/env python
"""
Tests for strategy merging, range validation and complete-quote selection
"""
import sys
sys.path.insert(0, '.')

import pytest

from ingest.extractor import ExtractionFailed, Extractor, build_extractor
from ingest.strategies import STRATEGY_FAMILIES, StrategyFamily
from ingest.validator import complete_quotes, validate
from market.instruments import Instrument, load_instrument_specs
from tests.page_fixtures import (
    GOLDTRADERS_9999_ONLY_HTML,
    GOLDTRADERS_INLINE_TEXT,
    GOLDTRADERS_LOOSE_TEXT,
    GOLDTRADERS_OUT_OF_RANGE_HTML,
    GOLDTRADERS_TABLE_HTML,
    GOLDTRADERS_TEXT,
    MAINTENANCE_HTML,
    SPOT_HTML,
    SPOT_SCRIPT_ONLY_HTML,
)


SPECS = load_instrument_specs()
GOLD = STRATEGY_FAMILIES['goldtraders_board']
SPOT = STRATEGY_FAMILIES['spot_quote']


def _family(*strategies):
    return StrategyFamily(
        name='test_family',
        instruments=(Instrument.GOLD9999, Instrument.GOLD9650),
        strategies=tuple(strategies),
    )


def test_goldtraders_table_page():
    candidates = Extractor(GOLD, SPECS).extract(GOLDTRADERS_TABLE_HTML)
    quotes = complete_quotes(validate(candidates, SPECS))

    assert quotes[Instrument.GOLD9650] == (62000.0, 62100.0)
    assert quotes[Instrument.GOLD9999] == (37385.0, 37485.0)


def test_goldtraders_text_only_page():
    candidates = Extractor(GOLD, SPECS).extract(GOLDTRADERS_TEXT)
    assert candidates[(Instrument.GOLD9650, 'buy')] == 62000.0
    assert candidates[(Instrument.GOLD9999, 'sell')] == 37485.0


def test_inline_bar_text_quotes_only_965():
    candidates = Extractor(GOLD, SPECS).extract(GOLDTRADERS_INLINE_TEXT)

    assert candidates[(Instrument.GOLD9650, 'buy')] == 62000.0
    assert candidates[(Instrument.GOLD9650, 'sell')] == 62100.0
    assert candidates[(Instrument.GOLD9999, 'buy')] == 0.0
    assert complete_quotes(candidates) == {Instrument.GOLD9650: (62000.0, 62100.0)}


def test_unlabelled_bar_text_falls_through_to_pattern():
    candidates = Extractor(GOLD, SPECS).extract(GOLDTRADERS_LOOSE_TEXT)
    assert candidates[(Instrument.GOLD9650, 'buy')] == 62000.0
    assert candidates[(Instrument.GOLD9650, 'sell')] == 62100.0


def test_partial_page_leaves_missing_instrument_incomplete():
    candidates = Extractor(GOLD, SPECS).extract(GOLDTRADERS_9999_ONLY_HTML)
    quotes = complete_quotes(validate(candidates, SPECS))
    assert Instrument.GOLD9650 not in quotes
    assert quotes[Instrument.GOLD9999] == (37385.0, 37485.0)


def test_spot_page_and_regex_fallback():
    spot = Extractor(SPOT, SPECS)
    assert spot.extract(SPOT_HTML) == {(Instrument.SPOT, 'buy'): 2345.60, (Instrument.SPOT, 'sell'): 2345.60}
    assert spot.extract(SPOT_SCRIPT_ONLY_HTML)[(Instrument.SPOT, 'buy')] == 2345.60


def test_first_non_zero_value_wins():
    def primary(page, ranges):
        return {(Instrument.GOLD9650, 'buy'): 62000.0, (Instrument.GOLD9650, 'sell'): 0.0}

    def secondary(page, ranges):
        return {
            (Instrument.GOLD9650, 'buy'): 61000.0,
            (Instrument.GOLD9650, 'sell'): 62100.0,
            (Instrument.GOLD9999, 'buy'): 37385.0,
        }

    candidates = Extractor(_family(primary, secondary), SPECS).extract("<html></html>")

    assert candidates[(Instrument.GOLD9650, 'buy')] == 62000.0
    assert candidates[(Instrument.GOLD9650, 'sell')] == 62100.0
    assert candidates[(Instrument.GOLD9999, 'buy')] == 37385.0
    assert candidates[(Instrument.GOLD9999, 'sell')] == 0.0


def test_strategy_errors_are_skipped():
    def broken(page, ranges):
        raise IndexError("layout changed")

    def working(page, ranges):
        return {(Instrument.GOLD9999, 'buy'): 37385.0, (Instrument.GOLD9999, 'sell'): 37485.0}

    candidates = Extractor(_family(broken, working), SPECS).extract("")
    assert candidates[(Instrument.GOLD9999, 'buy')] == 37385.0


def test_later_strategies_skipped_once_complete():
    calls = []

    def complete(page, ranges):
        calls.append('complete')
        return {
            (Instrument.GOLD9999, 'buy'): 37385.0,
            (Instrument.GOLD9999, 'sell'): 37485.0,
            (Instrument.GOLD9650, 'buy'): 62000.0,
            (Instrument.GOLD9650, 'sell'): 62100.0,
        }

    def never(page, ranges):
        calls.append('never')
        return None

    Extractor(_family(complete, never), SPECS).extract("")
    assert calls == ['complete']


@pytest.mark.parametrize('page', [MAINTENANCE_HTML, GOLDTRADERS_OUT_OF_RANGE_HTML, ''])
def test_extraction_failure_when_nothing_found(page):
    with pytest.raises(ExtractionFailed) as exc_info:
        Extractor(GOLD, SPECS).extract(page)
    assert exc_info.value.family == 'goldtraders_board'


def test_conversion_rate_scales_ranges_and_values():
    # Page quotes in a unit 35x smaller than the board's unit
    spot = Extractor(SPOT, SPECS, conversion_rate=35)
    assert spot.ranges[Instrument.SPOT].low == pytest.approx(1000 / 35)

    candidates = spot.extract('<span data-test="instrument-price-last">100.00</span>')
    assert candidates[(Instrument.SPOT, 'buy')] == 3500.0
    assert SPECS[Instrument.SPOT].price_range.contains(candidates[(Instrument.SPOT, 'sell')])


def test_conversion_rate_must_be_positive():
    with pytest.raises(ValueError):
        Extractor(SPOT, SPECS, conversion_rate=-2)
    with pytest.raises(ValueError):
        Extractor(SPOT, SPECS, conversion_rate=0)
    assert Extractor(SPOT, SPECS, conversion_rate=None).conversion_rate == 1.0


def test_build_extractor_unknown_family():
    with pytest.raises(RuntimeError):
        build_extractor('mystery', {'extractor': 'nope'}, SPECS)
    assert build_extractor('goldtraders', {'extractor': 'goldtraders_board'}, SPECS).name == 'goldtraders_board'


def test_validate_zeroes_out_of_range_fields():
    candidates = {
        (Instrument.GOLD9999, 'buy'): 120000.0,
        (Instrument.GOLD9999, 'sell'): 37485.0,
        (Instrument.GOLD9650, 'buy'): 62000.0,
        (Instrument.GOLD9650, 'sell'): 62100.0,
    }
    validated = validate(candidates, SPECS, family='goldtraders_board')

    assert validated[(Instrument.GOLD9999, 'buy')] == 0.0
    assert validated[(Instrument.GOLD9999, 'sell')] == 37485.0
    assert complete_quotes(validated) == {Instrument.GOLD9650: (62000.0, 62100.0)}


def test_validate_all_rejected_is_failure():
    candidates = {(Instrument.SPOT, 'buy'): 12.0, (Instrument.SPOT, 'sell'): 99999.0}
    with pytest.raises(ExtractionFailed):
        validate(candidates, SPECS, family='spot_quote')


def test_validate_range_bounds_are_inclusive():
    candidates = {(Instrument.SPOT, 'buy'): 1000.0, (Instrument.SPOT, 'sell'): 10000.0}
    assert validate(candidates, SPECS) == candidates
