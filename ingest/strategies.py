"""Heuristic price extraction strategies.

Each strategy is a pure function ``(page, ranges) -> Optional[Candidates]`` that
may fill any subset of the buy/sell fields of its family. Strategies only
report numbers that fall inside the instrument's plausible range, so a stray
purity figure ("96.5") or date never masquerades as a price.
"""
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

from market.instruments import Instrument, PriceRange


FieldKey = Tuple[Instrument, str]
Candidates = Dict[FieldKey, float]
Strategy = Callable[['PageContent', Mapping[Instrument, PriceRange]], Optional[Candidates]]

NUMBER_PATTERN = re.compile(r'\d[\d,]*(?:\.\d+)?')
_NUM = r'(\d[\d,]*(?:\.\d+)?)'

BUY_LABEL = 'รับซื้อ'
SELL_LABEL = 'ขายออก'
BAR_LABEL = 'ทองคำแท่ง'
JEWELRY_LABEL = 'ทองรูปพรรณ'
HONG_KONG_LABEL = 'ฮ่องกง'
OPEN_LABELS = ('ราคาเปิด', 'open')
CLOSE_LABELS = ('ราคาปิด', 'close')

PURITY_965 = re.compile(r'(?<![\d,.])96\.50?(?!\d)')
PURITY_9999 = re.compile(r'(?<![\d,.])99\.(?:99|5)(?!\d)')

BAR_965_SELL_FIRST = re.compile(
    BAR_LABEL + r'\s*96\.?50?\s*%?\D*?' + SELL_LABEL + r'\D*' + _NUM + r'\D*?' + BUY_LABEL + r'\D*' + _NUM
)
BAR_965_BUY_FIRST = re.compile(
    BAR_LABEL + r'\s*96\.?50?\s*%?\D*?' + BUY_LABEL + r'\D*' + _NUM + r'\D*?' + SELL_LABEL + r'\D*' + _NUM
)
BAR_LOOSE = re.compile(BAR_LABEL + r'(?:\s*96\.?50?\s*%)?\D*' + _NUM + r'\D*' + _NUM)
HONG_KONG_PAIR = re.compile(HONG_KONG_LABEL + r'\D*' + _NUM + r'\D*' + _NUM)

SPOT_SELECTORS = (
    '[data-test="instrument-price-last"]',
    '.instrument-price_last__KQzyA',
    '.text-2xl',
    '[data-test="price"]',
)
SPOT_LAST_PRICE = re.compile(r'data-test="instrument-price-last"[^>]*>\s*' + _NUM)


class PageContent:
    """Raw page content with lazily derived views shared by all strategies."""

    def __init__(self, raw: str):
        self.raw = raw or ''
        self._soup: Optional[BeautifulSoup] = None
        self._lines: Optional[List[str]] = None
        self._table_rows: Optional[List[List[str]]] = None

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = BeautifulSoup(self.raw, 'html.parser')
        return self._soup

    @property
    def text(self) -> str:
        return self.soup.get_text()

    @property
    def lines(self) -> List[str]:
        if self._lines is None:
            self._lines = [line.strip() for line in self.text.splitlines() if line.strip()]
        return self._lines

    @property
    def table_rows(self) -> List[List[str]]:
        """Row texts per table, cells joined by single spaces."""
        if self._table_rows is None:
            self._table_rows = []
            for table in self.soup.find_all('table'):
                rows = [row.get_text(' ', strip=True) for row in table.find_all('tr')]
                self._table_rows.append(rows)
        return self._table_rows


def parse_number(text: Optional[str]) -> Optional[float]:
    if not text:
        return None
    match = NUMBER_PATTERN.search(text)
    if not match:
        return None
    try:
        return float(match.group(0).replace(',', ''))
    except ValueError:
        return None


def numbers_in(text: str) -> List[float]:
    values = []
    for token in NUMBER_PATTERN.findall(text or ''):
        try:
            values.append(float(token.replace(',', '')))
        except ValueError:
            continue
    return values


def first_in_range(values: Iterable[float], price_range: PriceRange) -> float:
    for value in values:
        if price_range.contains(value):
            return value
    return 0.0


def number_after(text: str, keywords: Sequence[str], price_range: PriceRange) -> float:
    """First in-range number following the earliest matching keyword, or 0."""
    lower = (text or '').lower()
    for keyword in keywords:
        idx = lower.find(keyword.lower())
        if idx < 0:
            continue
        value = first_in_range(numbers_in(lower[idx + len(keyword):]), price_range)
        if value:
            return value
    return 0.0


def _take(found: Candidates, key: FieldKey, value: float) -> None:
    if value and not found.get(key):
        found[key] = value


def _mentions_bar_965(lower: str) -> bool:
    return BAR_LABEL in lower and bool(PURITY_965.search(lower))


def _mentions_jewelry_965(lower: str) -> bool:
    return JEWELRY_LABEL in lower and bool(PURITY_965.search(lower))


def _mentions_foreign_9999(lower: str) -> bool:
    return bool(PURITY_9999.search(lower)) or HONG_KONG_LABEL in lower


def _hong_kong_pair(text: str, price_range: PriceRange) -> Optional[Tuple[float, float]]:
    idx = text.find(HONG_KONG_LABEL)
    if idx < 0:
        return None
    values = [v for v in numbers_in(text[idx + len(HONG_KONG_LABEL):]) if price_range.contains(v)]
    if len(values) < 2:
        return None
    return min(values[0], values[1]), max(values[0], values[1])


def table_keyword_scan(page: PageContent, ranges: Mapping[Instrument, PriceRange]) -> Optional[Candidates]:
    """Scan HTML tables for labelled rows near a purity header."""
    r9650 = ranges[Instrument.GOLD9650]
    r9999 = ranges[Instrument.GOLD9999]
    found: Candidates = {}

    for header_matcher in (_mentions_bar_965, _mentions_jewelry_965):
        for rows in page.table_rows:
            for i, text in enumerate(rows):
                if not header_matcher(text.lower()):
                    continue
                for candidate in rows[i:i + 5]:
                    _take(found, (Instrument.GOLD9650, 'buy'), number_after(candidate, (BUY_LABEL,), r9650))
                    _take(found, (Instrument.GOLD9650, 'sell'), number_after(candidate, (SELL_LABEL,), r9650))

    for rows in page.table_rows:
        for i, text in enumerate(rows):
            if not _mentions_foreign_9999(text.lower()):
                continue
            for candidate in rows[i:i + 10]:
                pair = _hong_kong_pair(candidate, r9999)
                if pair:
                    _take(found, (Instrument.GOLD9999, 'buy'), pair[0])
                    _take(found, (Instrument.GOLD9999, 'sell'), pair[1])
                _take(found, (Instrument.GOLD9999, 'buy'), number_after(candidate, OPEN_LABELS, r9999))
                _take(found, (Instrument.GOLD9999, 'sell'), number_after(candidate, CLOSE_LABELS, r9999))

    return found or None


def text_section_scan(page: PageContent, ranges: Mapping[Instrument, PriceRange]) -> Optional[Candidates]:
    """Walk the page text line by line, tracking which price board section we are in."""
    r9650 = ranges[Instrument.GOLD9650]
    r9999 = ranges[Instrument.GOLD9999]
    found: Candidates = {}
    section = None
    seen_bar_header = False

    for line in page.lines:
        lower = line.lower()
        if _mentions_bar_965(lower) or ('gold price by gta' in lower and PURITY_965.search(lower)):
            section = '9650'
            seen_bar_header = True
        elif _mentions_jewelry_965(lower):
            section = '9650'
        elif PURITY_9999.search(lower) or (HONG_KONG_LABEL in lower and 'ราคา' in lower):
            section = '9999'
        elif 'foreign market' in lower or 'ราคาทองอ้างอิง' in lower:
            section = '9999'

        if section == '9650' and seen_bar_header:
            _take(found, (Instrument.GOLD9650, 'buy'), number_after(line, (BUY_LABEL, 'buy'), r9650))
            _take(found, (Instrument.GOLD9650, 'sell'), number_after(line, (SELL_LABEL, 'sell'), r9650))
        elif section == '9999':
            _take(found, (Instrument.GOLD9999, 'buy'), number_after(line, OPEN_LABELS, r9999))
            _take(found, (Instrument.GOLD9999, 'sell'), number_after(line, CLOSE_LABELS, r9999))

    return found or None


def bar_965_pattern(page: PageContent, ranges: Mapping[Instrument, PriceRange]) -> Optional[Candidates]:
    """Anchored regexes over the flattened text for the 96.5% bar quote."""
    r9650 = ranges[Instrument.GOLD9650]
    text = page.text

    for pattern, sell_first in ((BAR_965_SELL_FIRST, True), (BAR_965_BUY_FIRST, False)):
        match = pattern.search(text)
        if not match:
            continue
        first, second = (float(g.replace(',', '')) for g in match.groups())
        sell, buy = (first, second) if sell_first else (second, first)
        if r9650.contains(buy) and r9650.contains(sell):
            return {(Instrument.GOLD9650, 'buy'): buy, (Instrument.GOLD9650, 'sell'): sell}

    match = BAR_LOOSE.search(text)
    if match:
        first, second = (float(g.replace(',', '')) for g in match.groups())
        if r9650.contains(first) and r9650.contains(second):
            return {
                (Instrument.GOLD9650, 'buy'): min(first, second),
                (Instrument.GOLD9650, 'sell'): max(first, second),
            }
    return None


def hongkong_pattern(page: PageContent, ranges: Mapping[Instrument, PriceRange]) -> Optional[Candidates]:
    r9999 = ranges[Instrument.GOLD9999]
    match = HONG_KONG_PAIR.search(page.text)
    if not match:
        return None
    first, second = (float(g.replace(',', '')) for g in match.groups())
    if r9999.contains(first) and r9999.contains(second):
        return {
            (Instrument.GOLD9999, 'buy'): min(first, second),
            (Instrument.GOLD9999, 'sell'): max(first, second),
        }
    return None


def _spot_fields(price: float) -> Candidates:
    return {(Instrument.SPOT, 'buy'): price, (Instrument.SPOT, 'sell'): price}


def price_selector_scan(page: PageContent, ranges: Mapping[Instrument, PriceRange]) -> Optional[Candidates]:
    spot_range = ranges[Instrument.SPOT]
    for selector in SPOT_SELECTORS:
        for element in page.soup.select(selector):
            value = parse_number(element.get_text(strip=True))
            if value is not None and spot_range.contains(value):
                return _spot_fields(value)
    return None


def last_price_pattern(page: PageContent, ranges: Mapping[Instrument, PriceRange]) -> Optional[Candidates]:
    spot_range = ranges[Instrument.SPOT]
    for match in SPOT_LAST_PRICE.finditer(page.raw):
        value = float(match.group(1).replace(',', ''))
        if spot_range.contains(value):
            return _spot_fields(value)
    return None


@dataclass(frozen=True)
class StrategyFamily:
    name: str
    instruments: Tuple[Instrument, ...]
    strategies: Tuple[Strategy, ...]


STRATEGY_FAMILIES: Dict[str, StrategyFamily] = {
    'goldtraders_board': StrategyFamily(
        name='goldtraders_board',
        instruments=(Instrument.GOLD9999, Instrument.GOLD9650),
        strategies=(table_keyword_scan, text_section_scan, bar_965_pattern, hongkong_pattern),
    ),
    'spot_quote': StrategyFamily(
        name='spot_quote',
        instruments=(Instrument.SPOT,),
        strategies=(price_selector_scan, last_price_pattern),
    ),
}
