import logging
from typing import Dict, Mapping, Optional, Tuple

from market.instruments import QUOTE_FIELDS, Instrument, InstrumentSpec, PriceRange
from .strategies import STRATEGY_FAMILIES, Candidates, PageContent, StrategyFamily


logger = logging.getLogger(__name__)

DEFAULT_SOURCES: Dict[str, Dict] = {
    'investing_spot': {
        'extractor': 'spot_quote',
        'urls': ['https://th.investing.com/commodities/gold'],
        'conversion_rate': None,
    },
    'goldtraders': {
        'extractor': 'goldtraders_board',
        'urls': ['https://www.goldtraders.or.th/default.aspx', 'https://www.goldtraders.or.th/'],
    },
}


class ExtractionFailed(Exception):
    def __init__(self, family: str, reason: str = "no price fields found"):
        self.family = family
        self.reason = reason
        super().__init__(f"Extraction failed for {family}: {reason}")


class Extractor:
    """Run a family's strategies in priority order and merge their fields.

    The first non-zero value seen for a field wins; later strategies only fill
    fields that are still empty.
    """

    def __init__(
        self,
        family: StrategyFamily,
        specs: Mapping[Instrument, InstrumentSpec],
        conversion_rate: Optional[float] = None,
    ):
        self.family = family
        self.instruments: Tuple[Instrument, ...] = family.instruments
        self.conversion_rate = float(conversion_rate) if conversion_rate is not None else 1.0
        if self.conversion_rate <= 0:
            raise ValueError(f"conversion_rate must be positive (got {conversion_rate})")
        # Strategies see ranges in the page's own unit
        self.ranges: Dict[Instrument, PriceRange] = {
            instrument: PriceRange(
                specs[instrument].price_range.low / self.conversion_rate,
                specs[instrument].price_range.high / self.conversion_rate,
            )
            for instrument in self.instruments
        }

    @property
    def name(self) -> str:
        return self.family.name

    def empty_candidates(self) -> Candidates:
        return {(instrument, field): 0.0 for instrument in self.instruments for field in QUOTE_FIELDS}

    def extract(self, content: str) -> Candidates:
        page = PageContent(content)
        merged = self.empty_candidates()

        for strategy in self.family.strategies:
            if all(merged.values()):
                break
            try:
                partial = strategy(page, self.ranges)
            except Exception:
                logger.exception("Strategy %s failed for %s", strategy.__name__, self.name)
                continue
            if not partial:
                continue
            for key, value in partial.items():
                if key in merged and value and not merged[key]:
                    merged[key] = float(value)
                    logger.debug("%s: %s.%s=%s via %s", self.name, key[0].value, key[1], value, strategy.__name__)

        if not any(merged.values()):
            raise ExtractionFailed(self.name)

        if self.conversion_rate != 1.0:
            merged = {key: round(value * self.conversion_rate, 2) for key, value in merged.items()}
        return merged


def build_extractor(
    source_name: str,
    source_cfg: Mapping,
    specs: Mapping[Instrument, InstrumentSpec],
) -> Extractor:
    family_name = source_cfg.get('extractor')
    family = STRATEGY_FAMILIES.get(family_name)
    if family is None:
        raise RuntimeError(f"Source '{source_name}' references unknown extractor '{family_name}'")
    return Extractor(family, specs, conversion_rate=source_cfg.get('conversion_rate'))
