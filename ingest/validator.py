import logging
from typing import Dict, Mapping, Tuple

from api.metrics import metrics
from market.instruments import Instrument, InstrumentSpec
from .extractor import ExtractionFailed
from .strategies import Candidates


logger = logging.getLogger(__name__)


def validate(candidates: Candidates, specs: Mapping[Instrument, InstrumentSpec], family: str = 'unknown') -> Candidates:
    """Zero out implausible fields; an all-zero result is an extraction failure."""
    validated: Candidates = {}
    for (instrument, field), value in candidates.items():
        price_range = specs[instrument].price_range
        if value and not price_range.contains(value):
            logger.warning(
                "Rejected %s %s price %.2f outside %.2f..%.2f",
                instrument.value,
                field,
                value,
                price_range.low,
                price_range.high,
            )
            metrics.record_rejected_field(instrument.value, field)
            value = 0.0
        validated[(instrument, field)] = float(value or 0.0)

    if not any(validated.values()):
        raise ExtractionFailed(family, "all fields rejected or empty")
    return validated


def complete_quotes(candidates: Candidates) -> Dict[Instrument, Tuple[float, float]]:
    """Instruments whose buy and sell are both present, as (buy, sell) pairs."""
    instruments = {instrument for instrument, _ in candidates}
    quotes: Dict[Instrument, Tuple[float, float]] = {}
    for instrument in instruments:
        buy = candidates.get((instrument, 'buy'), 0.0)
        sell = candidates.get((instrument, 'sell'), 0.0)
        if buy and sell:
            quotes[instrument] = (buy, sell)
    return quotes
