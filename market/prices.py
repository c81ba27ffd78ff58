import time
from dataclasses import dataclass, replace
from typing import Dict, Mapping, Optional

from .instruments import Instrument, InstrumentSpec


@dataclass(frozen=True)
class Quote:
    buy: float
    sell: float
    source: str
    unit: str
    updated_at: Optional[float] = None

    def __post_init__(self):
        if self.buy < 0 or self.sell < 0:
            raise ValueError(f"Quote prices must be non-negative (buy={self.buy}, sell={self.sell})")

    @property
    def is_zero(self) -> bool:
        return self.buy == 0 and self.sell == 0

    def to_dict(self) -> Dict:
        return {
            'buy': self.buy,
            'sell': self.sell,
            'source': self.source,
            'unit': self.unit,
            'updated_at': self.updated_at,
        }


class PriceStore:
    """Current authoritative quote per instrument.

    Quotes are immutable, so ``set`` is a single reference swap and readers never
    observe a half-written buy/sell pair.
    """

    def __init__(self, specs: Mapping[Instrument, InstrumentSpec]):
        self._quotes: Dict[Instrument, Quote] = {
            instrument: Quote(buy=0.0, sell=0.0, source=spec.label, unit=spec.unit)
            for instrument, spec in specs.items()
        }

    def get(self, instrument: Instrument) -> Quote:
        return self._quotes[instrument]

    def set(self, instrument: Instrument, quote: Quote) -> Quote:
        if instrument not in self._quotes:
            raise KeyError(instrument)
        self._quotes[instrument] = quote
        return quote

    def update(self, instrument: Instrument, buy: float, sell: float) -> Quote:
        current = self._quotes[instrument]
        return self.set(instrument, replace(current, buy=float(buy), sell=float(sell), updated_at=time.time()))

    def zero(self, instrument: Instrument) -> Quote:
        current = self._quotes[instrument]
        if current.is_zero:
            return current
        return self.update(instrument, 0.0, 0.0)

    def snapshot(self) -> Dict[Instrument, Quote]:
        return dict(self._quotes)

    def to_dict(self) -> Dict[str, Dict]:
        return {instrument.value: quote.to_dict() for instrument, quote in self.snapshot().items()}
