from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from config.utils import get_config_section


class Instrument(Enum):
    SPOT = "spot"
    GOLD9999 = "gold9999"
    GOLD9650 = "gold9650"

    @classmethod
    def parse(cls, value: Any) -> 'Instrument':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise InvalidInstrument(value) from exc


class InvalidInstrument(ValueError):
    def __init__(self, value: Any):
        self.value = value
        allowed = ', '.join(i.value for i in Instrument)
        super().__init__(f"Unknown instrument '{value}'. Must be one of: {allowed}")


QUOTE_FIELDS: Tuple[str, str] = ('buy', 'sell')


@dataclass(frozen=True)
class PriceRange:
    low: float
    high: float

    def contains(self, value: float) -> bool:
        return self.low <= value <= self.high


@dataclass(frozen=True)
class InstrumentSpec:
    instrument: Instrument
    group: str
    price_range: PriceRange
    label: str
    unit: str


_DEFAULT_SPECS: Dict[Instrument, Dict[str, Any]] = {
    Instrument.SPOT: {
        'group': 'investing_spot', 'label': 'Gold Spot', 'unit': 'USD/Oz', 'min': 1000, 'max': 10000,
    },
    Instrument.GOLD9999: {
        'group': 'goldtraders', 'label': 'สมาคมค้าทองคำ', 'unit': 'บาท', 'min': 30000, 'max': 50000,
    },
    Instrument.GOLD9650: {
        'group': 'goldtraders', 'label': 'สมาคมค้าทองคำ', 'unit': 'บาท', 'min': 50000, 'max': 100000,
    },
}


def load_instrument_specs(config_obj: Optional[Mapping] = None) -> Dict[Instrument, InstrumentSpec]:
    """Build one spec per instrument, letting the ``instruments`` config section override defaults."""
    overrides = get_config_section(config_obj, 'instruments')
    specs: Dict[Instrument, InstrumentSpec] = {}
    for instrument in Instrument:
        merged = dict(_DEFAULT_SPECS[instrument])
        merged.update(overrides.get(instrument.value) or {})
        low, high = float(merged['min']), float(merged['max'])
        if low < 0 or high <= low:
            raise RuntimeError(f"Invalid price range for {instrument.value}: {low}..{high}")
        specs[instrument] = InstrumentSpec(
            instrument=instrument,
            group=str(merged['group']),
            price_range=PriceRange(low, high),
            label=str(merged['label']),
            unit=str(merged['unit']),
        )
    return specs


def group_instruments(specs: Mapping[Instrument, InstrumentSpec]) -> Dict[str, List[Instrument]]:
    groups: Dict[str, List[Instrument]] = {}
    for instrument, spec in specs.items():
        groups.setdefault(spec.group, []).append(instrument)
    return groups
