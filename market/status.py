import logging
from enum import Enum
from typing import Any, Dict, Iterable, Mapping

from .instruments import Instrument, InvalidInstrument


logger = logging.getLogger(__name__)


class Status(Enum):
    ONLINE = "online"
    PAUSE = "pause"
    STOP = "stop"

    @classmethod
    def parse(cls, value: Any) -> 'Status':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise InvalidStatus(value) from exc


class InvalidStatus(ValueError):
    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Invalid status '{value}'. Must be online, pause, or stop")


class StatusController:
    """Operator-driven online/pause/stop mode per instrument.

    Every state is reachable from every other. Batches are validated in full
    before anything is written, so a bad entry leaves all statuses untouched.
    """

    def __init__(self, instruments: Iterable[Instrument]):
        self._instruments = tuple(instruments)
        self._statuses: Dict[Instrument, Status] = {}
        self.reset()

    def reset(self) -> None:
        self._statuses = {instrument: Status.ONLINE for instrument in self._instruments}

    def get(self, instrument: Instrument) -> Status:
        return self._statuses.get(instrument, Status.ONLINE)

    def all(self) -> Dict[Instrument, Status]:
        return dict(self._statuses)

    def apply(self, batch: Mapping[Any, Any]) -> Dict[Instrument, Status]:
        parsed: Dict[Instrument, Status] = {}
        for raw_instrument, raw_status in batch.items():
            instrument = Instrument.parse(raw_instrument)
            if instrument not in self._statuses:
                raise InvalidInstrument(raw_instrument)
            parsed[instrument] = Status.parse(raw_status)

        for instrument, status in parsed.items():
            previous = self._statuses[instrument]
            self._statuses[instrument] = status
            if previous is not status:
                logger.info("Status %s: %s -> %s", instrument.value, previous.value, status.value)
        return self.all()

    def to_dict(self) -> Dict[str, str]:
        return {instrument.value: status.value for instrument, status in self._statuses.items()}
