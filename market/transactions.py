import math
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional


DEFAULT_MAX_ENTRIES = 1000


class Side(Enum):
    BUY = "buy"
    SELL = "sell"

    @classmethod
    def parse(cls, value: Any) -> 'Side':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise InvalidTransactionSide(value) from exc


class InvalidTransactionSide(ValueError):
    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Side must be \"buy\" or \"sell\" (got '{value}')")


class InvalidTransactionPrice(ValueError):
    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Price must be a non-negative number (got '{value}')")


def _new_transaction_id() -> str:
    return f"TXN-{uuid.uuid4().hex}"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Transaction:
    symbol: str
    price: float
    side: Side
    id: str = field(default_factory=_new_transaction_id)
    timestamp: str = field(default_factory=_utc_now_iso)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'symbol': self.symbol,
            'price': self.price,
            'side': self.side.value,
            'timestamp': self.timestamp,
        }


class TransactionLog:
    """Append-only, newest-first ledger capped at ``max_entries``."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES, default_symbol: str = 'GOLD'):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = int(max_entries)
        self.default_symbol = default_symbol
        # appendleft on a bounded deque drops from the right, i.e. the oldest entry
        self._entries: Deque[Transaction] = deque(maxlen=self.max_entries)

    def append(self, symbol: Optional[str], price: Any, side: Any) -> Transaction:
        parsed_side = Side.parse(side)
        parsed_price = self._parse_price(price)
        transaction = Transaction(
            symbol=(symbol or '').strip() or self.default_symbol,
            price=parsed_price,
            side=parsed_side,
        )
        self._entries.appendleft(transaction)
        return transaction

    def list(self, limit: Optional[int] = None) -> List[Transaction]:
        if limit is None:
            return list(self._entries)
        if limit <= 0:
            return []
        return [entry for _, entry in zip(range(limit), self._entries)]

    def get(self, transaction_id: str) -> Optional[Transaction]:
        for entry in self._entries:
            if entry.id == transaction_id:
                return entry
        return None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def _parse_price(price: Any) -> float:
        if isinstance(price, bool):
            raise InvalidTransactionPrice(price)
        try:
            value = float(price)
        except (TypeError, ValueError) as exc:
            raise InvalidTransactionPrice(price) from exc
        if math.isnan(value) or math.isinf(value) or value < 0:
            raise InvalidTransactionPrice(price)
        return value
