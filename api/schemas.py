from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from market.instruments import Instrument
from market.status import Status
from market.transactions import Side


def _normalize(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class StatusChange(BaseModel):
    price_type: Instrument = Field(validation_alias=AliasChoices('priceType', 'price_type', 'instrument'))
    status: Status

    @field_validator('price_type', 'status', mode='before')
    @classmethod
    def normalize_enum_text(cls, value: Any) -> Any:
        return _normalize(value)


class StatusBatchRequest(BaseModel):
    states: List[StatusChange] = Field(min_length=1)

    def as_mapping(self) -> Dict[Instrument, Status]:
        # Later entries for the same instrument win
        return {change.price_type: change.status for change in self.states}


class TransactionRequest(BaseModel):
    symbol: Optional[str] = Field(default=None, max_length=32)
    price: float = Field(ge=0, allow_inf_nan=False)
    side: Side = Field(validation_alias=AliasChoices('side', 'state'))

    @field_validator('side', mode='before')
    @classmethod
    def normalize_side(cls, value: Any) -> Any:
        return _normalize(value)
