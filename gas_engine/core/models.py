# /gas_engine/core/models.py
# Immutable request/response entities shared by the engine and the API.

from decimal import Decimal
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from web3 import Web3

from gas_engine.core.errors import InvalidInput

MAX_UINT256 = 2**256 - 1

EXECUTION_TIME_LABELS = {
    "legacy": "~30 seconds",
    "eip1559": "~15 seconds",
}


def parse_uint(value: Any, field: str) -> int:
    """Accepts an int, a decimal string or a 0x-prefixed hex string."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid {field}: {value!r}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text, 16) if text.lower().startswith("0x") else int(text, 10)
        except ValueError:
            raise ValueError(f"Invalid {field}: {value!r}") from None
    else:
        raise ValueError(f"Invalid {field}: {value!r}")
    if number < 0:
        raise ValueError(f"{field} must not be negative")
    if number > MAX_UINT256:
        raise ValueError(f"{field} overflows uint256")
    return number


def _checksum(value: Any, field: str) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"Invalid address for '{field}': {value!r}")
    return Web3.to_checksum_address(value)


class TransactionDescriptor(BaseModel):
    """A prospective transaction as described by the caller."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sender: str = Field(alias="from")
    to: Optional[str] = None
    value: int = 0
    data: bytes = b""

    # Caller fee overrides. They shape the fee quote only.
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    @field_validator("sender", mode="before")
    @classmethod
    def _sender(cls, v):
        return _checksum(v, "from")

    @field_validator("to", mode="before")
    @classmethod
    def _to(cls, v):
        if v is None or v == "":
            return None
        return _checksum(v, "to")

    @field_validator("value", mode="before")
    @classmethod
    def _value(cls, v):
        if v is None:
            return 0
        return parse_uint(v, "value")

    @field_validator("gas_price", "max_fee_per_gas", "max_priority_fee_per_gas", mode="before")
    @classmethod
    def _fee_override(cls, v, info):
        if v is None:
            return None
        return parse_uint(v, info.field_name)

    @field_validator("data", mode="before")
    @classmethod
    def _data(cls, v):
        if v is None:
            return b""
        if isinstance(v, bytes):
            return v
        if not isinstance(v, str):
            raise ValueError("Invalid transaction data")
        text = v.strip()
        if text.lower().startswith("0x"):
            text = text[2:]
        if len(text) % 2:
            raise ValueError("Invalid transaction data: odd-length hex")
        try:
            return bytes.fromhex(text)
        except ValueError:
            raise ValueError("Invalid transaction data") from None

    @classmethod
    def from_request(cls, payload: Any) -> "TransactionDescriptor":
        """Builds a descriptor from decoded JSON, raising InvalidInput on any problem."""
        if not isinstance(payload, dict):
            raise InvalidInput("Request body must be a JSON object")
        if not payload.get("from"):
            raise InvalidInput("Missing 'from' address")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            first = e.errors()[0]
            message = first.get("msg", str(e)).removeprefix("Value error, ")
            raise InvalidInput(message) from e

    @property
    def wants_eip1559(self) -> bool:
        return self.max_fee_per_gas is not None or self.max_priority_fee_per_gas is not None

    def cache_key(self) -> str:
        return f"estimate_gas:{self.sender}:{self.to or '-'}:{self.value}:0x{self.data.hex()}"

    def to_call_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"from": self.sender, "value": self.value}
        if self.to is not None:
            params["to"] = self.to
        if self.data:
            params["data"] = "0x" + self.data.hex()
        return params


class FeeSuggestion(BaseModel):
    """What the node suggests for the fee market. Both fields absent on pre-London chains."""
    model_config = ConfigDict(frozen=True)

    base_fee: Optional[int] = None
    priority_fee: Optional[int] = None


class FeeData(BaseModel):
    """Classifier input: whatever fee figures could be fetched."""
    model_config = ConfigDict(frozen=True)

    gas_price: Optional[int] = None
    base_fee: Optional[int] = None
    priority_fee: Optional[int] = None


class LegacyQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["legacy"] = "legacy"
    gas_price: int = Field(gt=0)

    @property
    def effective_gas_price(self) -> int:
        return self.gas_price


class Eip1559Quote(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["eip1559"] = "eip1559"
    base_fee: int = Field(ge=0)
    priority_fee: int = Field(ge=0)
    max_fee: int = Field(gt=0)

    @model_validator(mode="after")
    def _max_covers_base(self):
        if self.base_fee > self.max_fee:
            raise ValueError("max_fee must not be below base_fee")
        return self

    @property
    def effective_gas_price(self) -> int:
        return min(self.max_fee, self.base_fee + self.priority_fee)


FeeQuote = Annotated[Union[LegacyQuote, Eip1559Quote], Field(discriminator="type")]


def format_ether(wei: int) -> str:
    return f"{Decimal(Web3.from_wei(wei, 'ether')):.18f}"


class GasEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    gas_limit: int = Field(gt=0)
    fee: FeeQuote
    estimated_cost_wei: int
    estimated_cost_eth: str
    estimated_execution_time: str
    type_of_transaction: Literal["legacy", "eip1559"]

    @classmethod
    def build(cls, gas_limit: int, fee: Union[LegacyQuote, Eip1559Quote]) -> "GasEstimate":
        cost = gas_limit * fee.effective_gas_price
        return cls(
            gas_limit=gas_limit,
            fee=fee,
            estimated_cost_wei=cost,
            estimated_cost_eth=format_ether(cost),
            estimated_execution_time=EXECUTION_TIME_LABELS[fee.type],
            type_of_transaction=fee.type,
        )

    def to_response(self) -> Dict[str, str]:
        body = {
            "gas_limit": str(self.gas_limit),
            "gas_price": str(self.fee.effective_gas_price),
        }
        if isinstance(self.fee, Eip1559Quote):
            body["base_fee_per_gas"] = str(self.fee.base_fee)
            body["max_priority_fee_per_gas"] = str(self.fee.priority_fee)
            body["max_fee_per_gas"] = str(self.fee.max_fee)
        body.update(
            estimated_cost_wei=str(self.estimated_cost_wei),
            estimated_cost_eth=self.estimated_cost_eth,
            estimated_execution_time=self.estimated_execution_time,
            type_of_transaction=self.type_of_transaction,
        )
        return body
