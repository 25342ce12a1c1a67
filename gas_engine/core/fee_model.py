# /gas_engine/core/fee_model.py
# Pure functions deciding which fee model to report and with which figures.

from decimal import Decimal
from typing import Optional, Union

from gas_engine.core.errors import FeeModelUnavailable, InvalidInput
from gas_engine.core.models import Eip1559Quote, FeeData, LegacyQuote, TransactionDescriptor

Quote = Union[LegacyQuote, Eip1559Quote]


def eip1559_quote(base_fee: int, priority_fee: int, base_fee_multiplier: Decimal) -> Eip1559Quote:
    # Headroom over the base fee so the tx survives a few full blocks.
    max_fee = int(Decimal(base_fee) * base_fee_multiplier) + priority_fee
    return Eip1559Quote(base_fee=base_fee, priority_fee=priority_fee, max_fee=max_fee)


def classify_fee_model(
    fee_data: FeeData,
    *,
    base_fee_multiplier: Decimal = Decimal("2"),
    default_priority_fee: int = 1_500_000_000,
) -> Quote:
    """
    EIP-1559 when the node reports a base fee, legacy when it only reports a
    gas price. A missing tip on a base-fee chain is filled with
    `default_priority_fee`.

    Raises:
        FeeModelUnavailable: neither a base fee nor a gas price is known.
    """
    if fee_data.base_fee:
        priority = fee_data.priority_fee if fee_data.priority_fee is not None else default_priority_fee
        return eip1559_quote(fee_data.base_fee, priority, base_fee_multiplier)
    if fee_data.gas_price:
        return LegacyQuote(gas_price=fee_data.gas_price)
    raise FeeModelUnavailable("Upstream reported neither a base fee nor a gas price")


def apply_fee_overrides(
    quote: Optional[Quote],
    descriptor: TransactionDescriptor,
    *,
    base_fee_multiplier: Decimal = Decimal("2"),
) -> Quote:
    """Replaces suggested figures with the ones the caller pinned in the request."""
    if descriptor.gas_price is not None and not descriptor.wants_eip1559:
        if descriptor.gas_price <= 0:
            raise InvalidInput("gas_price must be positive")
        return LegacyQuote(gas_price=descriptor.gas_price)

    if not descriptor.wants_eip1559:
        return quote

    if not isinstance(quote, Eip1559Quote):
        raise InvalidInput("EIP-1559 fee fields supplied but the network reports no base fee")

    priority = descriptor.max_priority_fee_per_gas
    if priority is None:
        priority = quote.priority_fee
    if descriptor.max_fee_per_gas is None:
        return eip1559_quote(quote.base_fee, priority, base_fee_multiplier)

    if descriptor.max_fee_per_gas < quote.base_fee:
        raise InvalidInput(
            f"max_fee_per_gas {descriptor.max_fee_per_gas} is below the current base fee {quote.base_fee}"
        )
    return Eip1559Quote(
        base_fee=quote.base_fee,
        priority_fee=min(priority, descriptor.max_fee_per_gas),
        max_fee=descriptor.max_fee_per_gas,
    )
