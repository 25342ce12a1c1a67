# /gas_engine/adapters/mock.py
# - Provides a scripted, in-memory node for unit and integration tests.
# - Counts calls per operation so tests can assert on RPC volume.

import asyncio
from collections import Counter
from typing import Dict, Optional

from gas_engine.adapters.rpc import BaseRpcClient
from gas_engine.core.errors import MethodNotSupported, RpcCallError
from gas_engine.core.logger import get_logger
from gas_engine.core.models import FeeSuggestion, TransactionDescriptor

log = get_logger(__name__)


class MockRpcClient(BaseRpcClient):
    """
    A fake endpoint. Each operation returns the configured value, or raises the
    configured failure. An operation that was never configured fails like an
    unsupported RPC method would.
    """
    def __init__(
        self,
        url: str = "http://mock.local",
        gas_price: Optional[int] = None,
        base_fee: Optional[int] = None,
        priority_fee: Optional[int] = None,
        gas_estimate: Optional[int] = None,
        block_number: int = 1,
        delay: float = 0,
    ):
        super().__init__(url)
        self._gas_price = gas_price
        self._suggestion = FeeSuggestion(base_fee=base_fee, priority_fee=priority_fee)
        self._gas_estimate = gas_estimate
        self._block_number = block_number
        self.delay = delay
        self.calls: Counter = Counter()
        self.failures: Dict[str, Exception] = {}
        self.closed = False

    def fail(self, operation: str, error: Exception | None = None):
        """Make every future call of `operation` raise `error` (RpcCallError by default)."""
        self.failures[operation] = error or RpcCallError(f"{operation} failed: connection refused")

    def fail_all(self, error: Exception | None = None):
        for op in ("gas_price", "fee_suggestion", "estimate_gas", "block_number"):
            self.fail(op, error)

    def unsupported(self, operation: str):
        """Answer `operation` the way a node without that JSON-RPC method does."""
        self.failures[operation] = MethodNotSupported(f"{operation} not supported: method not found")

    def heal(self):
        self.failures.clear()

    async def _answer(self, operation: str, value):
        self.calls[operation] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if operation in self.failures:
            log.debug("MOCK_RPC_FORCED_FAILURE", url=self.url, operation=operation)
            raise self.failures[operation]
        if value is None:
            raise MethodNotSupported(f"{operation} not supported: method not found")
        return value

    async def gas_price(self) -> int:
        return await self._answer("gas_price", self._gas_price)

    async def _fee_history(self) -> FeeSuggestion:
        return await self._answer("fee_suggestion", self._suggestion)

    async def estimate_gas(self, descriptor: TransactionDescriptor) -> int:
        return await self._answer("estimate_gas", self._gas_estimate)

    async def block_number(self) -> int:
        return await self._answer("block_number", self._block_number)

    async def close(self):
        self.closed = True
