# /gas_engine/core/engine.py
# Entry point of the estimation engine: cache -> fallback -> adapter, then classify.

import asyncio
import time
from typing import Callable, Optional

from gas_engine.adapters.rpc import BaseRpcClient, Web3RpcClient
from gas_engine.core.cache import TTLCache
from gas_engine.core.config import EngineConfig
from gas_engine.core.endpoint_pool import ClientFactory, EndpointPool
from gas_engine.core.errors import GasEngineError
from gas_engine.core.fallback import FallbackCoordinator
from gas_engine.core.fee_model import Quote, apply_fee_overrides, classify_fee_model
from gas_engine.core.logger import get_logger, ESTIMATES
from gas_engine.core.models import FeeData, FeeSuggestion, GasEstimate, TransactionDescriptor

log = get_logger(__name__)

GAS_PRICE_KEY = "gas_price"
FEE_SUGGESTION_KEY = "fee_suggestion"


def _discard_outcome(task: asyncio.Future):
    if not task.cancelled():
        task.exception()


class GasEstimationEngine:
    """
    Answers "what will this transaction cost?" from a pool of RPC endpoints.

    Gas limit and fee data are fetched concurrently, each through the TTL
    cache and the fallback coordinator. Any failure is returned to the caller
    as a typed GasEngineError; there is never a partial estimate.
    """
    def __init__(
        self,
        config: EngineConfig,
        client_factory: Optional[ClientFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.pool = EndpointPool(
            config.rpc_urls,
            client_factory or self._web3_client,
            failure_threshold=config.failure_threshold,
            revive_after=config.revive_after_seconds,
            clock=clock,
        )
        self.coordinator = FallbackCoordinator(self.pool, rounds=config.fallback_rounds)
        self.cache = TTLCache(config.cache_ttl_seconds, clock=clock)
        log.info(
            "GAS_ENGINE_INITIALIZED",
            endpoints=len(config.rpc_urls),
            cache_ttl=config.cache_ttl_seconds,
            rpc_timeout=config.rpc_timeout_seconds,
        )

    def _web3_client(self, url: str) -> BaseRpcClient:
        return Web3RpcClient(
            url,
            timeout=self.config.rpc_timeout_seconds,
            fee_history_blocks=self.config.fee_history_blocks,
            priority_fee_percentile=self.config.priority_fee_percentile,
        )

    async def _gas_price(self) -> int:
        return await self.cache.get_or_compute(
            GAS_PRICE_KEY, lambda: self.coordinator.call(lambda c: c.gas_price(), "gas_price")
        )

    async def _fee_suggestion(self) -> FeeSuggestion:
        return await self.cache.get_or_compute(
            FEE_SUGGESTION_KEY, lambda: self.coordinator.call(lambda c: c.fee_suggestion(), "fee_suggestion")
        )

    async def _gas_limit(self, descriptor: TransactionDescriptor) -> int:
        return await self.cache.get_or_compute(
            descriptor.cache_key(),
            lambda: self.coordinator.call(lambda c: c.estimate_gas(descriptor), "estimate_gas"),
        )

    async def _fee_quote(self, descriptor: TransactionDescriptor) -> Quote:
        multiplier = self.config.base_fee_multiplier
        if descriptor.gas_price is not None and not descriptor.wants_eip1559:
            return apply_fee_overrides(None, descriptor, base_fee_multiplier=multiplier)

        gas_price, suggestion = await asyncio.gather(
            self._gas_price(), self._fee_suggestion(), return_exceptions=True
        )
        for result in (gas_price, suggestion):
            if isinstance(result, BaseException) and not isinstance(result, GasEngineError):
                raise result
        # A failed fee history leaves the fee model unknown.
        if isinstance(suggestion, BaseException):
            raise suggestion
        if isinstance(gas_price, BaseException):
            if not suggestion.base_fee:
                raise gas_price
            log.warning("FEE_FETCH_PARTIAL_FAILURE", error=str(gas_price))
            gas_price = None

        fee_data = FeeData(gas_price=gas_price, base_fee=suggestion.base_fee, priority_fee=suggestion.priority_fee)
        quote = classify_fee_model(
            fee_data,
            base_fee_multiplier=multiplier,
            default_priority_fee=self.config.default_priority_fee_wei,
        )
        return apply_fee_overrides(quote, descriptor, base_fee_multiplier=multiplier)

    async def _estimate(self, descriptor: TransactionDescriptor) -> GasEstimate:
        fee_task = asyncio.ensure_future(self._fee_quote(descriptor))
        try:
            # Without a gas limit the fee data answers nothing, so its error wins
            # and is raised without waiting on the fee fetch.
            gas_limit = await self._gas_limit(descriptor)
        except BaseException:
            fee_task.cancel()
            fee_task.add_done_callback(_discard_outcome)
            raise
        quote = await fee_task
        return GasEstimate.build(gas_limit, quote)

    async def estimate(self, descriptor: TransactionDescriptor) -> GasEstimate:
        try:
            estimate = await self._estimate(descriptor)
        except GasEngineError as e:
            ESTIMATES.labels(e.error_type).inc()
            log.warning("GAS_ESTIMATION_FAILED", error_type=e.error_type, error=str(e))
            raise
        ESTIMATES.labels("ok").inc()
        log.info(
            "GAS_ESTIMATED",
            gas_limit=estimate.gas_limit,
            tx_type=estimate.type_of_transaction,
            cost_wei=estimate.estimated_cost_wei,
        )
        return estimate

    async def probe(self) -> int:
        """Latest block number from the first endpoint that answers."""
        block = await self.coordinator.call(lambda c: c.block_number(), "block_number")
        log.info("GAS_ENGINE_UPSTREAM_REACHABLE", block_number=block)
        return block

    async def close(self):
        await self.pool.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
