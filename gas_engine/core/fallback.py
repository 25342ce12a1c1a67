# /gas_engine/core/fallback.py
# Tries one logical RPC operation against each pool endpoint in turn.

from typing import Awaitable, Callable, Dict, TypeVar

from gas_engine.adapters.rpc import BaseRpcClient
from gas_engine.core.decorators import full_cycle_retry
from gas_engine.core.endpoint_pool import EndpointPool, redact_url
from gas_engine.core.errors import CallWouldRevert, UpstreamError, UpstreamUnavailable
from gas_engine.core.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")
Operation = Callable[[BaseRpcClient], Awaitable[T]]


class FallbackCoordinator:
    """
    At-least-one-success semantics across the pool: the first endpoint that
    answers wins, every endpoint that fails is reported to the pool, and when
    all of them fail the caller gets one UpstreamUnavailable naming the last
    failure per endpoint.
    """
    def __init__(self, pool: EndpointPool, rounds: int = 1):
        self.pool = pool
        self.rounds = rounds

    async def _cycle(self, operation: Operation, name: str, failures: Dict[str, str]) -> T:
        for endpoint in self.pool.next_candidates():
            client = self.pool.client_for(endpoint)
            try:
                result = await operation(client)
            except CallWouldRevert:
                # The node answered; the call itself is bad. Other nodes would agree.
                self.pool.report_success(endpoint)
                raise
            except UpstreamError as e:
                failures[endpoint.url] = str(e)
                self.pool.report_failure(endpoint, str(e))
                log.warning("RPC_ENDPOINT_FAILED", operation=name, url=redact_url(endpoint.url), error=str(e))
                continue
            self.pool.report_success(endpoint)
            return result

        log.error("RPC_ALL_ENDPOINTS_FAILED", operation=name, endpoints=len(failures))
        raise UpstreamUnavailable(name, failures, redact=redact_url)

    async def call(self, operation: Operation, name: str) -> T:
        failures: Dict[str, str] = {}
        async for attempt in full_cycle_retry(self.rounds):
            with attempt:
                return await self._cycle(operation, name, failures)
