# /gas_engine/adapters/rpc.py
# One client per upstream endpoint. Every operation is a single JSON-RPC round
# trip with a hard timeout; fallback and caching live above this layer.

import asyncio
import statistics
from typing import Optional

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, MethodUnavailable, Web3Exception

from gas_engine.core.errors import CallWouldRevert, MethodNotSupported, RpcCallError, RpcTimeout
from gas_engine.core.logger import get_logger, RPC_CALLS
from gas_engine.core.models import FeeSuggestion, TransactionDescriptor

log = get_logger(__name__)

REVERT_MARKERS = ("execution reverted", "gas required exceeds allowance", "out of gas")
UNSUPPORTED_MARKERS = ("method not found", "does not exist/is not available", "method not supported")
METHOD_NOT_FOUND_CODE = -32601


class BaseRpcClient:
    """
    The operations the engine needs from a node. Implementations raise
    RpcTimeout / RpcCallError for endpoint trouble and CallWouldRevert when the
    node answers that the call cannot succeed.
    """
    def __init__(self, url: str):
        self.url = url

    async def gas_price(self) -> int:
        raise NotImplementedError

    async def fee_suggestion(self) -> FeeSuggestion:
        """
        Fee market figures from eth_feeHistory. A node without that method is a
        definitive answer (no base fee), not an endpoint failure.
        """
        try:
            return await self._fee_history()
        except MethodNotSupported as e:
            log.info("FEE_HISTORY_UNSUPPORTED", error=str(e))
            return FeeSuggestion()

    async def _fee_history(self) -> FeeSuggestion:
        raise NotImplementedError

    async def estimate_gas(self, descriptor: TransactionDescriptor) -> int:
        raise NotImplementedError

    async def block_number(self) -> int:
        raise NotImplementedError

    async def close(self):
        pass


def fee_suggestion_from_history(history) -> FeeSuggestion:
    """Reads the pending base fee and a median tip out of an eth_feeHistory result."""
    base_fees = list(history.get("baseFeePerGas") or [])
    base_fee: Optional[int] = base_fees[-1] if base_fees and any(base_fees) else None

    rewards = [row[0] for row in (history.get("reward") or []) if row and row[0] > 0]
    priority_fee = int(statistics.median(rewards)) if rewards else None
    return FeeSuggestion(base_fee=base_fee, priority_fee=priority_fee)


def is_method_unsupported(error: Exception) -> bool:
    if isinstance(error, MethodUnavailable):
        return True
    response = getattr(error, "rpc_response", None)
    if isinstance(response, dict) and isinstance(response.get("error"), dict):
        if response["error"].get("code") == METHOD_NOT_FOUND_CODE:
            return True
    message = str(error).lower()
    return any(m in message for m in UNSUPPORTED_MARKERS)


class Web3RpcClient(BaseRpcClient):
    def __init__(self, url: str, timeout: float, fee_history_blocks: int = 5, priority_fee_percentile: float = 50):
        super().__init__(url)
        self.timeout = timeout
        self.fee_history_blocks = fee_history_blocks
        self.priority_fee_percentile = priority_fee_percentile
        # Retries are owned by the fallback coordinator, so web3's own are off.
        provider = AsyncWeb3.AsyncHTTPProvider(
            url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)},
            exception_retry_configuration=None,
        )
        self.w3 = AsyncWeb3(provider)

    async def _call(self, operation: str, awaitable):
        try:
            result = await asyncio.wait_for(awaitable, self.timeout)
        except asyncio.TimeoutError as e:
            RPC_CALLS.labels(operation, "timeout").inc()
            raise RpcTimeout(f"{operation} timed out after {self.timeout}s") from e
        except ContractLogicError as e:
            RPC_CALLS.labels(operation, "revert").inc()
            raise CallWouldRevert(f"Transaction would fail: Details: {e}") from e
        except (Web3Exception, aiohttp.ClientError, ValueError, OSError) as e:
            message = str(e)
            if operation == "estimate_gas" and any(m in message.lower() for m in REVERT_MARKERS):
                RPC_CALLS.labels(operation, "revert").inc()
                raise CallWouldRevert(f"Transaction would fail: Details: {message}") from e
            if is_method_unsupported(e):
                RPC_CALLS.labels(operation, "unsupported").inc()
                raise MethodNotSupported(f"{operation} not supported by endpoint: {message}") from e
            RPC_CALLS.labels(operation, "error").inc()
            raise RpcCallError(f"{operation} failed: {type(e).__name__}: {message}") from e
        RPC_CALLS.labels(operation, "ok").inc()
        return result

    async def gas_price(self) -> int:
        return int(await self._call("gas_price", self.w3.eth.gas_price))

    async def _fee_history(self) -> FeeSuggestion:
        history = await self._call(
            "fee_suggestion",
            self.w3.eth.fee_history(self.fee_history_blocks, "latest", [self.priority_fee_percentile]),
        )
        return fee_suggestion_from_history(history)

    async def estimate_gas(self, descriptor: TransactionDescriptor) -> int:
        gas = int(await self._call("estimate_gas", self.w3.eth.estimate_gas(descriptor.to_call_params())))
        if gas <= 0:
            raise RpcCallError(f"estimate_gas returned non-positive value {gas}")
        return gas

    async def block_number(self) -> int:
        return int(await self._call("block_number", self.w3.eth.block_number))

    async def close(self):
        try:
            await self.w3.provider.disconnect()
        except (aiohttp.ClientError, OSError) as e:
            log.warning("RPC_CLIENT_CLOSE_FAILED", url=self.url, error=str(e))
