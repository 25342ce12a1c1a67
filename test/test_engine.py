# /test/test_engine.py
# - End-to-end estimation against scripted nodes.
# - Verifies RPC volume, fallback, and error precedence.

import asyncio

import pytest

from gas_engine.adapters.mock import MockRpcClient
from gas_engine.core.errors import (
    CallWouldRevert,
    ConfigError,
    FeeModelUnavailable,
    InvalidInput,
    UpstreamUnavailable,
)
from gas_engine.core.config import EngineConfig
from gas_engine.core.models import Eip1559Quote, TransactionDescriptor

GWEI = 10**9


@pytest.fixture
def descriptor(transfer_payload):
    return TransactionDescriptor.from_request(transfer_payload)


@pytest.mark.asyncio
async def test_legacy_transfer_end_to_end(make_engine, descriptor):
    node = MockRpcClient(gas_price=20_000_000_000, gas_estimate=21000)
    engine = make_engine(node)

    estimate = await engine.estimate(descriptor)

    assert estimate.to_response() == {
        "gas_limit": "21000",
        "gas_price": "20000000000",
        "estimated_cost_wei": "420000000000000",
        "estimated_cost_eth": "0.000420000000000000",
        "estimated_execution_time": "~30 seconds",
        "type_of_transaction": "legacy",
    }


@pytest.mark.asyncio
async def test_base_fee_chain_reports_eip1559(make_engine, descriptor):
    node = MockRpcClient(gas_price=40 * GWEI, base_fee=30 * GWEI, priority_fee=2 * GWEI, gas_estimate=50000)
    engine = make_engine(node)

    estimate = await engine.estimate(descriptor)

    assert estimate.type_of_transaction == "eip1559"
    assert estimate.fee == Eip1559Quote(base_fee=30 * GWEI, priority_fee=2 * GWEI, max_fee=62 * GWEI)
    assert estimate.estimated_cost_wei == 50000 * 32 * GWEI


@pytest.mark.asyncio
async def test_repeat_within_ttl_issues_one_call_per_key(make_engine, descriptor, clock):
    node = MockRpcClient(gas_price=20 * GWEI, gas_estimate=21000)
    engine = make_engine(node, cache_ttl_seconds=15)

    first = await engine.estimate(descriptor)
    clock.advance(10)
    second = await engine.estimate(descriptor)

    assert first == second
    assert node.calls == {"gas_price": 1, "fee_suggestion": 1, "estimate_gas": 1}


@pytest.mark.asyncio
async def test_different_calls_are_not_conflated(make_engine, descriptor, transfer_payload):
    node = MockRpcClient(gas_price=20 * GWEI, gas_estimate=21000)
    engine = make_engine(node)
    other = TransactionDescriptor.from_request({**transfer_payload, "data": "0xa9059cbb"})

    await engine.estimate(descriptor)
    await engine.estimate(other)

    assert node.calls["estimate_gas"] == 2
    assert node.calls["gas_price"] == 1


@pytest.mark.asyncio
async def test_expired_cache_refetches(make_engine, descriptor, clock):
    node = MockRpcClient(gas_price=20 * GWEI, gas_estimate=21000)
    engine = make_engine(node, cache_ttl_seconds=15)

    await engine.estimate(descriptor)
    clock.advance(16)
    await engine.estimate(descriptor)

    assert node.calls == {"gas_price": 2, "fee_suggestion": 2, "estimate_gas": 2}


@pytest.mark.asyncio
async def test_concurrent_requests_share_rpc_calls(make_engine, descriptor):
    node = MockRpcClient(gas_price=20 * GWEI, gas_estimate=21000, delay=0.01)
    engine = make_engine(node)

    results = await asyncio.gather(*(engine.estimate(descriptor) for _ in range(8)))

    assert len({r.estimated_cost_wei for r in results}) == 1
    assert node.calls == {"gas_price": 1, "fee_suggestion": 1, "estimate_gas": 1}


@pytest.mark.asyncio
async def test_falls_back_to_next_endpoint(make_engine, descriptor):
    down = MockRpcClient(url="http://down.local")
    down.fail_all()
    up = MockRpcClient(url="http://up.local", gas_price=20 * GWEI, gas_estimate=21000)
    engine = make_engine(down, up)

    estimate = await engine.estimate(descriptor)

    assert estimate.gas_limit == 21000
    assert engine.pool.endpoints[0].total_failures == 3
    assert engine.pool.endpoints[1].consecutive_failures == 0


@pytest.mark.asyncio
async def test_revert_is_terminal(make_engine, descriptor):
    node = MockRpcClient(gas_price=20 * GWEI)
    node.fail("estimate_gas", CallWouldRevert("Transaction would fail: execution reverted"))
    backup = MockRpcClient(url="http://backup.local", gas_price=20 * GWEI, gas_estimate=21000)
    engine = make_engine(node, backup)

    with pytest.raises(CallWouldRevert):
        await engine.estimate(descriptor)
    assert backup.calls["estimate_gas"] == 0


@pytest.mark.asyncio
async def test_gas_limit_error_wins_over_fee_error(make_engine, descriptor):
    node = MockRpcClient()
    node.fail("estimate_gas", CallWouldRevert("execution reverted"))
    node.fail("gas_price")
    node.fail("fee_suggestion")
    engine = make_engine(node)

    with pytest.raises(CallWouldRevert):
        await engine.estimate(descriptor)


@pytest.mark.asyncio
async def test_all_fee_sources_down_fails_whole_estimate(make_engine, descriptor):
    node = MockRpcClient(gas_estimate=21000)
    node.fail("gas_price")
    node.fail("fee_suggestion")
    engine = make_engine(node)

    with pytest.raises(UpstreamUnavailable):
        await engine.estimate(descriptor)


@pytest.mark.asyncio
async def test_gas_price_down_still_prices_base_fee_chain(make_engine, descriptor):
    node = MockRpcClient(base_fee=10 * GWEI, priority_fee=GWEI, gas_estimate=21000)
    node.fail("gas_price")
    engine = make_engine(node)

    estimate = await engine.estimate(descriptor)
    assert estimate.type_of_transaction == "eip1559"


@pytest.mark.asyncio
async def test_node_without_fee_history_is_legacy_and_stays_healthy(make_engine, descriptor, clock):
    a = MockRpcClient(url="http://a.local", gas_price=20 * GWEI, gas_estimate=21000)
    b = MockRpcClient(url="http://b.local", gas_price=20 * GWEI, gas_estimate=21000)
    a.unsupported("fee_suggestion")
    b.unsupported("fee_suggestion")
    engine = make_engine(a, b, cache_ttl_seconds=15)

    for _ in range(3):
        estimate = await engine.estimate(descriptor)
        clock.advance(4)

    assert estimate.type_of_transaction == "legacy"
    assert a.calls == {"gas_price": 1, "fee_suggestion": 1, "estimate_gas": 1}
    assert b.calls["fee_suggestion"] == 0
    assert all(e["alive"] and e["consecutive_failures"] == 0 for e in engine.pool.snapshot())


@pytest.mark.asyncio
async def test_fee_history_outage_is_not_reported_as_legacy(make_engine, descriptor):
    node = MockRpcClient(gas_price=20 * GWEI, gas_estimate=21000)
    node.fail("fee_suggestion")
    engine = make_engine(node)

    with pytest.raises(UpstreamUnavailable):
        await engine.estimate(descriptor)


@pytest.mark.asyncio
async def test_revert_does_not_wait_for_slow_fee_fetch(make_engine, descriptor):
    release = asyncio.Event()

    class SlowGasPrice(MockRpcClient):
        async def gas_price(self):
            await release.wait()
            return await super().gas_price()

    node = SlowGasPrice(gas_price=20 * GWEI)
    node.fail("estimate_gas", CallWouldRevert("execution reverted"))
    engine = make_engine(node)

    try:
        with pytest.raises(CallWouldRevert):
            await asyncio.wait_for(engine.estimate(descriptor), 1)
    finally:
        release.set()
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_node_without_any_fee_figure(make_engine, descriptor):
    node = MockRpcClient(gas_price=0, gas_estimate=21000)
    engine = make_engine(node)

    with pytest.raises(FeeModelUnavailable):
        await engine.estimate(descriptor)


@pytest.mark.asyncio
async def test_failed_fetch_is_not_cached(make_engine, descriptor):
    node = MockRpcClient(gas_price=20 * GWEI, gas_estimate=21000)
    node.fail("estimate_gas")
    engine = make_engine(node)

    with pytest.raises(UpstreamUnavailable):
        await engine.estimate(descriptor)
    node.heal()
    assert (await engine.estimate(descriptor)).gas_limit == 21000


@pytest.mark.asyncio
async def test_legacy_gas_price_override_skips_fee_fetch(make_engine, transfer_payload):
    node = MockRpcClient(gas_price=20 * GWEI, gas_estimate=21000)
    engine = make_engine(node)
    descriptor = TransactionDescriptor.from_request({**transfer_payload, "gas_price": str(5 * GWEI)})

    estimate = await engine.estimate(descriptor)

    assert estimate.fee.gas_price == 5 * GWEI
    assert node.calls["gas_price"] == 0
    assert node.calls["fee_suggestion"] == 0


@pytest.mark.asyncio
async def test_eip1559_override_on_legacy_chain_is_invalid(make_engine, transfer_payload):
    node = MockRpcClient(gas_price=20 * GWEI, gas_estimate=21000)
    engine = make_engine(node)
    descriptor = TransactionDescriptor.from_request({**transfer_payload, "max_fee_per_gas": str(30 * GWEI)})

    with pytest.raises(InvalidInput):
        await engine.estimate(descriptor)


@pytest.mark.asyncio
async def test_probe_and_close(make_engine):
    node = MockRpcClient(block_number=18_000_000)
    engine = make_engine(node)
    async with engine:
        assert await engine.probe() == 18_000_000
        engine.pool.client_for(engine.pool.endpoints[0])
    assert node.closed


def test_empty_endpoint_list_is_a_config_error():
    with pytest.raises(ConfigError):
        EngineConfig(rpc_urls=[])
    with pytest.raises(ConfigError):
        EngineConfig(rpc_urls=["  "])
