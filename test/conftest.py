# /test/conftest.py
import pytest

from gas_engine.adapters.mock import MockRpcClient
from gas_engine.core.config import EngineConfig
from gas_engine.core.engine import GasEstimationEngine

SENDER = "0x" + "aa" * 20
RECIPIENT = "0x" + "bb" * 20


class FakeClock:
    """Monotonic clock the test advances by hand."""
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_engine(clock):
    """Builds an engine whose endpoints are the given MockRpcClients, in order."""
    def _make(*clients: MockRpcClient, **overrides) -> GasEstimationEngine:
        by_url = {c.url: c for c in clients}
        config = EngineConfig(rpc_urls=[c.url for c in clients], **overrides)
        return GasEstimationEngine(config, client_factory=by_url.__getitem__, clock=clock)
    return _make


@pytest.fixture
def transfer_payload():
    return {
        "from": SENDER,
        "to": RECIPIENT,
        "value": "100000000000000000",
        "data": "0x",
    }
