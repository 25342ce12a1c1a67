import structlog

from gas_engine.core.logger import get_logger, ESTIMATES, RPC_CALLS


def test_structured_events_and_prometheus():
    with structlog.testing.capture_logs() as captured:
        log = get_logger("test")
        log.info("UNIT_TEST_EVENT", data=1)
    assert captured == [{"event": "UNIT_TEST_EVENT", "data": 1, "log_level": "info"}]

    c = ESTIMATES.labels("unit")
    initial = c._value.get()
    c.inc()
    assert c._value.get() == initial + 1

    r = RPC_CALLS.labels("gas_price", "ok")
    before = r._value.get()
    r.inc()
    assert r._value.get() == before + 1
