# /gas_engine/core/decorators.py
# Reusable retry policies for operational resilience.
import logging

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from gas_engine.core.errors import UpstreamUnavailable
from gas_engine.core.logger import get_logger

log = get_logger(__name__)


def full_cycle_retry(rounds: int) -> AsyncRetrying:
    """Repeat a whole pass over the endpoint list, backing off between passes.

    Only an exhausted pool is retried; semantic errors (reverts, bad input)
    propagate on the first attempt.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(rounds),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(UpstreamUnavailable),
        before_sleep=before_sleep_log(log, logging.WARNING),
        reraise=True,  # Re-raise the last exception after retries are exhausted
    )
