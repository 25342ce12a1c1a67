# /gas_engine/core/logger.py
import logging
import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars
import sentry_sdk
from prometheus_client import Counter
from gas_engine.core.config import settings

# --- Prometheus Metrics ---
RPC_CALLS = Counter("gas_engine_rpc_calls_total", "Upstream RPC calls by operation and outcome", ["operation", "outcome"])
ENDPOINT_FAILURES = Counter("gas_engine_endpoint_failures_total", "Failures reported against an RPC endpoint", ["endpoint"])
CACHE_LOOKUPS = Counter("gas_engine_cache_lookups_total", "TTL cache lookups", ["result"])
ESTIMATES = Counter("gas_engine_estimates_total", "Gas estimation requests by outcome", ["outcome"])


def configure_logging(level: str | None = None):
    if settings.SENTRY_DSN:
        sentry_sdk.init(dsn=settings.SENTRY_DSN, traces_sample_rate=1.0)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName((level or settings.LOG_LEVEL).upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str):
    return structlog.get_logger(name)


def bind_request(request_id: str):
    """Tag every event logged while serving one request."""
    clear_contextvars()
    bind_contextvars(request_id=request_id)


configure_logging()
log = get_logger("GasEngine.System")
