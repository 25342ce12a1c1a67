# /gas_engine/core/endpoint_pool.py
# Ordered set of upstream RPC endpoints with shared liveness bookkeeping.

import threading
import time
from urllib.parse import urlsplit
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from gas_engine.adapters.rpc import BaseRpcClient
from gas_engine.core.errors import ConfigError
from gas_engine.core.logger import get_logger, ENDPOINT_FAILURES

log = get_logger(__name__)

ClientFactory = Callable[[str], BaseRpcClient]


def redact_url(url: str) -> str:
    """Scheme and host only; provider URLs usually carry an API key in the path."""
    parts = urlsplit(url)
    if not parts.hostname:
        return url
    port = f":{parts.port}" if parts.port else ""
    return f"{parts.scheme}://{parts.hostname}{port}"


@dataclass
class Endpoint:
    url: str
    alive: bool = True
    consecutive_failures: int = 0
    total_failures: int = 0
    suspected_at: Optional[float] = None
    last_error: str = ""


class EndpointPool:
    """
    Holds the configured endpoints in priority order. Endpoints are never
    removed: a suspected-dead one keeps its slot in the rotation and is
    considered alive again once `revive_after` seconds have passed.
    """
    def __init__(
        self,
        urls: List[str],
        client_factory: ClientFactory,
        failure_threshold: int = 3,
        revive_after: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not urls:
            raise ConfigError("Endpoint pool needs at least one RPC URL")
        if failure_threshold < 1:
            raise ConfigError("failure_threshold must be at least 1")
        unique = list(dict.fromkeys(urls))
        if len(unique) < len(urls):
            log.warning("DUPLICATE_RPC_URLS_IGNORED", configured=len(urls), unique=len(unique))
        self.endpoints = [Endpoint(url=u) for u in unique]
        self.failure_threshold = failure_threshold
        self.revive_after = revive_after
        self._client_factory = client_factory
        self._clients: Dict[str, BaseRpcClient] = {}
        self._clock = clock
        self._lock = threading.Lock()
        if len(self.endpoints) < 2:
            log.warning("RESILIENCE_DEGRADED_LT_2_RPCS", count=len(self.endpoints))
        log.info("ENDPOINT_POOL_INITIALIZED", rpc_count=len(self.endpoints))

    def _maybe_revive(self, endpoint: Endpoint, now: float):
        if not endpoint.alive and endpoint.suspected_at is not None and now - endpoint.suspected_at >= self.revive_after:
            endpoint.alive = True
            endpoint.suspected_at = None
            log.info("ENDPOINT_REVIVED_FOR_RETRY", url=redact_url(endpoint.url))

    def next_candidates(self) -> List[Endpoint]:
        """All endpoints, rotated to start at the first alive one."""
        with self._lock:
            now = self._clock()
            for endpoint in self.endpoints:
                self._maybe_revive(endpoint, now)
            start = next((i for i, e in enumerate(self.endpoints) if e.alive), 0)
            return self.endpoints[start:] + self.endpoints[:start]

    def report_failure(self, endpoint: Endpoint, error: str = ""):
        with self._lock:
            endpoint.consecutive_failures += 1
            endpoint.total_failures += 1
            endpoint.last_error = error
            if not endpoint.alive:
                # Still failing while suspected; the revive window starts over.
                endpoint.suspected_at = self._clock()
            elif endpoint.consecutive_failures >= self.failure_threshold:
                endpoint.alive = False
                endpoint.suspected_at = self._clock()
                log.warning(
                    "ENDPOINT_SUSPECTED_DEAD",
                    url=redact_url(endpoint.url),
                    consecutive_failures=endpoint.consecutive_failures,
                )
        ENDPOINT_FAILURES.labels(redact_url(endpoint.url)).inc()

    def report_success(self, endpoint: Endpoint):
        with self._lock:
            if not endpoint.alive:
                log.info("ENDPOINT_RECOVERED", url=redact_url(endpoint.url))
            endpoint.alive = True
            endpoint.consecutive_failures = 0
            endpoint.suspected_at = None

    def client_for(self, endpoint: Endpoint) -> BaseRpcClient:
        with self._lock:
            client = self._clients.get(endpoint.url)
            if client is None:
                client = self._client_factory(endpoint.url)
                self._clients[endpoint.url] = client
            return client

    def snapshot(self) -> List[dict]:
        with self._lock:
            return [
                {
                    "url": redact_url(e.url),
                    "alive": e.alive,
                    "consecutive_failures": e.consecutive_failures,
                    "total_failures": e.total_failures,
                }
                for e in self.endpoints
            ]

    async def close(self):
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.close()
