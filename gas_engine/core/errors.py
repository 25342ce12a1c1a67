# /gas_engine/core/errors.py
# Typed failures raised by the estimation engine.
# Each class carries the error type and HTTP status the API layer reports.

from typing import Callable, Dict


class GasEngineError(Exception):
    """Base class for every error the engine surfaces."""
    error_type = "server_error"
    status_code = 500


class ConfigError(GasEngineError):
    error_type = "configuration_error"
    status_code = 500


class InvalidInput(GasEngineError):
    """Malformed transaction descriptor. Never retried."""
    error_type = "invalid_input"
    status_code = 400


class CallWouldRevert(GasEngineError):
    """The node refused to simulate the call (revert, gas above allowance)."""
    error_type = "gas_estimation_error"
    status_code = 400


class UpstreamError(GasEngineError):
    """A single endpoint failed a single call. Recovered by fallback."""
    error_type = "provider_error"
    status_code = 503


class RpcCallError(UpstreamError):
    pass


class RpcTimeout(UpstreamError):
    pass


class MethodNotSupported(RpcCallError):
    """The endpoint answered, but does not implement the JSON-RPC method."""


class UpstreamUnavailable(GasEngineError):
    """Every endpoint in the pool failed for one logical operation."""
    error_type = "provider_error"
    status_code = 503

    def __init__(self, operation: str, failures: Dict[str, str], redact: Callable[[str], str] = str):
        self.operation = operation
        self.failures = dict(failures)
        detail = "; ".join(f"{redact(url)}: {err}" for url, err in self.failures.items())
        super().__init__(f"All RPC endpoints failed for {operation}: {detail}")


class FeeModelUnavailable(GasEngineError):
    """Neither a legacy gas price nor a base fee could be obtained."""
    error_type = "provider_error"
    status_code = 503
