# /gas_engine/core/api.py
# HTTP front end: JSON in, engine call, JSON out. No estimation logic here.
import asyncio
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from gas_engine.core.config import EngineConfig, settings
from gas_engine.core.engine import GasEstimationEngine
from gas_engine.core.errors import GasEngineError, InvalidInput, UpstreamUnavailable
from gas_engine.core.logger import bind_request, get_logger
from gas_engine.core.models import TransactionDescriptor

VERSION = "0.1.0"

log = get_logger(__name__)


def error_response(status_code: int, message: str, error_type: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"message": message, "type": error_type}})


def create_app(engine: GasEstimationEngine | None = None, request_timeout: float | None = None) -> FastAPI:
    """Builds the API around `engine`, or around one configured from settings at startup."""
    timeout = request_timeout or settings.REQUEST_TIMEOUT_SECONDS

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is not None:
            yield
            return
        owned = GasEstimationEngine(EngineConfig.from_settings(settings))
        try:
            await owned.probe()
        except UpstreamUnavailable as e:
            log.critical("GAS_ENGINE_STARTUP_PROBE_FAILED", error=str(e))
            await owned.close()
            raise
        app.state.engine = owned
        yield
        await owned.close()
        log.info("GAS_ENGINE_STOPPED")

    app = FastAPI(title="eth-gas-estimator", version=VERSION, lifespan=lifespan)
    app.state.engine = engine
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.exception_handler(GasEngineError)
    async def engine_error(request: Request, exc: GasEngineError):
        return error_response(exc.status_code, str(exc), exc.error_type)

    @app.post("/api/v1/estimate-gas")
    async def estimate_gas(request: Request):
        bind_request(request.headers.get("x-request-id") or uuid.uuid4().hex)
        try:
            payload = await request.json()
        except ValueError:
            raise InvalidInput("Request body must be valid JSON")
        descriptor = TransactionDescriptor.from_request(payload)
        log.debug("ESTIMATE_REQUESTED", sender=descriptor.sender, to=descriptor.to)

        try:
            estimate = await asyncio.wait_for(request.app.state.engine.estimate(descriptor), timeout)
        except asyncio.TimeoutError:
            log.warning("ESTIMATE_REQUEST_TIMED_OUT", timeout=timeout)
            return error_response(504, f"Gas estimation timed out after {timeout}s", "timeout")
        return estimate.to_response()

    @app.get("/health")
    async def health(request: Request):
        engine_ = request.app.state.engine
        return {
            "status": "ok",
            "version": VERSION,
            "endpoints": engine_.pool.snapshot() if engine_ is not None else [],
        }

    @app.get("/metrics")
    async def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
