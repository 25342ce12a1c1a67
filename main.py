# /main.py
# Serves the gas estimation API. Engine settings come from the environment / .env.
import uvicorn
from pydantic import ValidationError

from gas_engine.core.api import create_app
from gas_engine.core.config import EngineConfig, settings
from gas_engine.core.errors import ConfigError
from gas_engine.core.logger import configure_logging, get_logger


def main():
    configure_logging()
    log = get_logger("GasEngine.System")

    # Fail fast on a bad endpoint list before binding the port.
    try:
        engine_config = EngineConfig.from_settings(settings)
    except (ConfigError, ValidationError) as e:
        log.critical("CONFIG_VALIDATION_FAILED", error=str(e))
        raise SystemExit(1)
    log.info(
        "GAS_ESTIMATOR_STARTING",
        host=settings.HOST,
        port=settings.PORT,
        endpoints=len(engine_config.rpc_urls),
    )

    uvicorn.run(create_app(), host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
