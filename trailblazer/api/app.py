import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI

from trailblazer.config import load_config
from trailblazer.runtime import TrailblazerRuntime
from .api_tabs import router as tabs_router

# Configure logging
logging.basicConfig(
    level=load_config().log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),
    ]
)
logger = logging.getLogger("trailblazer.api")

RuntimeFactory = Callable[[], TrailblazerRuntime]


def _default_runtime() -> TrailblazerRuntime:
    return TrailblazerRuntime(load_config())


def create_app(runtime_factory: Optional[RuntimeFactory] = None) -> FastAPI:
    factory = runtime_factory or _default_runtime

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting tab recording runtime...")
        runtime = factory()
        await runtime.start()
        app.state.runtime = runtime
        try:
            yield
        finally:
            await runtime.stop()
            app.state.runtime = None
            logger.info("Tab recording runtime stopped.")

    app = FastAPI(title="Trailblazer", lifespan=lifespan)
    app.include_router(tabs_router)

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "version": "0.1.0"}

    return app


app = create_app()
