"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from compressor.api.routes import router
from compressor.config import CORS_ORIGINS, logger as config_logger
from compressor.conversion import BatchOrchestrator
from compressor.db import dispose_engine, init_db
from compressor.store import ResultStore

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    config_logger.info("Compressor API started")
    yield
    app.state.orchestrator.shutdown()
    dispose_engine()
    config_logger.info("Compressor API shutting down")


def create_app(
    store: Optional[ResultStore] = None,
    orchestrator: Optional[BatchOrchestrator] = None,
) -> FastAPI:
    """Build the app with one result store shared by all requests."""
    app = FastAPI(
        title="Image Compressor API",
        description="Convert batches of images to JPEG, PNG, WebP, AVIF or JPEG XL and download them singly or as a zip.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    store = store if store is not None else (orchestrator.store if orchestrator else ResultStore())
    app.state.result_store = store
    app.state.orchestrator = orchestrator or BatchOrchestrator(store)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from compressor.config import HOST, PORT
    uvicorn.run("compressor.main:app", host=HOST, port=PORT, reload=True)
