"""
MemoryLane - shared photo gallery for events.

Application entry point: builds the FastAPI app and runs it with uvicorn.
"""

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from memorylane import __version__
from memorylane.api.routes import router
from memorylane.config import get_cors_origins, get_environment, get_host, get_images_dir, get_port
from memorylane.handlers.error import MemoryLaneError
from memorylane.logging_config import configure_structured_logging, get_logger
from memorylane.models.image import IMAGES_URL_PREFIX
from memorylane.services.image_processor import HEIF_AVAILABLE

logger = get_logger(__name__)


async def memorylane_error_handler(request: Request, exc: MemoryLaneError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


def create_app() -> FastAPI:
    """Create and configure the MemoryLane application."""
    configure_structured_logging()

    app = FastAPI(title="MemoryLane", version=__version__)

    cors_origins = get_cors_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials="*" not in cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(MemoryLaneError, memorylane_error_handler)
    app.include_router(router)

    images_dir = get_images_dir()
    images_dir.mkdir(parents=True, exist_ok=True)
    app.mount(IMAGES_URL_PREFIX, StaticFiles(directory=images_dir), name="images")

    if not HEIF_AVAILABLE:
        logger.warning("heif_support_unavailable", message="HEIC/HEIF uploads will be stored unconverted")

    logger.info(
        "application_created",
        environment=get_environment(),
        images_dir=str(images_dir),
        cors_origins=cors_origins,
        heif_available=HEIF_AVAILABLE,
    )
    return app


def run() -> None:
    """Serve the application with uvicorn."""
    configure_structured_logging()
    host = get_host()
    port = get_port()
    logger.info("server_starting", host=host, port=port)
    uvicorn.run("memorylane.main:create_app", factory=True, host=host, port=port, log_config=None)


if __name__ == "__main__":
    run()
