import os, sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import time
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .files import router as files_router
from .logutil import get_logger

logger = get_logger("http")


def create_app(root: str | None = None) -> FastAPI:
    app = FastAPI(title="filebeam file server", version="1.0")
    app.state.root = Path(root or config.BEAM_ROOT).expanduser().resolve()
    logger.info("serving directory", extra={"root": str(app.state.root)})

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        t0 = time.perf_counter()
        response = await call_next(request)
        logger.info(f"{request.method} {request.url.path} {response.status_code}", extra={
            "client": getattr(request.client, "host", "?"),
            "query": request.url.query,
            "dur_ms": int((time.perf_counter() - t0) * 1000),
        })
        return response

    # Routers
    app.include_router(files_router)
    return app

app = create_app()

def run(root: str | None = None, host: str | None = None, port: int | None = None) -> None:
    uvicorn.run(create_app(root), host=host or config.BEAM_HOST, port=port or config.BEAM_PORT, log_level="warning")

if __name__ == "__main__":
    run()
