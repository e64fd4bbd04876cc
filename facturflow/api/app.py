from __future__ import annotations
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from facturflow.api.routes import clients, cron, documents, public_quotes
from facturflow.config import Settings, load_settings
from facturflow.errors import (
    FacturFlowError,
    InvalidInput,
    InvalidState,
    NotFound,
    Unauthorized,
    UpstreamError,
)
from facturflow.log import setup_logging
from facturflow.services.registry import build_services

logger = logging.getLogger(__name__)

# erreur métier -> code HTTP (le premier type correspondant gagne)
ERROR_STATUS = (
    (Unauthorized, 401),
    (NotFound, 404),
    (InvalidState, 409),
    (InvalidInput, 422),
    (UpstreamError, 502),
)


def _status_for(exc: FacturFlowError) -> int:
    for err_type, code in ERROR_STATUS:
        if isinstance(exc, err_type):
            return code
    return 500


async def facturflow_error_handler(request: Request, exc: FacturFlowError) -> JSONResponse:
    code = _status_for(exc)
    if code >= 500:
        logger.error("%s %s : %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s refusé (%d) : %s", request.method, request.url.path, code, exc)
    return JSONResponse({"error": str(exc)}, status_code=code)


def create_app(settings: Optional[Settings] = None, provider=None) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title="FacturFlow API", version="0.1.0")
    app.state.services = build_services(settings, provider)
    app.add_exception_handler(FacturFlowError, facturflow_error_handler)

    app.include_router(cron.router)
    app.include_router(public_quotes.router)
    app.include_router(documents.router)
    app.include_router(clients.router)

    @app.get("/api/health")
    def health():
        return {"status": "ok"}

    logger.info("FacturFlow démarré (données : %s)", settings.data_dir)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("facturflow.api.app:create_app", factory=True, host="0.0.0.0", port=8000)
