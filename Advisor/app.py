import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import Advisor.models  # noqa: F401  # registers tables on Base.metadata
from Advisor.database import Base, engine
from Advisor.errors import AdvisorError
from Advisor.schemas.conversation import ErrorOut
from Advisor.subapps.conversation_routes import router as conversations_router


_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(_ROOT / ".env", override=False)

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


# Renders every tagged service error as {"error": <tag>, "detail": <message>}
async def _advisor_error_handler(request: Request, exc: AdvisorError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code)
    body = ErrorOut(error=exc.code, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def create_app(*, create_tables: bool = True) -> FastAPI:
    if create_tables:
        Base.metadata.create_all(bind=engine)

    app = FastAPI(title="Business Engine Advisor")
    app.add_exception_handler(AdvisorError, _advisor_error_handler)
    app.include_router(conversations_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


_configure_logging()

app = create_app()
