import logging

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from adscraper.jobs import SessionRegistry
from api.events import router as events_router
from api.routes import router
from core.config import settings
from core.errors import ScraperError

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app(registry: SessionRegistry | None = None) -> FastAPI:
    configure_logging()
    app = FastAPI(title="Ads Transparency Scraper API")
    app.state.sessions = registry or SessionRegistry()
    app.include_router(router)
    app.include_router(events_router)

    @app.exception_handler(ScraperError)
    async def scraper_error_handler(request: Request, exc: ScraperError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("request_failed path=%s code=%s", request.url.path, exc.code)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.code})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid request",
                "code": "invalid_request",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "code": f"http_{exc.status_code}"},
            headers=getattr(exc, "headers", None),
        )

    @app.get("/health")
    async def health() -> dict:
        return {
            "status": "ok",
            "sessions": len(app.state.sessions),
            "configured": {
                "serpapi": bool(settings.serpapi_api_key),
                "firecrawl": bool(settings.firecrawl_api_key),
                "apify": bool(settings.apify_api_token),
                "vision": bool(settings.openai_api_key),
            },
        }

    @app.get("/metrics")
    async def metrics() -> Response:
        if not settings.metrics_enabled:
            return Response(status_code=404)
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
