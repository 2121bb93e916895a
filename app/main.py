from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from fastapi.exceptions import RequestValidationError
from fastapi import HTTPException
from app.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler,
)
from app.core.config import settings
from app.core.logging import configure_logging
from app.api.routes.health import router as health_router
from app.api.routes.visits import router as visits_router
from app.api.routes.feedbacks import router as feedbacks_router
from app.api.routes.public_feedback import router as public_feedback_router
from app.api.routes.admin import router as admin_router
from app.api.routes.agenda import router as agenda_router
from app.domain.visits.errors import VisitDomainError
from app.repositories.db import Base, engine

import app.domain.visits.models  # noqa: F401 - importa modelos para registrar no metadata
from contextlib import asynccontextmanager
from pathlib import Path
import structlog
import traceback
import uuid
from fastapi.responses import JSONResponse

configure_logging()
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    if (settings.APP_ENV or "").lower() == "test":
        # Em testes, garantir schema limpo para isolar dados entre execuções
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    # Shutdown: nothing for now


tags_metadata = [
    {"name": "health", "description": "Healthchecks de liveness/readiness."},
    {"name": "visitas", "description": "Agendamento e ciclo de vida das visitas."},
    {"name": "feedbacks", "description": "Feedback pós-visita do corretor e do cliente, score do lead."},
    {"name": "agenda", "description": "Disponibilidade semanal e bloqueios da agenda da imobiliária."},
    {"name": "public", "description": "Link público do cliente para avaliar a visita."},
    {"name": "admin", "description": "Varreduras e outbox (requer X-Admin-Key)."},
]

app = FastAPI(
    title="Visitas & Feedback API",
    version="0.1.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)


@app.middleware("http")
async def _http_logger(request, call_next):
    # Correlation ID (propaga entre logs e resposta)
    cid = request.headers.get("x-correlation-id") or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(correlation_id=cid)
    try:
        log.info("http_request_start", method=request.method, path=request.url.path)
        response = await call_next(request)
        response.headers["X-Correlation-Id"] = cid
        log.info(
            "http_request_end",
            method=request.method,
            path=request.url.path,
            status=getattr(response, "status_code", None),
        )
        return response
    except Exception as e:
        log.error(
            "http_request_exception",
            method=request.method,
            path=request.url.path,
            error=str(e),
            traceback=traceback.format_exc(),
        )
        return JSONResponse(status_code=500, content={"error": {"code": "internal_error", "message": "unexpected error"}})
    finally:
        structlog.contextvars.unbind_contextvars("correlation_id")


app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(visits_router, prefix="/re", tags=["visitas"])
app.include_router(feedbacks_router, prefix="/re", tags=["feedbacks"])
app.include_router(agenda_router, prefix="/re", tags=["agenda"])
app.include_router(public_feedback_router, prefix="/public/feedback", tags=["public"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])

# Relatórios gerados localmente (MVP). Em produção usar CDN/Storage dedicado.
reports_path = Path(settings.REPORTS_DIR)
reports_path.mkdir(parents=True, exist_ok=True)
app.mount("/static/relatorios", StaticFiles(directory=str(reports_path), html=False), name="static-relatorios")

# Global error handlers (uniform error payloads)
app.add_exception_handler(VisitDomainError, domain_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/")
async def root():
    return {"service": "visitas-feedback", "status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
