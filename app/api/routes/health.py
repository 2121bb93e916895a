from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from app.api.deps import get_db

router = APIRouter()
log = structlog.get_logger()


@router.get("/live", summary="Liveness")
def live():
    return {"status": "ok"}


@router.get("/ready", summary="Readiness (banco acessível)")
def ready(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        log.warning("health_ready_db_error", error=str(e))
        return JSONResponse(status_code=503, content={"status": "unavailable", "db": False})
    return {"status": "ok", "db": True}
