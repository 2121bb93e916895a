from typing import Annotated, Iterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.repositories.db import SessionLocal
from app.services.agenda_service import AgendaService
from app.services.dispatch_service import OutboxDispatcher
from app.services.feedback_service import FeedbackService
from app.services.visit_service import VisitService


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_dispatcher() -> OutboxDispatcher:
    return OutboxDispatcher()


def get_visit_service(
    db: Annotated[Session, Depends(get_db)],
    dispatcher: Annotated[OutboxDispatcher, Depends(get_dispatcher)],
) -> VisitService:
    return VisitService(db=db, dispatcher=dispatcher)


def get_feedback_service(
    db: Annotated[Session, Depends(get_db)],
    dispatcher: Annotated[OutboxDispatcher, Depends(get_dispatcher)],
) -> FeedbackService:
    return FeedbackService(db=db, dispatcher=dispatcher)


def get_agenda_service(db: Annotated[Session, Depends(get_db)]) -> AgendaService:
    return AgendaService(db=db)


def _resolve_admin_key_expected() -> str:
    expected = (settings.ADMIN_API_KEY or "").strip()
    if not expected:
        env = (settings.APP_ENV or "").lower()
        if env in {"dev", "test"}:
            expected = "dev"
    return expected


def require_admin_key(x_admin_key: Annotated[str | None, Header(alias="X-Admin-Key")] = None) -> None:
    expected = _resolve_admin_key_expected()
    if not expected or (x_admin_key or "").strip() != expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin_only")
