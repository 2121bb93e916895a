"""
Outbox de efeitos colaterais (notificações e relatórios).

As linhas são gravadas na mesma transação da mudança de status; a entrega
acontece depois do commit, por um worker, com semântica at-least-once.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.visits.errors import DependencyError
from app.domain.visits.models import DispatchOutbox, OutboxKind, OutboxStatus
from app.services.notification_service import NotificationService
from app.services.report_service import ReportService

log = structlog.get_logger()

Enqueue = Callable[[int], None]


def enqueue_via_celery(outbox_id: int) -> None:
    from app.workers.tasks_dispatch import deliver

    deliver.delay(int(outbox_id))


class OutboxDispatcher:
    def __init__(self, enqueue: Optional[Enqueue] = None):
        self._enqueue = enqueue or enqueue_via_celery

    def stage_notification(
        self,
        db: Session,
        *,
        template: str,
        recipient_role: str,
        recipient_email: Optional[str],
        key: str,
        visit_id: Optional[int] = None,
        feedback_id: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[DispatchOutbox]:
        if not recipient_email:
            log.info("dispatch_skipped_no_recipient", template=template, role=recipient_role, key=key)
            return None
        row = DispatchOutbox(
            kind=OutboxKind.notify,
            template=template,
            recipient_role=recipient_role,
            recipient_email=recipient_email,
            visit_id=visit_id,
            feedback_id=feedback_id,
            payload=payload or {},
            status=OutboxStatus.pending,
            attempts=0,
            idempotency_key=key,
        )
        db.add(row)
        return row

    def stage_report(self, db: Session, *, feedback_id: int, key: str, visit_id: Optional[int] = None) -> DispatchOutbox:
        row = DispatchOutbox(
            kind=OutboxKind.report,
            feedback_id=feedback_id,
            visit_id=visit_id,
            payload={},
            status=OutboxStatus.pending,
            attempts=0,
            idempotency_key=key,
        )
        db.add(row)
        return row

    def publish(self, outbox_ids: Iterable[int]) -> None:
        """Dispara a entrega sem bloquear a transição; falhas só vão para o log."""
        for outbox_id in outbox_ids:
            try:
                self._enqueue(int(outbox_id))
            except Exception as e:  # noqa: BLE001
                log.error("dispatch_enqueue_error", outbox_id=outbox_id, error=str(e))


def commit_with_outbox(db: Session, dispatcher: OutboxDispatcher, rows: List[Optional[DispatchOutbox]], event: str) -> None:
    """Commit da transição + linhas do outbox; só então publica as entregas."""
    staged = [r for r in rows if r is not None]
    try:
        db.flush()
        ids = [int(r.id) for r in staged]
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error("transition_commit_error", transition=event, error=str(e))
        raise DependencyError(code="store_unavailable")
    dispatcher.publish(ids)


def deliver_outbox(
    db: Session,
    outbox_id: int,
    *,
    notifier: Optional[NotificationService] = None,
    reporter: Optional[ReportService] = None,
    final_attempt: bool = False,
) -> Optional[OutboxStatus]:
    """
    Entrega uma linha do outbox.

    Linhas já enviadas são ignoradas (reentrega idempotente). Em falha, registra
    a tentativa e levanta DependencyError para o worker reagendar; na última
    tentativa marca a linha como ``failed``.
    """
    row = db.get(DispatchOutbox, outbox_id)
    if row is None:
        log.warning("dispatch_outbox_missing", outbox_id=outbox_id)
        return None
    if row.status != OutboxStatus.pending:
        log.info("dispatch_outbox_skip", outbox_id=outbox_id, status=row.status.value)
        return row.status

    kind = row.kind
    try:
        if kind == OutboxKind.notify:
            ok = (notifier or NotificationService()).notify(row.template or "", row.recipient_email or "", dict(row.payload or {}))
            if not ok:
                raise DependencyError(code="notification_failed")
        else:
            (reporter or ReportService()).generate_report(db, int(row.feedback_id))
    except Exception as e:  # noqa: BLE001
        db.rollback()
        row = db.get(DispatchOutbox, outbox_id)
        row.attempts = int(row.attempts or 0) + 1
        row.last_error = str(e)[:2048] or e.__class__.__name__
        if final_attempt:
            row.status = OutboxStatus.failed
        db.add(row)
        db.commit()
        log.warning(
            "dispatch_delivery_error",
            outbox_id=outbox_id,
            kind=kind.value,
            attempts=row.attempts,
            final=final_attempt,
            error=str(e),
        )
        if final_attempt:
            return OutboxStatus.failed
        raise DependencyError(code="dispatch_failed")

    row.attempts = int(row.attempts or 0) + 1
    row.status = OutboxStatus.sent
    row.sent_at = datetime.utcnow()
    row.last_error = None
    db.add(row)
    db.commit()
    log.info("dispatch_delivered", outbox_id=outbox_id, kind=kind.value, template=row.template)
    return OutboxStatus.sent


def pending_outbox_ids(db: Session, limit: int = 100) -> List[int]:
    stmt = (
        select(DispatchOutbox.id)
        .where(DispatchOutbox.status == OutboxStatus.pending)
        .order_by(DispatchOutbox.id.asc())
        .limit(limit)
    )
    return [int(i) for i in db.execute(stmt).scalars().all()]
