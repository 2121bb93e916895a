from __future__ import annotations
import random
import structlog
from celery import Task
from app.core.config import settings
from app.domain.visits.errors import DependencyError
from app.repositories.db import SessionLocal
from app.services.dispatch_service import OutboxDispatcher, deliver_outbox, pending_outbox_ids
from app.services.sweep_service import send_feedback_followups, send_visit_reminders
from .celery_app import celery

log = structlog.get_logger()


class TransientSendError(Exception):
    pass


def _backoff(retry_count: int) -> float:
    base = 2 ** max(0, retry_count)
    jitter = random.uniform(0, 0.2 * base)
    return min(300.0, base + jitter)


@celery.task(name="dispatch.deliver", bind=True, max_retries=settings.OUTBOX_MAX_RETRIES)
def deliver(self: Task, outbox_id: int) -> dict:
    final_attempt = self.request.retries >= self.max_retries
    with SessionLocal() as db:
        try:
            status = deliver_outbox(db, int(outbox_id), final_attempt=final_attempt)
        except DependencyError as e:
            retry_no = self.request.retries
            delay = _backoff(retry_no)
            log.warning("dispatch_retry", outbox_id=outbox_id, retries=retry_no + 1, delay=delay)
            raise self.retry(exc=TransientSendError(e.message), countdown=delay)
    return {"outbox_id": int(outbox_id), "status": status.value if status else "missing"}


@celery.task(name="dispatch.drain_pending")
def drain_pending(limit: int = 100) -> dict:
    """Reenfileira linhas pendentes cujo enqueue pós-commit se perdeu."""
    with SessionLocal() as db:
        ids = pending_outbox_ids(db, limit=limit)
    OutboxDispatcher().publish(ids)
    log.info("dispatch_drain", count=len(ids))
    return {"requeued": len(ids)}


@celery.task(name="sweeps.visit_reminders")
def visit_reminders() -> dict:
    with SessionLocal() as db:
        sent = send_visit_reminders(db, OutboxDispatcher())
    return {"sent": sent}


@celery.task(name="sweeps.feedback_followups")
def feedback_followups() -> dict:
    with SessionLocal() as db:
        return send_feedback_followups(db, OutboxDispatcher())
