"""
Varreduras periódicas: lembrete 24h antes da visita e follow-up de feedbacks parados.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Optional

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from app.domain.visits.errors import DependencyError
from app.domain.visits.models import FeedbackStatus, Visit, VisitFeedback, VisitStatus
from app.services.dispatch_service import OutboxDispatcher, commit_with_outbox
from app.services.visit_service import public_feedback_link

log = structlog.get_logger()

BATCH_SIZE = 50
REMINDER_WINDOW_START = timedelta(hours=24)
REMINDER_WINDOW_END = timedelta(hours=25)
FOLLOWUP_AFTER = timedelta(hours=24)


def send_visit_reminders(db: Session, dispatcher: OutboxDispatcher, now: Optional[datetime] = None) -> int:
    """Visitas confirmadas que acontecem entre 24h e 25h a partir de agora."""
    now = now or datetime.utcnow()
    stmt = (
        select(Visit)
        .where(
            Visit.status == VisitStatus.confirmed,
            Visit.lembrete_24h_enviado.is_(False),
            Visit.data_confirmada >= now + REMINDER_WINDOW_START,
            Visit.data_confirmada < now + REMINDER_WINDOW_END,
        )
        .order_by(Visit.data_confirmada.asc())
        .limit(BATCH_SIZE)
    )
    visits = list(db.execute(stmt).scalars().all())

    sent = 0
    for visit in visits:
        claimed = db.execute(
            update(Visit)
            .where(
                Visit.id == visit.id,
                Visit.status == VisitStatus.confirmed,
                Visit.reagendamentos == visit.reagendamentos,
                Visit.lembrete_24h_enviado.is_(False),
            )
            .values(lembrete_24h_enviado=True)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            db.rollback()
            continue
        row = dispatcher.stage_notification(
            db,
            template="visit_reminder",
            recipient_role="cliente",
            recipient_email=visit.cliente_email,
            visit_id=visit.id,
            payload={
                "visit_id": visit.id,
                "cliente_nome": visit.cliente_nome,
                "imovel_titulo": visit.imovel_titulo,
                "data_confirmada": visit.data_confirmada.strftime("%d/%m/%Y %H:%M"),
            },
            key=f"visit:{visit.id}:reminder:{visit.reagendamentos}",
        )
        try:
            commit_with_outbox(db, dispatcher, [row], "visit_reminder")
        except DependencyError:
            log.warning("sweep_visit_reminder_skipped", visit_id=visit.id)
            continue
        sent += 1

    log.info("sweep_visit_reminders", candidates=len(visits), sent=sent)
    return sent


def send_feedback_followups(db: Session, dispatcher: OutboxDispatcher, now: Optional[datetime] = None) -> Dict[str, int]:
    """Lembra cliente e corretor de seções pendentes há mais de 24h."""
    now = now or datetime.utcnow()
    cutoff = now - FOLLOWUP_AFTER

    clientes = list(
        db.execute(
            select(VisitFeedback)
            .where(
                VisitFeedback.status == FeedbackStatus.aguardando_cliente,
                VisitFeedback.followup_enviado_cliente.is_(False),
                or_(VisitFeedback.feedback_corretor_em <= cutoff, VisitFeedback.created_at <= cutoff),
            )
            .order_by(VisitFeedback.id.asc())
            .limit(BATCH_SIZE)
        ).scalars().all()
    )
    sent_cliente = 0
    for fb in clientes:
        # agent_first: a contagem começa quando o corretor enviou a seção dele
        since = fb.feedback_corretor_em or fb.created_at
        if since > cutoff:
            continue
        claimed = db.execute(
            update(VisitFeedback)
            .where(
                VisitFeedback.id == fb.id,
                VisitFeedback.status == FeedbackStatus.aguardando_cliente,
                VisitFeedback.followup_enviado_cliente.is_(False),
            )
            .values(followup_enviado_cliente=True)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            db.rollback()
            continue
        row = dispatcher.stage_notification(
            db,
            template="feedback_followup_client",
            recipient_role="cliente",
            recipient_email=fb.cliente_email,
            visit_id=fb.visit_id,
            feedback_id=fb.id,
            payload={
                "feedback_id": fb.id,
                "cliente_nome": fb.cliente_nome,
                "imovel_titulo": fb.imovel_titulo,
                "link": public_feedback_link(fb.token_acesso_cliente),
            },
            key=f"feedback:{fb.id}:followup:cliente",
        )
        try:
            commit_with_outbox(db, dispatcher, [row], "feedback_followup_client")
        except DependencyError:
            log.warning("sweep_feedback_followup_skipped", feedback_id=fb.id, role="cliente")
            continue
        sent_cliente += 1

    corretores = list(
        db.execute(
            select(VisitFeedback)
            .where(
                VisitFeedback.status == FeedbackStatus.aguardando_corretor,
                VisitFeedback.followup_enviado_corretor.is_(False),
                or_(VisitFeedback.feedback_cliente_em <= cutoff, VisitFeedback.created_at <= cutoff),
            )
            .order_by(VisitFeedback.id.asc())
            .limit(BATCH_SIZE)
        ).scalars().all()
    )
    sent_corretor = 0
    for fb in corretores:
        since = fb.feedback_cliente_em or fb.created_at
        if since > cutoff:
            continue
        claimed = db.execute(
            update(VisitFeedback)
            .where(
                VisitFeedback.id == fb.id,
                VisitFeedback.status == FeedbackStatus.aguardando_corretor,
                VisitFeedback.followup_enviado_corretor.is_(False),
            )
            .values(followup_enviado_corretor=True)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            db.rollback()
            continue
        row = dispatcher.stage_notification(
            db,
            template="feedback_followup_agent",
            recipient_role="corretor",
            recipient_email=fb.corretor_email or fb.agency_email,
            visit_id=fb.visit_id,
            feedback_id=fb.id,
            payload={
                "feedback_id": fb.id,
                "cliente_nome": fb.cliente_nome,
                "imovel_titulo": fb.imovel_titulo,
            },
            key=f"feedback:{fb.id}:followup:corretor",
        )
        try:
            commit_with_outbox(db, dispatcher, [row], "feedback_followup_agent")
        except DependencyError:
            log.warning("sweep_feedback_followup_skipped", feedback_id=fb.id, role="corretor")
            continue
        sent_corretor += 1

    log.info("sweep_feedback_followups", cliente=sent_cliente, corretor=sent_corretor)
    return {"cliente": sent_cliente, "corretor": sent_corretor}
