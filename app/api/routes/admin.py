from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_dispatcher, require_admin_key
from app.services.dispatch_service import OutboxDispatcher, pending_outbox_ids
from app.services.sweep_service import send_feedback_followups, send_visit_reminders

router = APIRouter(dependencies=[Depends(require_admin_key)])


@router.post("/sweeps/lembretes", summary="Enviar lembretes de visitas nas próximas 24h")
def run_visit_reminders(db: Session = Depends(get_db), dispatcher: OutboxDispatcher = Depends(get_dispatcher)):
    return {"sent": send_visit_reminders(db, dispatcher)}


@router.post("/sweeps/followups", summary="Enviar follow-ups de feedbacks pendentes")
def run_feedback_followups(db: Session = Depends(get_db), dispatcher: OutboxDispatcher = Depends(get_dispatcher)):
    return send_feedback_followups(db, dispatcher)


@router.post("/dispatch/drain", summary="Reenfileirar entregas pendentes do outbox")
def drain_outbox(db: Session = Depends(get_db), dispatcher: OutboxDispatcher = Depends(get_dispatcher)):
    ids = pending_outbox_ids(db)
    dispatcher.publish(ids)
    return {"requeued": len(ids)}
