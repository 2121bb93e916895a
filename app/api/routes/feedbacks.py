from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.api.deps import get_feedback_service, require_admin_key
from app.domain.visits.models import FeedbackStatus
from app.domain.visits.schemas import FeedbackSaida, SubmissaoSecaoIn
from app.domain.visits.scoring import calcular_score_lead
from app.services.feedback_service import FeedbackService

router = APIRouter()


class SimularScoreIn(BaseModel):
    qualificacao_lead: Optional[str] = None
    poder_decisao: Optional[str] = None
    prazo_compra: Optional[str] = None
    orcamento_disponivel: Optional[float] = None


@router.get("/feedbacks", response_model=List[FeedbackSaida], summary="Listar feedbacks")
def list_feedbacks(
    status: Optional[FeedbackStatus] = Query(None),
    agency_id: Optional[int] = Query(None),
    construtora_id: Optional[int] = Query(None),
    property_id: Optional[int] = Query(None),
    score_min: Optional[int] = Query(None, ge=0, le=100),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    svc: FeedbackService = Depends(get_feedback_service),
):
    return svc.list_feedbacks(
        status=status,
        agency_id=agency_id,
        construtora_id=construtora_id,
        property_id=property_id,
        score_min=score_min,
        limit=limit,
        offset=offset,
    )


@router.get("/feedbacks/{feedback_id}", response_model=FeedbackSaida, summary="Obter feedback")
def get_feedback(feedback_id: int, svc: FeedbackService = Depends(get_feedback_service)):
    return svc.get_feedback(feedback_id)


@router.post(
    "/feedbacks/{feedback_id}/corretor",
    response_model=FeedbackSaida,
    summary="Enviar avaliação do corretor",
    description="Calcula o score do lead e avança o feedback conforme a política.",
)
def submit_agent_section(
    feedback_id: int,
    payload: SubmissaoSecaoIn,
    svc: FeedbackService = Depends(get_feedback_service),
):
    return svc.submit_agent_section(feedback_id, payload.dados, payload.assinatura)


@router.post(
    "/feedbacks/{feedback_id}/arquivar",
    response_model=FeedbackSaida,
    summary="Arquivar feedback (admin)",
    dependencies=[Depends(require_admin_key)],
)
def archive_feedback(feedback_id: int, svc: FeedbackService = Depends(get_feedback_service)):
    return svc.archive(feedback_id)


@router.post(
    "/feedbacks/{feedback_id}/relatorio",
    status_code=202,
    summary="Regenerar relatório (admin)",
    dependencies=[Depends(require_admin_key)],
)
def regenerate_report(feedback_id: int, svc: FeedbackService = Depends(get_feedback_service)):
    row = svc.request_report_regeneration(feedback_id)
    return {"feedback_id": feedback_id, "outbox_id": row.id, "status": "queued"}


@router.post("/scoring/simular", summary="Simular score do lead")
def simulate_score(payload: SimularScoreIn):
    score_lead = calcular_score_lead(
        payload.qualificacao_lead,
        payload.poder_decisao,
        payload.prazo_compra,
        payload.orcamento_disponivel,
    )
    return {"score_lead": score_lead}
