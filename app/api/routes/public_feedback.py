from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from app.api.deps import get_feedback_service
from app.domain.visits.schemas import AssinaturaIn, SubmissaoSecaoIn
from app.services.feedback_service import FeedbackService, VIEW_AGUARDANDO_CORRETOR, VIEW_OBRIGADO
from app.domain.visits.models import FeedbackStatus

router = APIRouter()


@router.get("/{token}", summary="Visão pública do feedback pelo link do cliente")
def public_view(token: str, svc: FeedbackService = Depends(get_feedback_service)):
    return svc.get_public_view(token)


@router.post("/{token}", summary="Cliente envia a própria avaliação pelo link")
def public_submit(
    token: str,
    payload: SubmissaoSecaoIn,
    request: Request,
    svc: FeedbackService = Depends(get_feedback_service),
):
    assinatura = payload.assinatura
    if isinstance(assinatura, str):
        assinatura = AssinaturaIn(imagem=assinatura) if assinatura.strip() else None
    if assinatura is not None:
        assinatura = AssinaturaIn(
            imagem=assinatura.imagem,
            device=assinatura.device or request.headers.get("user-agent"),
            ip=assinatura.ip or (request.client.host if request.client else None),
        )
    fb = svc.submit_client_section_by_token(token, payload.dados, assinatura)
    view = VIEW_OBRIGADO if fb.status == FeedbackStatus.completo else VIEW_AGUARDANDO_CORRETOR
    return {"view": view, "status": fb.status.value}
