from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.api.deps import get_visit_service
from app.domain.visits.models import FeedbackPolicy, VisitStatus
from app.domain.visits.schemas import CorretorIn, FeedbackSaida, VisitaCriar, VisitaSaida
from app.services.visit_service import VisitService

router = APIRouter()


class ConfirmarIn(BaseModel):
    data_escolhida: datetime
    corretor: Optional[CorretorIn] = None


class CancelarIn(BaseModel):
    motivo: Optional[str] = None


class RemarcarIn(BaseModel):
    opcao_data_1: datetime
    opcao_data_2: datetime


class RealizarIn(BaseModel):
    politica: Optional[FeedbackPolicy] = None
    corretor: Optional[CorretorIn] = None


@router.post(
    "/visitas",
    response_model=VisitaSaida,
    status_code=201,
    summary="Propor visita",
    description="Cria a visita em 'pending' com duas opções de horário futuras e distintas.",
)
def propose_visit(payload: VisitaCriar, svc: VisitService = Depends(get_visit_service)):
    return svc.propose_visit(payload)


@router.get("/visitas", response_model=List[VisitaSaida], summary="Listar visitas")
def list_visits(
    status: Optional[VisitStatus] = Query(None),
    agency_id: Optional[int] = Query(None),
    construtora_id: Optional[int] = Query(None),
    property_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    svc: VisitService = Depends(get_visit_service),
):
    return svc.list_visits(
        status=status,
        agency_id=agency_id,
        construtora_id=construtora_id,
        property_id=property_id,
        limit=limit,
        offset=offset,
    )


@router.get("/visitas/{visit_id}", response_model=VisitaSaida, summary="Obter visita")
def get_visit(visit_id: int, svc: VisitService = Depends(get_visit_service)):
    return svc.get_visit(visit_id)


@router.post("/visitas/{visit_id}/confirmar", response_model=VisitaSaida, summary="Confirmar horário")
def confirm_visit(visit_id: int, payload: ConfirmarIn, svc: VisitService = Depends(get_visit_service)):
    return svc.confirm_visit(visit_id, payload.data_escolhida, corretor=payload.corretor)


@router.post("/visitas/{visit_id}/cancelar", response_model=VisitaSaida, summary="Cancelar visita")
def cancel_visit(visit_id: int, payload: CancelarIn, svc: VisitService = Depends(get_visit_service)):
    return svc.cancel_visit(visit_id, payload.motivo)


@router.post("/visitas/{visit_id}/remarcar", response_model=VisitaSaida, summary="Remarcar visita confirmada")
def reschedule_visit(visit_id: int, payload: RemarcarIn, svc: VisitService = Depends(get_visit_service)):
    return svc.reschedule_visit(visit_id, payload.opcao_data_1, payload.opcao_data_2)


@router.post(
    "/visitas/{visit_id}/realizar",
    response_model=FeedbackSaida,
    summary="Marcar visita como realizada",
    description="Cria o feedback da visita; a política define quem avalia primeiro.",
)
def realize_visit(
    visit_id: int,
    payload: Optional[RealizarIn] = None,
    svc: VisitService = Depends(get_visit_service),
):
    payload = payload or RealizarIn()
    return svc.realize_visit(visit_id, policy=payload.politica, corretor=payload.corretor)
