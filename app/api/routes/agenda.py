from __future__ import annotations

from datetime import date, datetime
from typing import List

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_agenda_service, require_admin_key
from app.domain.visits.schemas import (
    BloqueioIn,
    BloqueioSaida,
    DisponibilidadeIn,
    DisponibilidadeSaida,
)
from app.services.agenda_service import AgendaService

router = APIRouter()


@router.get(
    "/agencias/{agency_id}/disponibilidade",
    response_model=List[DisponibilidadeSaida],
    summary="Listar disponibilidade semanal",
)
def list_availability(agency_id: int, svc: AgendaService = Depends(get_agenda_service)):
    return svc.list_availability(agency_id)


@router.put(
    "/agencias/{agency_id}/disponibilidade",
    response_model=DisponibilidadeSaida,
    summary="Definir disponibilidade de um dia da semana (admin)",
    description="0=domingo ... 6=sábado. Substitui a janela já cadastrada para o mesmo dia.",
    dependencies=[Depends(require_admin_key)],
)
def set_availability(agency_id: int, payload: DisponibilidadeIn, svc: AgendaService = Depends(get_agenda_service)):
    return svc.set_availability(agency_id, payload)


@router.delete(
    "/agencias/{agency_id}/disponibilidade/{dia_semana}",
    status_code=204,
    summary="Remover disponibilidade de um dia (admin)",
    dependencies=[Depends(require_admin_key)],
)
def remove_availability(agency_id: int, dia_semana: int, svc: AgendaService = Depends(get_agenda_service)):
    svc.remove_availability(agency_id, dia_semana)


@router.get("/agencias/{agency_id}/bloqueios", response_model=List[BloqueioSaida], summary="Listar bloqueios")
def list_blocks(
    agency_id: int,
    incluir_passados: bool = Query(False),
    svc: AgendaService = Depends(get_agenda_service),
):
    return svc.list_blocks(agency_id, include_past=incluir_passados)


@router.post(
    "/agencias/{agency_id}/bloqueios",
    response_model=BloqueioSaida,
    status_code=201,
    summary="Bloquear período da agenda (admin)",
    dependencies=[Depends(require_admin_key)],
)
def add_block(agency_id: int, payload: BloqueioIn, svc: AgendaService = Depends(get_agenda_service)):
    return svc.add_block(agency_id, payload)


@router.delete(
    "/agencias/{agency_id}/bloqueios/{block_id}",
    status_code=204,
    summary="Remover bloqueio (admin)",
    dependencies=[Depends(require_admin_key)],
)
def remove_block(agency_id: int, block_id: int, svc: AgendaService = Depends(get_agenda_service)):
    svc.remove_block(agency_id, block_id)


@router.get(
    "/agencias/{agency_id}/horarios",
    response_model=List[datetime],
    summary="Horários livres em uma data",
)
def available_slots(agency_id: int, data: date = Query(...), svc: AgendaService = Depends(get_agenda_service)):
    return svc.available_slots(agency_id, data)
