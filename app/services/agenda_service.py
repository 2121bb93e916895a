"""
Agenda da imobiliária: disponibilidade semanal, bloqueios e horários ocupados.

Só vale para imobiliárias com agenda configurada; sem nenhuma disponibilidade
cadastrada qualquer horário futuro é aceito.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any, Callable, List, Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.visits.errors import DependencyError, NotFoundError, ValidationError
from app.domain.visits.models import AgencyAvailability, AgendaBlock, Visit, VisitStatus
from app.domain.visits.schemas import BloqueioIn, DisponibilidadeIn, to_naive_utc
from app.domain.visits.validation import parse_model

log = structlog.get_logger()

# Visitas que ainda ocupam o horário
BOOKING_STATUSES = (VisitStatus.pending, VisitStatus.confirmed, VisitStatus.rescheduled)

# Sugestão de horários quando a imobiliária não configurou agenda (seg-sex, 9h-18h)
DEFAULT_DIAS = (1, 2, 3, 4, 5)
DEFAULT_INICIO = time(9, 0)
DEFAULT_FIM = time(18, 0)
DEFAULT_SLOT_MINUTOS = 30

MOTIVO_FORA = "fora_da_disponibilidade"
MOTIVO_BLOQUEADO = "bloqueado"
MOTIVO_OCUPADO = "ocupado"


def dia_semana(value: datetime | date) -> int:
    """0=domingo ... 6=sábado."""
    return value.isoweekday() % 7


def _minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


class AgendaService:
    def __init__(self, *, db: Session, now: Callable[[], datetime] = datetime.utcnow):
        self.db = db
        self.now = now

    def _commit(self, event: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error("agenda_commit_error", event=event, error=str(e))
            raise DependencyError(code="store_unavailable")

    # ===== Disponibilidade =====
    def list_availability(self, agency_id: int) -> List[AgencyAvailability]:
        stmt = (
            select(AgencyAvailability)
            .where(AgencyAvailability.agency_id == agency_id)
            .order_by(AgencyAvailability.dia_semana.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def has_schedule(self, agency_id: Optional[int]) -> bool:
        if agency_id is None:
            return False
        stmt = select(AgencyAvailability.id).where(AgencyAvailability.agency_id == agency_id).limit(1)
        return self.db.execute(stmt).first() is not None

    def set_availability(self, agency_id: int, data: Any) -> AgencyAvailability:
        """Cria ou substitui a janela do dia da semana."""
        payload = parse_model(DisponibilidadeIn, data)
        row = self.db.execute(
            select(AgencyAvailability).where(
                AgencyAvailability.agency_id == agency_id,
                AgencyAvailability.dia_semana == payload.dia_semana,
            )
        ).scalar_one_or_none()
        now = self.now()
        if row is None:
            row = AgencyAvailability(agency_id=agency_id, dia_semana=payload.dia_semana, created_at=now)
            self.db.add(row)
        row.hora_inicio = payload.hora_inicio
        row.hora_fim = payload.hora_fim
        row.duracao_slot_minutos = payload.duracao_slot_minutos
        row.ativo = payload.ativo
        row.updated_at = now
        self._commit("availability_set")
        self.db.refresh(row)

        log.info(
            "agenda_availability_set",
            agency_id=agency_id,
            dia_semana=row.dia_semana,
            hora_inicio=row.hora_inicio.isoformat(),
            hora_fim=row.hora_fim.isoformat(),
            ativo=row.ativo,
        )
        return row

    def remove_availability(self, agency_id: int, dia: int) -> None:
        result = self.db.execute(
            delete(AgencyAvailability).where(
                AgencyAvailability.agency_id == agency_id,
                AgencyAvailability.dia_semana == dia,
            )
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise NotFoundError(f"sem disponibilidade para o dia {dia}", code="disponibilidade_not_found")
        self._commit("availability_removed")
        log.info("agenda_availability_removed", agency_id=agency_id, dia_semana=dia)

    # ===== Bloqueios =====
    def list_blocks(self, agency_id: int, include_past: bool = False) -> List[AgendaBlock]:
        stmt = select(AgendaBlock).where(AgendaBlock.agency_id == agency_id)
        if not include_past:
            # bloqueio cobre o dia inteiro de data_fim
            hoje = datetime.combine(self.now().date(), time.min)
            stmt = stmt.where(AgendaBlock.data_fim >= hoje)
        stmt = stmt.order_by(AgendaBlock.data_inicio.asc(), AgendaBlock.id.asc())
        return list(self.db.execute(stmt).scalars().all())

    def add_block(self, agency_id: int, data: Any) -> AgendaBlock:
        payload = parse_model(BloqueioIn, data)
        block = AgendaBlock(
            agency_id=agency_id,
            data_inicio=to_naive_utc(payload.data_inicio),
            data_fim=to_naive_utc(payload.data_fim),
            motivo=payload.motivo,
            created_at=self.now(),
        )
        self.db.add(block)
        self._commit("block_added")
        self.db.refresh(block)

        log.info(
            "agenda_block_added",
            agency_id=agency_id,
            block_id=block.id,
            data_inicio=block.data_inicio.isoformat(),
            data_fim=block.data_fim.isoformat(),
        )
        return block

    def remove_block(self, agency_id: int, block_id: int) -> None:
        result = self.db.execute(
            delete(AgendaBlock).where(AgendaBlock.id == block_id, AgendaBlock.agency_id == agency_id)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise NotFoundError(f"bloqueio {block_id} não encontrado", code="bloqueio_not_found")
        self._commit("block_removed")
        log.info("agenda_block_removed", agency_id=agency_id, block_id=block_id)

    # ===== Horários =====
    def _booked(self, agency_id: int, exclude_visit_id: Optional[int] = None) -> set:
        stmt = select(Visit.data_confirmada, Visit.opcao_data_1).where(
            Visit.agency_id == agency_id,
            Visit.status.in_(BOOKING_STATUSES),
        )
        if exclude_visit_id is not None:
            stmt = stmt.where(Visit.id != exclude_visit_id)
        # horário efetivo: o confirmado ou, enquanto pendente, a primeira opção
        return {_minute(confirmada or opcao_1) for confirmada, opcao_1 in self.db.execute(stmt).all()}

    @staticmethod
    def _is_blocked(blocks: List[AgendaBlock], day: date) -> bool:
        return any(b.data_inicio.date() <= day <= b.data_fim.date() for b in blocks)

    @staticmethod
    def _day_grid(day: date, inicio: time, fim: time, minutos: int, inclusive: bool = False) -> List[datetime]:
        start = datetime.combine(day, inicio)
        end = datetime.combine(day, fim)
        step = timedelta(minutes=minutos)
        out: List[datetime] = []
        current = start
        while current < end or (inclusive and current == end):
            out.append(current)
            current += step
        return out

    def check_slot(self, agency_id: Optional[int], slot: datetime, *, exclude_visit_id: Optional[int] = None) -> None:
        """Rejeita horário fora da agenda configurada, em dia bloqueado ou já ocupado."""
        if not self.has_schedule(agency_id):
            return
        slot = to_naive_utc(slot)
        configs = {c.dia_semana: c for c in self.list_availability(agency_id) if c.ativo}
        config = configs.get(dia_semana(slot))

        motivo = None
        if config is None or _minute(slot) not in self._day_grid(
            slot.date(), config.hora_inicio, config.hora_fim, config.duracao_slot_minutos
        ):
            motivo = MOTIVO_FORA
        elif self._is_blocked(self.list_blocks(agency_id, include_past=True), slot.date()):
            motivo = MOTIVO_BLOQUEADO
        elif _minute(slot) in self._booked(agency_id, exclude_visit_id):
            motivo = MOTIVO_OCUPADO

        if motivo is not None:
            log.info("agenda_slot_rejected", agency_id=agency_id, slot=slot.isoformat(), motivo=motivo)
            raise ValidationError(
                "o horário escolhido não está disponível na agenda da imobiliária",
                code="slot_indisponivel",
                details={"slot": slot.isoformat(), "motivo": motivo},
            )

    def available_slots(self, agency_id: int, day: date) -> List[datetime]:
        """Horários livres do dia; sem agenda configurada devolve a grade padrão."""
        now = self.now()
        if not self.has_schedule(agency_id):
            if dia_semana(day) not in DEFAULT_DIAS:
                return []
            grid = self._day_grid(day, DEFAULT_INICIO, DEFAULT_FIM, DEFAULT_SLOT_MINUTOS, inclusive=True)
            return [s for s in grid if s > now]

        config = next((c for c in self.list_availability(agency_id) if c.ativo and c.dia_semana == dia_semana(day)), None)
        if config is None or self._is_blocked(self.list_blocks(agency_id, include_past=True), day):
            return []
        booked = self._booked(agency_id)
        grid = self._day_grid(day, config.hora_inicio, config.hora_fim, config.duracao_slot_minutos)
        return [s for s in grid if s > now and s not in booked]
