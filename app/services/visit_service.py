"""
Serviço para gerenciar o ciclo de vida das visitas.

pending -> confirmed -> realized | cancelled, com remarcação
(confirmed -> rescheduled, que volta a aceitar confirmação).
Toda transição é um UPDATE condicional no status atual.
"""
from __future__ import annotations

import re
import secrets
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.domain.visits.errors import DependencyError, InvalidStateError, NotFoundError, ValidationError
from app.domain.visits.models import (
    FeedbackPolicy,
    FeedbackStatus,
    Visit,
    VisitFeedback,
    VisitStatus,
    VISIT_CANCELLABLE_STATUSES,
    VISIT_OPEN_STATUSES,
)
from app.domain.visits.schemas import CorretorIn, VisitaCriar, to_naive_utc
from app.domain.visits.validation import parse_model
from app.services.agenda_service import AgendaService
from app.services.dispatch_service import OutboxDispatcher, commit_with_outbox

log = structlog.get_logger()

STATUS_MESSAGES = {
    VisitStatus.pending: "a visita ainda está pendente de confirmação",
    VisitStatus.confirmed: "a visita já foi confirmada",
    VisitStatus.realized: "a visita já foi realizada",
    VisitStatus.cancelled: "a visita já foi cancelada",
    VisitStatus.rescheduled: "a visita foi remarcada e aguarda nova confirmação",
}


def public_feedback_link(token: str) -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/public/feedback/{token}"


class VisitService:
    """Serviço para criar e conduzir agendamentos de visitas."""

    def __init__(
        self,
        *,
        db: Session,
        dispatcher: Optional[OutboxDispatcher] = None,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.dispatcher = dispatcher or OutboxDispatcher()
        self.now = now
        self.agenda = AgendaService(db=db, now=now)

    # ===== Leitura =====
    def get_visit(self, visit_id: int) -> Visit:
        visit = self.db.get(Visit, visit_id)
        if visit is None:
            raise NotFoundError(f"visita {visit_id} não encontrada", code="visit_not_found")
        return visit

    def list_visits(
        self,
        *,
        status: Optional[VisitStatus] = None,
        agency_id: Optional[int] = None,
        construtora_id: Optional[int] = None,
        property_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Visit]:
        stmt = select(Visit)
        if status:
            stmt = stmt.where(Visit.status == status)
        if agency_id is not None:
            stmt = stmt.where(Visit.agency_id == agency_id)
        if construtora_id is not None:
            stmt = stmt.where(Visit.construtora_id == construtora_id)
        if property_id is not None:
            stmt = stmt.where(Visit.property_id == property_id)
        stmt = stmt.order_by(Visit.created_at.desc(), Visit.id.desc()).limit(limit).offset(offset)
        return list(self.db.execute(stmt).scalars().all())

    # ===== Validações =====
    @staticmethod
    def validate_phone(text: str) -> Tuple[bool, Optional[str]]:
        """
        Valida e formata número de telefone brasileiro.

        Returns:
            (is_valid, formatted_phone)
        """
        digits = re.sub(r"\D", "", text)

        # Aceitar formatos: 11964442592, 5511964442592, +5511964442592
        if len(digits) == 11:  # DDD + número
            return (True, digits)
        elif len(digits) == 13 and digits.startswith("55"):  # +55 DDD número
            return (True, digits[2:])
        elif len(digits) == 10:  # DDD + número sem 9
            return (True, digits)
        else:
            return (False, None)

    def _validate_slots(self, slot_a: datetime, slot_b: datetime) -> Tuple[datetime, datetime]:
        a, b = to_naive_utc(slot_a), to_naive_utc(slot_b)
        now = self.now()
        if a == b:
            raise ValidationError("as duas opções de horário devem ser diferentes", code="slots_iguais")
        if a <= now or b <= now:
            raise ValidationError("as opções de horário devem estar no futuro", code="slot_no_passado")
        return a, b

    def _agent_snapshot(self, visit: Visit, corretor: Any) -> Dict[str, Any]:
        """Corretor registrado uma única vez; valor diferente depois é rejeitado."""
        if corretor is None:
            return {}
        data = parse_model(CorretorIn, corretor)
        if visit.corretor_nome is None:
            return {"corretor_nome": data.nome, "corretor_email": data.email}
        same_email = data.email is None or data.email == visit.corretor_email
        if data.nome != visit.corretor_nome or not same_email:
            raise ValidationError(
                "o corretor desta visita já foi registrado",
                code="corretor_ja_registrado",
                details={"corretor_nome": visit.corretor_nome},
            )
        return {}

    def _transition(
        self,
        visit_id: int,
        expected: Iterable[VisitStatus],
        values: Dict[str, Any],
        conditions: Iterable[Any] = (),
    ) -> None:
        expected = tuple(expected)
        stmt = (
            update(Visit)
            .where(Visit.id == visit_id, Visit.status.in_(expected), *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error("visit_transition_store_error", visit_id=visit_id, error=str(e))
            raise DependencyError(code="store_unavailable")
        if result.rowcount != 1:
            self.db.rollback()
            current = self.db.get(Visit, visit_id)
            if current is None:
                raise NotFoundError(f"visita {visit_id} não encontrada", code="visit_not_found")
            self.db.refresh(current)
            raise self._state_error(current)

    @staticmethod
    def _state_error(visit: Visit) -> InvalidStateError:
        return InvalidStateError(
            STATUS_MESSAGES.get(visit.status, "operação inválida para o status atual"),
            code=f"visit_{visit.status.value}",
            details={"status": visit.status.value},
        )

    def _visit_payload(self, visit: Visit) -> Dict[str, Any]:
        return {
            "visit_id": visit.id,
            "cliente_nome": visit.cliente_nome,
            "imovel_titulo": visit.imovel_titulo,
            "corretor_nome": visit.corretor_nome,
            "data_confirmada": visit.data_confirmada.strftime("%d/%m/%Y %H:%M") if visit.data_confirmada else None,
        }

    # ===== Transições =====
    def propose_visit(self, data: Any) -> Visit:
        payload = parse_model(VisitaCriar, data)
        slot_a, slot_b = self._validate_slots(payload.opcao_data_1, payload.opcao_data_2)

        telefone = None
        if payload.cliente_telefone:
            ok, telefone = self.validate_phone(payload.cliente_telefone)
            if not ok:
                raise ValidationError("telefone inválido", code="telefone_invalido")
        for slot in (slot_a, slot_b):
            self.agenda.check_slot(payload.agency_id, slot)

        now = self.now()
        visit = Visit(
            lead_id=payload.lead_id,
            property_id=payload.property_id,
            agency_id=payload.agency_id,
            construtora_id=payload.construtora_id,
            cliente_nome=payload.cliente_nome,
            cliente_email=payload.cliente_email,
            cliente_telefone=telefone,
            imovel_titulo=payload.imovel_titulo,
            agency_email=payload.agency_email,
            opcao_data_1=slot_a,
            opcao_data_2=slot_b,
            observacoes=payload.observacoes,
            status=VisitStatus.pending,
            lembrete_24h_enviado=False,
            reagendamentos=0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(visit)
        commit_with_outbox(self.db, self.dispatcher, [], "visit_proposed")
        self.db.refresh(visit)

        log.info(
            "visit_proposed",
            visit_id=visit.id,
            lead_id=visit.lead_id,
            property_id=visit.property_id,
            agency_id=visit.agency_id,
        )
        return visit

    def confirm_visit(self, visit_id: int, chosen_slot: datetime, corretor: Any = None) -> Visit:
        visit = self.get_visit(visit_id)
        if visit.status not in VISIT_OPEN_STATUSES:
            raise self._state_error(visit)

        slot = to_naive_utc(chosen_slot)
        if slot not in (visit.opcao_data_1, visit.opcao_data_2):
            raise ValidationError(
                "o horário escolhido não é uma das opções oferecidas",
                code="slot_nao_oferecido",
                details={"opcoes": [visit.opcao_data_1.isoformat(), visit.opcao_data_2.isoformat()]},
            )

        now = self.now()
        values: Dict[str, Any] = {
            "status": VisitStatus.confirmed,
            "data_confirmada": slot,
            "confirmed_at": now,
            "updated_at": now,
        }
        values.update(self._agent_snapshot(visit, corretor))
        # a rodada lida ainda precisa ser a atual
        self._transition(visit_id, VISIT_OPEN_STATUSES, values, [Visit.reagendamentos == visit.reagendamentos])

        payload = self._visit_payload(visit)
        payload.update(
            data_confirmada=slot.strftime("%d/%m/%Y %H:%M"),
            corretor_nome=values.get("corretor_nome") or visit.corretor_nome,
        )
        row = self.dispatcher.stage_notification(
            self.db,
            template="visit_confirmed",
            recipient_role="cliente",
            recipient_email=visit.cliente_email,
            visit_id=visit_id,
            payload=payload,
            key=f"visit:{visit_id}:confirmed:{visit.reagendamentos}",
        )
        commit_with_outbox(self.db, self.dispatcher, [row], "visit_confirmed")

        log.info("visit_confirmed", visit_id=visit_id, data_confirmada=slot.isoformat())
        return self.get_visit(visit_id)

    def cancel_visit(self, visit_id: int, reason: Optional[str]) -> Visit:
        motivo = (reason or "").strip()
        if not motivo:
            raise ValidationError("o motivo do cancelamento é obrigatório", code="motivo_obrigatorio")

        visit = self.get_visit(visit_id)
        if visit.status not in VISIT_CANCELLABLE_STATUSES:
            raise self._state_error(visit)

        now = self.now()
        self._transition(
            visit_id,
            VISIT_CANCELLABLE_STATUSES,
            {
                "status": VisitStatus.cancelled,
                "motivo_cancelamento": motivo,
                "cancelled_at": now,
                "updated_at": now,
            },
        )
        payload = self._visit_payload(visit)
        payload["motivo"] = motivo
        row = self.dispatcher.stage_notification(
            self.db,
            template="visit_cancelled",
            recipient_role="cliente",
            recipient_email=visit.cliente_email,
            visit_id=visit_id,
            payload=payload,
            key=f"visit:{visit_id}:cancelled",
        )
        commit_with_outbox(self.db, self.dispatcher, [row], "visit_cancelled")

        log.info("visit_cancelled", visit_id=visit_id, reason=motivo)
        return self.get_visit(visit_id)

    def reschedule_visit(self, visit_id: int, slot_a: datetime, slot_b: datetime) -> Visit:
        visit = self.get_visit(visit_id)
        if visit.status != VisitStatus.confirmed:
            raise self._state_error(visit)
        a, b = self._validate_slots(slot_a, slot_b)
        for slot in (a, b):
            self.agenda.check_slot(visit.agency_id, slot, exclude_visit_id=visit_id)

        now = self.now()
        self._transition(
            visit_id,
            (VisitStatus.confirmed,),
            {
                "status": VisitStatus.rescheduled,
                "opcao_data_1": a,
                "opcao_data_2": b,
                "data_confirmada": None,
                "confirmed_at": None,
                "lembrete_24h_enviado": False,
                "reagendamentos": Visit.reagendamentos + 1,
                "rescheduled_at": now,
                "updated_at": now,
            },
        )
        commit_with_outbox(self.db, self.dispatcher, [], "visit_rescheduled")

        log.info("visit_rescheduled", visit_id=visit_id, opcao_data_1=a.isoformat(), opcao_data_2=b.isoformat())
        return self.get_visit(visit_id)

    def realize_visit(
        self,
        visit_id: int,
        policy: FeedbackPolicy | str | None = None,
        corretor: Any = None,
    ) -> VisitFeedback:
        """
        Marca a visita como realizada e cria o único feedback dela.

        Transição, feedback e outbox entram no mesmo commit.
        """
        try:
            politica = FeedbackPolicy(policy or settings.FEEDBACK_POLICY_DEFAULT)
        except ValueError:
            raise ValidationError(f"política de feedback inválida: {policy!r}", code="politica_invalida")

        visit = self.get_visit(visit_id)
        if visit.status != VisitStatus.confirmed:
            raise self._state_error(visit)
        snapshot = self._agent_snapshot(visit, corretor)

        now = self.now()
        values: Dict[str, Any] = {"status": VisitStatus.realized, "realized_at": now, "updated_at": now}
        values.update(snapshot)
        self._transition(visit_id, (VisitStatus.confirmed,), values)

        initial = (
            FeedbackStatus.aguardando_corretor
            if politica == FeedbackPolicy.agent_first
            else FeedbackStatus.aguardando_cliente
        )
        feedback = VisitFeedback(
            visit_id=visit.id,
            lead_id=visit.lead_id,
            property_id=visit.property_id,
            agency_id=visit.agency_id,
            construtora_id=visit.construtora_id,
            data_visita=visit.data_confirmada or now,
            cliente_nome=visit.cliente_nome,
            cliente_email=visit.cliente_email,
            cliente_telefone=visit.cliente_telefone,
            imovel_titulo=visit.imovel_titulo,
            agency_email=visit.agency_email,
            corretor_nome=snapshot.get("corretor_nome") or visit.corretor_nome,
            corretor_email=snapshot.get("corretor_email") or visit.corretor_email,
            token_acesso_cliente=secrets.token_urlsafe(32),
            politica=politica,
            status=initial,
            necessita_followup=False,
            followup_enviado_cliente=False,
            followup_enviado_corretor=False,
            created_at=now,
            updated_at=now,
        )
        rows = []
        try:
            self.db.add(feedback)
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            log.warning("visit_feedback_duplicate", visit_id=visit_id)
            raise InvalidStateError("a visita já possui feedback", code="visit_realized")
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error("visit_feedback_store_error", visit_id=visit_id, error=str(e))
            raise DependencyError(code="store_unavailable")

        if politica == FeedbackPolicy.client_first:
            rows.append(
                self.dispatcher.stage_notification(
                    self.db,
                    template="feedback_request",
                    recipient_role="cliente",
                    recipient_email=feedback.cliente_email,
                    visit_id=visit.id,
                    feedback_id=feedback.id,
                    payload={
                        "feedback_id": feedback.id,
                        "cliente_nome": feedback.cliente_nome,
                        "imovel_titulo": feedback.imovel_titulo,
                        "corretor_nome": feedback.corretor_nome,
                        "link": public_feedback_link(feedback.token_acesso_cliente),
                    },
                    key=f"feedback:{feedback.id}:request",
                )
            )
        commit_with_outbox(self.db, self.dispatcher, rows, "visit_realized")

        log.info(
            "visit_realized",
            visit_id=visit_id,
            feedback_id=feedback.id,
            politica=politica.value,
            feedback_status=initial.value,
        )
        self.db.refresh(feedback)
        return feedback
