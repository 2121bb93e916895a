"""
Serviço do feedback pós-visita em duas seções (corretor e cliente).

A ordem das seções depende da política gravada no registro:
agent_first (corretor -> cliente) ou client_first (cliente -> corretor).
Ao completar, o relatório e os avisos finais vão para o outbox no mesmo commit.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.visits.errors import DependencyError, InvalidStateError, NotFoundError, ValidationError
from app.domain.visits.models import (
    DispatchOutbox,
    FeedbackStatus,
    VisitFeedback,
    FEEDBACK_ARCHIVABLE_STATUSES,
)
from app.domain.visits.schemas import AssinaturaIn, SecaoClienteIn, SecaoCorretorIn
from app.domain.visits.scoring import classificar_nps, score
from app.domain.visits.validation import parse_model
from app.services.dispatch_service import OutboxDispatcher, commit_with_outbox
from app.services.visit_service import public_feedback_link

log = structlog.get_logger()

VIEW_FORMULARIO = "formulario"
VIEW_AGUARDANDO_CORRETOR = "aguardando_corretor"
VIEW_OBRIGADO = "obrigado"


def _parse_assinatura(assinatura: Any) -> AssinaturaIn:
    if assinatura is None:
        raise ValidationError("a assinatura é obrigatória", code="assinatura_obrigatoria")
    if isinstance(assinatura, str):
        assinatura = {"imagem": assinatura}
    return parse_model(AssinaturaIn, assinatura)


class FeedbackService:
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

    # ===== Leitura =====
    def get_feedback(self, feedback_id: int) -> VisitFeedback:
        fb = self.db.get(VisitFeedback, feedback_id)
        if fb is None:
            raise NotFoundError(f"feedback {feedback_id} não encontrado", code="feedback_not_found")
        return fb

    def get_by_token(self, token: str) -> VisitFeedback:
        token = (token or "").strip()
        fb = None
        if token:
            fb = self.db.execute(
                select(VisitFeedback).where(VisitFeedback.token_acesso_cliente == token)
            ).scalar_one_or_none()
        if fb is None:
            raise NotFoundError("link de feedback inválido ou expirado", code="token_not_found")
        return fb

    def list_feedbacks(
        self,
        *,
        status: Optional[FeedbackStatus] = None,
        agency_id: Optional[int] = None,
        construtora_id: Optional[int] = None,
        property_id: Optional[int] = None,
        score_min: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[VisitFeedback]:
        stmt = select(VisitFeedback)
        if status:
            stmt = stmt.where(VisitFeedback.status == status)
        if agency_id is not None:
            stmt = stmt.where(VisitFeedback.agency_id == agency_id)
        if construtora_id is not None:
            stmt = stmt.where(VisitFeedback.construtora_id == construtora_id)
        if property_id is not None:
            stmt = stmt.where(VisitFeedback.property_id == property_id)
        if score_min is not None:
            stmt = stmt.where(VisitFeedback.score_lead >= score_min)
        stmt = stmt.order_by(VisitFeedback.created_at.desc(), VisitFeedback.id.desc()).limit(limit).offset(offset)
        return list(self.db.execute(stmt).scalars().all())

    def get_public_view(self, token: str) -> Dict[str, Any]:
        fb = self.get_by_token(token)
        if fb.status == FeedbackStatus.aguardando_cliente and not fb.has_client_section:
            view = VIEW_FORMULARIO
        elif fb.status == FeedbackStatus.aguardando_corretor:
            view = VIEW_AGUARDANDO_CORRETOR
        else:
            view = VIEW_OBRIGADO
        return {
            "view": view,
            "status": fb.status.value,
            "cliente_nome": fb.cliente_nome,
            "imovel_titulo": fb.imovel_titulo,
            "corretor_nome": fb.corretor_nome,
            "data_visita": fb.data_visita,
        }

    # ===== Helpers =====
    def _conditional_update(self, feedback_id: int, conditions: list, values: Dict[str, Any]) -> None:
        stmt = (
            update(VisitFeedback)
            .where(VisitFeedback.id == feedback_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error("feedback_transition_store_error", feedback_id=feedback_id, error=str(e))
            raise DependencyError(code="store_unavailable")
        if result.rowcount != 1:
            self.db.rollback()
            current = self.db.get(VisitFeedback, feedback_id)
            if current is None:
                raise NotFoundError(f"feedback {feedback_id} não encontrado", code="feedback_not_found")
            self.db.refresh(current)
            log.info("feedback_transition_conflict", feedback_id=feedback_id, status=current.status.value)
            raise InvalidStateError(
                "o feedback foi alterado por outra operação",
                code=f"feedback_{current.status.value}",
                details={"status": current.status.value},
            )

    def _completion_rows(self, fb: VisitFeedback, values: Dict[str, Any]) -> List[Optional[DispatchOutbox]]:
        """Relatório + avisos finais; ``values`` traz os campos recém-gravados."""
        merged = {
            "cliente_nome": fb.cliente_nome,
            "imovel_titulo": fb.imovel_titulo,
            "corretor_nome": fb.corretor_nome,
            "nps_cliente": values.get("nps_cliente", fb.nps_cliente),
            "interesse_compra": values.get("interesse_compra", fb.interesse_compra),
            "score_lead": values.get("score_lead", fb.score_lead),
        }
        interesse = merged["interesse_compra"]
        merged["interesse_compra"] = getattr(interesse, "value", interesse)
        if merged["nps_cliente"] is not None:
            merged["nps_classificacao"] = classificar_nps(merged["nps_cliente"])

        rows: List[Optional[DispatchOutbox]] = [
            self.dispatcher.stage_report(self.db, feedback_id=fb.id, visit_id=fb.visit_id, key=f"feedback:{fb.id}:report"),
            self.dispatcher.stage_notification(
                self.db,
                template="feedback_completed_client",
                recipient_role="cliente",
                recipient_email=fb.cliente_email,
                visit_id=fb.visit_id,
                feedback_id=fb.id,
                payload=merged,
                key=f"feedback:{fb.id}:completed:cliente",
            ),
            self.dispatcher.stage_notification(
                self.db,
                template="feedback_completed_agency",
                recipient_role="imobiliaria",
                recipient_email=fb.agency_email,
                visit_id=fb.visit_id,
                feedback_id=fb.id,
                payload=merged,
                key=f"feedback:{fb.id}:completed:imobiliaria",
            ),
        ]
        return rows

    # ===== Seção do corretor =====
    def submit_agent_section(self, feedback_id: int, agent_data: Any, signature: Any) -> VisitFeedback:
        fb = self.get_feedback(feedback_id)
        if fb.status != FeedbackStatus.aguardando_corretor or fb.has_agent_section:
            raise InvalidStateError(
                "a avaliação do corretor não está disponível para este feedback",
                code="secao_corretor_indisponivel",
                details={"status": fb.status.value},
            )
        secao = parse_model(SecaoCorretorIn, agent_data)
        assinatura = _parse_assinatura(signature)
        score_lead = score(secao)

        now = self.now()
        complete = fb.has_client_section
        next_status = FeedbackStatus.completo if complete else FeedbackStatus.aguardando_cliente
        values: Dict[str, Any] = {
            "duracao_minutos": secao.duracao_minutos,
            "qualificacao_lead": secao.qualificacao_lead,
            "poder_decisao": secao.poder_decisao,
            "poder_decisao_detalhes": secao.poder_decisao_detalhes,
            "prazo_compra": secao.prazo_compra.value,
            "orcamento_disponivel": secao.orcamento_disponivel,
            "forma_pagamento_pretendida": secao.forma_pagamento_pretendida,
            "observacoes_corretor": secao.observacoes_corretor,
            "proximos_passos": secao.proximos_passos,
            "necessita_followup": secao.necessita_followup,
            "data_followup": secao.data_followup,
            "score_lead": score_lead,
            "assinatura_corretor": assinatura.imagem,
            "assinatura_corretor_data": now,
            "assinatura_corretor_device": assinatura.device,
            "assinatura_corretor_ip": assinatura.ip,
            "feedback_corretor_em": now,
            "status": next_status,
            "updated_at": now,
        }
        if complete:
            values["completo_em"] = now
        self._conditional_update(
            feedback_id,
            [
                VisitFeedback.status == FeedbackStatus.aguardando_corretor,
                VisitFeedback.feedback_corretor_em.is_(None),
                VisitFeedback.feedback_cliente_em.isnot(None) if complete else VisitFeedback.feedback_cliente_em.is_(None),
            ],
            values,
        )

        if complete:
            rows = self._completion_rows(fb, values)
        else:
            rows = [
                self.dispatcher.stage_notification(
                    self.db,
                    template="feedback_request",
                    recipient_role="cliente",
                    recipient_email=fb.cliente_email,
                    visit_id=fb.visit_id,
                    feedback_id=fb.id,
                    payload={
                        "feedback_id": fb.id,
                        "cliente_nome": fb.cliente_nome,
                        "imovel_titulo": fb.imovel_titulo,
                        "corretor_nome": fb.corretor_nome,
                        "link": public_feedback_link(fb.token_acesso_cliente),
                    },
                    key=f"feedback:{fb.id}:request",
                )
            ]
        commit_with_outbox(self.db, self.dispatcher, rows, "feedback_agent_submitted")

        log.info(
            "feedback_agent_submitted",
            feedback_id=feedback_id,
            score_lead=score_lead,
            status=next_status.value,
        )
        return self.get_feedback(feedback_id)

    # ===== Seção do cliente =====
    def submit_client_section(self, feedback_id: int, client_data: Any, signature: Any) -> VisitFeedback:
        fb = self.get_feedback(feedback_id)
        if fb.status != FeedbackStatus.aguardando_cliente or fb.has_client_section:
            raise InvalidStateError(
                "a avaliação do cliente não está disponível para este feedback",
                code="secao_cliente_indisponivel",
                details={"status": fb.status.value},
            )
        return self._store_client_section(fb, client_data, signature)

    def submit_client_section_by_token(self, token: str, client_data: Any, signature: Any) -> VisitFeedback:
        fb = self.get_by_token(token)
        if fb.status != FeedbackStatus.aguardando_cliente or fb.has_client_section:
            # link já utilizado: mesma resposta de um token desconhecido
            log.info("feedback_token_consumed", feedback_id=fb.id, status=fb.status.value)
            raise NotFoundError("link de feedback inválido ou expirado", code="token_not_found")
        return self._store_client_section(fb, client_data, signature)

    def _store_client_section(self, fb: VisitFeedback, client_data: Any, signature: Any) -> VisitFeedback:
        secao = parse_model(SecaoClienteIn, client_data)
        assinatura = _parse_assinatura(signature)

        now = self.now()
        complete = fb.has_agent_section
        next_status = FeedbackStatus.completo if complete else FeedbackStatus.aguardando_corretor
        values: Dict[str, Any] = {
            "nps_cliente": secao.nps_cliente,
            "avaliacao_localizacao": secao.avaliacao_localizacao,
            "avaliacao_acabamento": secao.avaliacao_acabamento,
            "avaliacao_layout": secao.avaliacao_layout,
            "avaliacao_custo_beneficio": secao.avaliacao_custo_beneficio,
            "avaliacao_atendimento": secao.avaliacao_atendimento,
            "pontos_positivos": secao.pontos_positivos,
            "pontos_negativos": secao.pontos_negativos,
            "sugestoes": secao.sugestoes,
            "interesse_compra": secao.interesse_compra,
            "objecoes": secao.objecoes,
            "objecoes_detalhes": secao.objecoes_detalhes,
            "assinatura_cliente": assinatura.imagem,
            "assinatura_cliente_data": now,
            "assinatura_cliente_device": assinatura.device,
            "assinatura_cliente_ip": assinatura.ip,
            "feedback_cliente_em": now,
            "status": next_status,
            "updated_at": now,
        }
        if complete:
            values["completo_em"] = now
        self._conditional_update(
            fb.id,
            [
                VisitFeedback.status == FeedbackStatus.aguardando_cliente,
                VisitFeedback.feedback_cliente_em.is_(None),
                VisitFeedback.feedback_corretor_em.isnot(None) if complete else VisitFeedback.feedback_corretor_em.is_(None),
            ],
            values,
        )

        if complete:
            rows = self._completion_rows(fb, values)
        else:
            rows = [
                self.dispatcher.stage_notification(
                    self.db,
                    template="feedback_agent_turn",
                    recipient_role="corretor",
                    recipient_email=fb.corretor_email or fb.agency_email,
                    visit_id=fb.visit_id,
                    feedback_id=fb.id,
                    payload={
                        "feedback_id": fb.id,
                        "cliente_nome": fb.cliente_nome,
                        "imovel_titulo": fb.imovel_titulo,
                        "interesse_compra": secao.interesse_compra.value,
                    },
                    key=f"feedback:{fb.id}:agent_turn",
                )
            ]
        commit_with_outbox(self.db, self.dispatcher, rows, "feedback_client_submitted")

        log.info(
            "feedback_client_submitted",
            feedback_id=fb.id,
            nps=secao.nps_cliente,
            nps_classificacao=classificar_nps(secao.nps_cliente),
            status=next_status.value,
        )
        return self.get_feedback(fb.id)

    # ===== Administração =====
    def archive(self, feedback_id: int) -> VisitFeedback:
        fb = self.get_feedback(feedback_id)
        if fb.status not in FEEDBACK_ARCHIVABLE_STATUSES:
            raise InvalidStateError("o feedback já está arquivado", code="feedback_arquivado")
        previous = fb.status

        now = self.now()
        self._conditional_update(
            feedback_id,
            [VisitFeedback.status.in_(FEEDBACK_ARCHIVABLE_STATUSES)],
            {"status": FeedbackStatus.arquivado, "arquivado_em": now, "updated_at": now},
        )
        commit_with_outbox(self.db, self.dispatcher, [], "feedback_archived")

        log.info("feedback_archived", feedback_id=feedback_id, previous_status=previous.value)
        return self.get_feedback(feedback_id)

    def request_report_regeneration(self, feedback_id: int) -> DispatchOutbox:
        """Enfileira nova geração do relatório de um feedback completo."""
        fb = self.get_feedback(feedback_id)
        if not (fb.has_agent_section and fb.has_client_section):
            raise InvalidStateError("o feedback ainda não está completo", code="feedback_incompleto")

        now = self.now()
        row = self.dispatcher.stage_report(
            self.db,
            feedback_id=fb.id,
            visit_id=fb.visit_id,
            key=f"feedback:{fb.id}:report:{now.isoformat()}",
        )
        commit_with_outbox(self.db, self.dispatcher, [row], "feedback_report_requested")
        log.info("feedback_report_requested", feedback_id=fb.id, outbox_id=row.id)
        return row
