from __future__ import annotations
from datetime import datetime, time
from enum import Enum
from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Boolean,
    JSON,
    Index,
    Float,
    Text,
    Time,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.repositories.db import Base


class VisitStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    realized = "realized"
    cancelled = "cancelled"
    rescheduled = "rescheduled"


class FeedbackStatus(str, Enum):
    aguardando_corretor = "aguardando_corretor"
    aguardando_cliente = "aguardando_cliente"
    completo = "completo"
    arquivado = "arquivado"


class FeedbackPolicy(str, Enum):
    """Quem preenche primeiro o feedback após a visita realizada."""

    agent_first = "agent_first"
    client_first = "client_first"


class QualificacaoLead(str, Enum):
    quente = "quente"
    morno = "morno"
    frio = "frio"


class PoderDecisao(str, Enum):
    total = "total"
    parcial = "parcial"
    nenhum = "nenhum"


class PrazoCompra(str, Enum):
    ate_3_meses = "0-3_meses"
    de_3_a_6_meses = "3-6_meses"
    de_6_a_12_meses = "6-12_meses"
    acima_12_meses = "acima_12_meses"
    indefinido = "indefinido"


class InteresseCompra(str, Enum):
    muito_interessado = "muito_interessado"
    interessado = "interessado"
    pouco_interessado = "pouco_interessado"
    sem_interesse = "sem_interesse"


OBJECOES_VALIDAS = frozenset(
    {"preco_alto", "localizacao", "tamanho", "acabamento", "layout", "infraestrutura", "outro"}
)

# Status a partir dos quais a visita ainda aceita confirmação/cancelamento
VISIT_OPEN_STATUSES = (VisitStatus.pending, VisitStatus.rescheduled)
VISIT_CANCELLABLE_STATUSES = (VisitStatus.pending, VisitStatus.confirmed, VisitStatus.rescheduled)
FEEDBACK_ARCHIVABLE_STATUSES = (
    FeedbackStatus.aguardando_corretor,
    FeedbackStatus.aguardando_cliente,
    FeedbackStatus.completo,
)


class Visit(Base):
    __tablename__ = "re_visits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    lead_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    property_id: Mapped[int] = mapped_column(Integer, index=True)
    # None = canal direto (sem imobiliária parceira)
    agency_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    construtora_id: Mapped[int] = mapped_column(Integer, index=True)

    cliente_nome: Mapped[str] = mapped_column(String(160))
    cliente_email: Mapped[str] = mapped_column(String(160))
    cliente_telefone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    imovel_titulo: Mapped[str | None] = mapped_column(String(180), nullable=True)
    agency_email: Mapped[str | None] = mapped_column(String(160), nullable=True)

    opcao_data_1: Mapped[datetime] = mapped_column(DateTime)
    opcao_data_2: Mapped[datetime] = mapped_column(DateTime)
    data_confirmada: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    status: Mapped[VisitStatus] = mapped_column(SAEnum(VisitStatus), default=VisitStatus.pending, index=True)
    motivo_cancelamento: Mapped[str | None] = mapped_column(Text, nullable=True)
    observacoes: Mapped[str | None] = mapped_column(Text, nullable=True)

    corretor_nome: Mapped[str | None] = mapped_column(String(160), nullable=True)
    corretor_email: Mapped[str | None] = mapped_column(String(160), nullable=True)

    lembrete_24h_enviado: Mapped[bool] = mapped_column(Boolean, default=False)
    # rodada de agendamento; compõe as chaves do outbox de confirmação e lembrete
    reagendamentos: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    realized_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rescheduled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    feedback: Mapped[VisitFeedback | None] = relationship(back_populates="visit", uselist=False)  # type: ignore

    __table_args__ = (
        Index("idx_re_visits_agency_status", "agency_id", "status"),
        Index("idx_re_visits_construtora_status", "construtora_id", "status"),
    )


class VisitFeedback(Base):
    __tablename__ = "re_visit_feedbacks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    visit_id: Mapped[int] = mapped_column(ForeignKey("re_visits.id"), index=True)

    lead_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    property_id: Mapped[int] = mapped_column(Integer, index=True)
    agency_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    construtora_id: Mapped[int] = mapped_column(Integer, index=True)

    data_visita: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cliente_nome: Mapped[str] = mapped_column(String(160))
    cliente_email: Mapped[str] = mapped_column(String(160))
    cliente_telefone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    imovel_titulo: Mapped[str | None] = mapped_column(String(180), nullable=True)
    agency_email: Mapped[str | None] = mapped_column(String(160), nullable=True)
    corretor_nome: Mapped[str | None] = mapped_column(String(160), nullable=True)
    corretor_email: Mapped[str | None] = mapped_column(String(160), nullable=True)

    token_acesso_cliente: Mapped[str] = mapped_column(String(64))
    politica: Mapped[FeedbackPolicy] = mapped_column(SAEnum(FeedbackPolicy))
    status: Mapped[FeedbackStatus] = mapped_column(SAEnum(FeedbackStatus), index=True)

    # Seção do corretor
    duracao_minutos: Mapped[int | None] = mapped_column(Integer, nullable=True)
    qualificacao_lead: Mapped[QualificacaoLead | None] = mapped_column(SAEnum(QualificacaoLead), nullable=True)
    poder_decisao: Mapped[PoderDecisao | None] = mapped_column(SAEnum(PoderDecisao), nullable=True)
    poder_decisao_detalhes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # valores como "0-3_meses" não são identificadores; guardamos o valor textual
    prazo_compra: Mapped[str | None] = mapped_column(String(16), nullable=True)
    orcamento_disponivel: Mapped[float | None] = mapped_column(Float, nullable=True)
    forma_pagamento_pretendida: Mapped[str | None] = mapped_column(String(120), nullable=True)
    observacoes_corretor: Mapped[str | None] = mapped_column(Text, nullable=True)
    proximos_passos: Mapped[str | None] = mapped_column(Text, nullable=True)
    necessita_followup: Mapped[bool] = mapped_column(Boolean, default=False)
    data_followup: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    score_lead: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    assinatura_corretor: Mapped[str | None] = mapped_column(Text, nullable=True)
    assinatura_corretor_data: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    assinatura_corretor_device: Mapped[str | None] = mapped_column(String(300), nullable=True)
    assinatura_corretor_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    feedback_corretor_em: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Seção do cliente
    nps_cliente: Mapped[int | None] = mapped_column(Integer, nullable=True)
    avaliacao_localizacao: Mapped[int | None] = mapped_column(Integer, nullable=True)
    avaliacao_acabamento: Mapped[int | None] = mapped_column(Integer, nullable=True)
    avaliacao_layout: Mapped[int | None] = mapped_column(Integer, nullable=True)
    avaliacao_custo_beneficio: Mapped[int | None] = mapped_column(Integer, nullable=True)
    avaliacao_atendimento: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pontos_positivos: Mapped[str | None] = mapped_column(Text, nullable=True)
    pontos_negativos: Mapped[str | None] = mapped_column(Text, nullable=True)
    sugestoes: Mapped[str | None] = mapped_column(Text, nullable=True)
    interesse_compra: Mapped[InteresseCompra | None] = mapped_column(SAEnum(InteresseCompra), nullable=True)
    objecoes: Mapped[list | None] = mapped_column(JSON, default=None)
    objecoes_detalhes: Mapped[str | None] = mapped_column(Text, nullable=True)
    assinatura_cliente: Mapped[str | None] = mapped_column(Text, nullable=True)
    assinatura_cliente_data: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    assinatura_cliente_device: Mapped[str | None] = mapped_column(String(300), nullable=True)
    assinatura_cliente_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    feedback_cliente_em: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Relatório
    pdf_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    pdf_gerado_em: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    documento_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    followup_enviado_cliente: Mapped[bool] = mapped_column(Boolean, default=False)
    followup_enviado_corretor: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completo_em: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    arquivado_em: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    visit: Mapped[Visit] = relationship(back_populates="feedback")

    __table_args__ = (
        Index("uix_re_visit_feedbacks_visit", "visit_id", unique=True),
        Index("uix_re_visit_feedbacks_token", "token_acesso_cliente", unique=True),
        Index("idx_re_visit_feedbacks_agency_status", "agency_id", "status"),
    )

    @property
    def has_agent_section(self) -> bool:
        return self.feedback_corretor_em is not None

    @property
    def has_client_section(self) -> bool:
        return self.feedback_cliente_em is not None


class OutboxKind(str, Enum):
    notify = "notify"
    report = "report"


class OutboxStatus(str, Enum):
    pending = "pending"
    sent = "sent"
    failed = "failed"


class DispatchOutbox(Base):
    """Efeitos colaterais pendentes (notificações e relatórios), gravados na mesma transação da mudança de status."""

    __tablename__ = "re_dispatch_outbox"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[OutboxKind] = mapped_column(SAEnum(OutboxKind), index=True)
    template: Mapped[str | None] = mapped_column(String(64), nullable=True)
    recipient_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    recipient_email: Mapped[str | None] = mapped_column(String(160), nullable=True)
    visit_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    feedback_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    payload: Mapped[dict | None] = mapped_column(JSON, default=None)

    status: Mapped[OutboxStatus] = mapped_column(SAEnum(OutboxStatus), default=OutboxStatus.pending, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(160))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("uix_re_dispatch_outbox_key", "idempotency_key", unique=True),
    )


class AgencyAvailability(Base):
    """Janela semanal de atendimento da imobiliária (0=domingo ... 6=sábado)."""

    __tablename__ = "re_agency_availability"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agency_id: Mapped[int] = mapped_column(Integer, index=True)
    dia_semana: Mapped[int] = mapped_column(Integer)
    hora_inicio: Mapped[time] = mapped_column(Time)
    hora_fim: Mapped[time] = mapped_column(Time)
    duracao_slot_minutos: Mapped[int] = mapped_column(Integer, default=60)
    ativo: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("uix_re_agency_availability_dia", "agency_id", "dia_semana", unique=True),
    )


class AgendaBlock(Base):
    """Período sem visitas; bloqueia os dias inteiros de data_inicio a data_fim."""

    __tablename__ = "re_agenda_blocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agency_id: Mapped[int] = mapped_column(Integer, index=True)
    data_inicio: Mapped[datetime] = mapped_column(DateTime)
    data_fim: Mapped[datetime] = mapped_column(DateTime, index=True)
    motivo: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
