"""add re_visits, re_visit_feedbacks, re_dispatch_outbox and agency agenda tables

Revision ID: e4b7c2d9a1f0
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "e4b7c2d9a1f0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

VISIT_STATUS = sa.Enum("pending", "confirmed", "realized", "cancelled", "rescheduled", name="visitstatus")
FEEDBACK_STATUS = sa.Enum("aguardando_corretor", "aguardando_cliente", "completo", "arquivado", name="feedbackstatus")
FEEDBACK_POLICY = sa.Enum("agent_first", "client_first", name="feedbackpolicy")
QUALIFICACAO = sa.Enum("quente", "morno", "frio", name="qualificacaolead")
PODER_DECISAO = sa.Enum("total", "parcial", "nenhum", name="poderdecisao")
INTERESSE = sa.Enum("muito_interessado", "interessado", "pouco_interessado", "sem_interesse", name="interessecompra")
OUTBOX_KIND = sa.Enum("notify", "report", name="outboxkind")
OUTBOX_STATUS = sa.Enum("pending", "sent", "failed", name="outboxstatus")


def upgrade() -> None:
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing = set(insp.get_table_names())

    if "re_visits" not in existing:
        op.create_table(
            "re_visits",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("lead_id", sa.Integer(), nullable=True, index=True),
            sa.Column("property_id", sa.Integer(), nullable=False, index=True),
            sa.Column("agency_id", sa.Integer(), nullable=True, index=True),
            sa.Column("construtora_id", sa.Integer(), nullable=False, index=True),
            sa.Column("cliente_nome", sa.String(length=160), nullable=False),
            sa.Column("cliente_email", sa.String(length=160), nullable=False),
            sa.Column("cliente_telefone", sa.String(length=32), nullable=True),
            sa.Column("imovel_titulo", sa.String(length=180), nullable=True),
            sa.Column("agency_email", sa.String(length=160), nullable=True),
            sa.Column("opcao_data_1", sa.DateTime(), nullable=False),
            sa.Column("opcao_data_2", sa.DateTime(), nullable=False),
            sa.Column("data_confirmada", sa.DateTime(), nullable=True, index=True),
            sa.Column("status", VISIT_STATUS, nullable=False, server_default="pending", index=True),
            sa.Column("motivo_cancelamento", sa.Text(), nullable=True),
            sa.Column("observacoes", sa.Text(), nullable=True),
            sa.Column("corretor_nome", sa.String(length=160), nullable=True),
            sa.Column("corretor_email", sa.String(length=160), nullable=True),
            sa.Column("lembrete_24h_enviado", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("reagendamentos", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.Column("confirmed_at", sa.DateTime(), nullable=True),
            sa.Column("realized_at", sa.DateTime(), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(), nullable=True),
            sa.Column("rescheduled_at", sa.DateTime(), nullable=True),
        )
        op.create_index("idx_re_visits_agency_status", "re_visits", ["agency_id", "status"])
        op.create_index("idx_re_visits_construtora_status", "re_visits", ["construtora_id", "status"])

    if "re_visit_feedbacks" not in existing:
        op.create_table(
            "re_visit_feedbacks",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("visit_id", sa.Integer(), sa.ForeignKey("re_visits.id"), nullable=False),
            sa.Column("lead_id", sa.Integer(), nullable=True, index=True),
            sa.Column("property_id", sa.Integer(), nullable=False, index=True),
            sa.Column("agency_id", sa.Integer(), nullable=True, index=True),
            sa.Column("construtora_id", sa.Integer(), nullable=False, index=True),
            sa.Column("data_visita", sa.DateTime(), nullable=True),
            sa.Column("cliente_nome", sa.String(length=160), nullable=False),
            sa.Column("cliente_email", sa.String(length=160), nullable=False),
            sa.Column("cliente_telefone", sa.String(length=32), nullable=True),
            sa.Column("imovel_titulo", sa.String(length=180), nullable=True),
            sa.Column("agency_email", sa.String(length=160), nullable=True),
            sa.Column("corretor_nome", sa.String(length=160), nullable=True),
            sa.Column("corretor_email", sa.String(length=160), nullable=True),
            sa.Column("token_acesso_cliente", sa.String(length=64), nullable=False),
            sa.Column("politica", FEEDBACK_POLICY, nullable=False),
            sa.Column("status", FEEDBACK_STATUS, nullable=False, index=True),
            # seção do corretor
            sa.Column("duracao_minutos", sa.Integer(), nullable=True),
            sa.Column("qualificacao_lead", QUALIFICACAO, nullable=True),
            sa.Column("poder_decisao", PODER_DECISAO, nullable=True),
            sa.Column("poder_decisao_detalhes", sa.Text(), nullable=True),
            sa.Column("prazo_compra", sa.String(length=16), nullable=True),
            sa.Column("orcamento_disponivel", sa.Float(), nullable=True),
            sa.Column("forma_pagamento_pretendida", sa.String(length=120), nullable=True),
            sa.Column("observacoes_corretor", sa.Text(), nullable=True),
            sa.Column("proximos_passos", sa.Text(), nullable=True),
            sa.Column("necessita_followup", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("data_followup", sa.DateTime(), nullable=True),
            sa.Column("score_lead", sa.Integer(), nullable=True, index=True),
            sa.Column("assinatura_corretor", sa.Text(), nullable=True),
            sa.Column("assinatura_corretor_data", sa.DateTime(), nullable=True),
            sa.Column("assinatura_corretor_device", sa.String(length=300), nullable=True),
            sa.Column("assinatura_corretor_ip", sa.String(length=64), nullable=True),
            sa.Column("feedback_corretor_em", sa.DateTime(), nullable=True),
            # seção do cliente
            sa.Column("nps_cliente", sa.Integer(), nullable=True),
            sa.Column("avaliacao_localizacao", sa.Integer(), nullable=True),
            sa.Column("avaliacao_acabamento", sa.Integer(), nullable=True),
            sa.Column("avaliacao_layout", sa.Integer(), nullable=True),
            sa.Column("avaliacao_custo_beneficio", sa.Integer(), nullable=True),
            sa.Column("avaliacao_atendimento", sa.Integer(), nullable=True),
            sa.Column("pontos_positivos", sa.Text(), nullable=True),
            sa.Column("pontos_negativos", sa.Text(), nullable=True),
            sa.Column("sugestoes", sa.Text(), nullable=True),
            sa.Column("interesse_compra", INTERESSE, nullable=True),
            sa.Column("objecoes", sa.JSON(), nullable=True),
            sa.Column("objecoes_detalhes", sa.Text(), nullable=True),
            sa.Column("assinatura_cliente", sa.Text(), nullable=True),
            sa.Column("assinatura_cliente_data", sa.DateTime(), nullable=True),
            sa.Column("assinatura_cliente_device", sa.String(length=300), nullable=True),
            sa.Column("assinatura_cliente_ip", sa.String(length=64), nullable=True),
            sa.Column("feedback_cliente_em", sa.DateTime(), nullable=True),
            # relatório
            sa.Column("pdf_url", sa.String(length=500), nullable=True),
            sa.Column("pdf_gerado_em", sa.DateTime(), nullable=True),
            sa.Column("documento_hash", sa.String(length=64), nullable=True),
            sa.Column("followup_enviado_cliente", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("followup_enviado_corretor", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.Column("completo_em", sa.DateTime(), nullable=True),
            sa.Column("arquivado_em", sa.DateTime(), nullable=True),
        )
        op.create_index("uix_re_visit_feedbacks_visit", "re_visit_feedbacks", ["visit_id"], unique=True)
        op.create_index("uix_re_visit_feedbacks_token", "re_visit_feedbacks", ["token_acesso_cliente"], unique=True)
        op.create_index("idx_re_visit_feedbacks_agency_status", "re_visit_feedbacks", ["agency_id", "status"])

    if "re_dispatch_outbox" not in existing:
        op.create_table(
            "re_dispatch_outbox",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("kind", OUTBOX_KIND, nullable=False, index=True),
            sa.Column("template", sa.String(length=64), nullable=True),
            sa.Column("recipient_role", sa.String(length=32), nullable=True),
            sa.Column("recipient_email", sa.String(length=160), nullable=True),
            sa.Column("visit_id", sa.Integer(), nullable=True, index=True),
            sa.Column("feedback_id", sa.Integer(), nullable=True, index=True),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column("status", OUTBOX_STATUS, nullable=False, server_default="pending", index=True),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_error", sa.String(length=2048), nullable=True),
            sa.Column("idempotency_key", sa.String(length=160), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("sent_at", sa.DateTime(), nullable=True),
        )
        op.create_index("uix_re_dispatch_outbox_key", "re_dispatch_outbox", ["idempotency_key"], unique=True)

    if "re_agency_availability" not in existing:
        op.create_table(
            "re_agency_availability",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("agency_id", sa.Integer(), nullable=False, index=True),
            sa.Column("dia_semana", sa.Integer(), nullable=False),
            sa.Column("hora_inicio", sa.Time(), nullable=False),
            sa.Column("hora_fim", sa.Time(), nullable=False),
            sa.Column("duracao_slot_minutos", sa.Integer(), nullable=False, server_default="60"),
            sa.Column("ativo", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
        )
        op.create_index(
            "uix_re_agency_availability_dia", "re_agency_availability", ["agency_id", "dia_semana"], unique=True
        )

    if "re_agenda_blocks" not in existing:
        op.create_table(
            "re_agenda_blocks",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("agency_id", sa.Integer(), nullable=False, index=True),
            sa.Column("data_inicio", sa.DateTime(), nullable=False),
            sa.Column("data_fim", sa.DateTime(), nullable=False, index=True),
            sa.Column("motivo", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        )


def downgrade() -> None:
    op.drop_table("re_agenda_blocks")
    op.drop_table("re_agency_availability")
    op.drop_table("re_dispatch_outbox")
    op.drop_table("re_visit_feedbacks")
    op.drop_table("re_visits")
