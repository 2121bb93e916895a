from __future__ import annotations
from typing import Any, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationInfo
from pydantic.functional_validators import field_validator
from datetime import datetime, time, timezone
from app.domain.visits.models import (
    FeedbackPolicy,
    FeedbackStatus,
    InteresseCompra,
    OBJECOES_VALIDAS,
    PoderDecisao,
    PrazoCompra,
    QualificacaoLead,
    VisitStatus,
)


OBSERVACOES_MIN_LEN = 10


def _strip_or_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v2 = str(v).strip()
    return v2 or None


def to_naive_utc(v: datetime) -> datetime:
    if v.tzinfo is not None:
        return v.astimezone(timezone.utc).replace(tzinfo=None)
    return v


# ===== Visita =====
class CorretorIn(BaseModel):
    nome: str
    email: Optional[str] = None

    @field_validator("nome")
    @classmethod
    def _vl_nome(cls, v: str) -> str:
        v2 = (v or "").strip()
        if not v2:
            raise ValueError("corretor_nome_obrigatorio")
        return v2

    @field_validator("email")
    @classmethod
    def _vl_email(cls, v: Optional[str]) -> Optional[str]:
        v2 = _strip_or_none(v)
        if v2 is not None and "@" not in v2:
            raise ValueError("corretor_email_invalido")
        return v2.lower() if v2 else None


class VisitaCriar(BaseModel):
    lead_id: Optional[int] = None
    property_id: int
    agency_id: Optional[int] = None
    construtora_id: int
    cliente_nome: str
    cliente_email: str
    cliente_telefone: Optional[str] = None
    imovel_titulo: Optional[str] = None
    agency_email: Optional[str] = None
    opcao_data_1: datetime
    opcao_data_2: datetime
    observacoes: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "lead_id": 10,
                    "property_id": 3,
                    "agency_id": 7,
                    "construtora_id": 1,
                    "cliente_nome": "Maria Souza",
                    "cliente_email": "maria@exemplo.com",
                    "cliente_telefone": "11999990000",
                    "imovel_titulo": "Residencial Jardins - Apto 82",
                    "opcao_data_1": "2030-05-10T10:00:00",
                    "opcao_data_2": "2030-05-11T15:00:00",
                }
            ]
        }
    }

    @field_validator("cliente_nome")
    @classmethod
    def _vl_nome(cls, v: str) -> str:
        v2 = (v or "").strip()
        if not v2:
            raise ValueError("cliente_nome_obrigatorio")
        return v2

    @field_validator("cliente_email", "agency_email")
    @classmethod
    def _vl_email(cls, v: Optional[str]) -> Optional[str]:
        v2 = _strip_or_none(v)
        if v2 is not None and ("@" not in v2 or "." not in v2.split("@")[-1]):
            raise ValueError("email_invalido")
        return v2.lower() if v2 else v2


class VisitaSaida(BaseModel):
    id: int
    lead_id: Optional[int] = None
    property_id: int
    agency_id: Optional[int] = None
    construtora_id: int
    cliente_nome: str
    cliente_email: str
    imovel_titulo: Optional[str] = None
    opcao_data_1: datetime
    opcao_data_2: datetime
    data_confirmada: Optional[datetime] = None
    status: VisitStatus
    motivo_cancelamento: Optional[str] = None
    corretor_nome: Optional[str] = None
    corretor_email: Optional[str] = None
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    realized_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    rescheduled_at: Optional[datetime] = None
    reagendamentos: int = 0

    model_config = ConfigDict(from_attributes=True)


# ===== Seções do feedback =====
class AssinaturaIn(BaseModel):
    imagem: str
    device: Optional[str] = None
    ip: Optional[str] = None

    @field_validator("imagem")
    @classmethod
    def _vl_imagem(cls, v: str) -> str:
        v2 = (v or "").strip()
        if not v2:
            raise ValueError("assinatura_obrigatoria")
        return v2


class SecaoCorretorIn(BaseModel):
    duracao_minutos: int = Field(ge=1, le=480)
    qualificacao_lead: QualificacaoLead
    poder_decisao: PoderDecisao
    poder_decisao_detalhes: Optional[str] = None
    prazo_compra: PrazoCompra
    orcamento_disponivel: Optional[float] = Field(default=None, ge=0)
    forma_pagamento_pretendida: Optional[str] = None
    observacoes_corretor: str
    proximos_passos: Optional[str] = None
    necessita_followup: bool = True
    data_followup: Optional[datetime] = None

    @field_validator("observacoes_corretor")
    @classmethod
    def _vl_observacoes(cls, v: str) -> str:
        v2 = (v or "").strip()
        if len(v2) < OBSERVACOES_MIN_LEN:
            raise ValueError("observacoes_corretor_curta")
        return v2

    @field_validator("poder_decisao_detalhes", "forma_pagamento_pretendida", "proximos_passos")
    @classmethod
    def _vl_textos(cls, v: Optional[str]) -> Optional[str]:
        return _strip_or_none(v)


class SecaoClienteIn(BaseModel):
    nps_cliente: int = Field(ge=0, le=10)
    avaliacao_localizacao: int = Field(ge=1, le=5)
    avaliacao_acabamento: int = Field(ge=1, le=5)
    avaliacao_layout: int = Field(ge=1, le=5)
    avaliacao_custo_beneficio: int = Field(ge=1, le=5)
    avaliacao_atendimento: int = Field(ge=1, le=5)
    pontos_positivos: Optional[str] = None
    pontos_negativos: Optional[str] = None
    sugestoes: Optional[str] = None
    interesse_compra: InteresseCompra
    objecoes: List[str] = Field(default_factory=list)
    objecoes_detalhes: Optional[str] = None
    declaracao_verdade: bool

    @field_validator("objecoes")
    @classmethod
    def _vl_objecoes(cls, v: List[str]) -> List[str]:
        out: List[str] = []
        for item in v or []:
            tag = str(item).strip()
            if tag not in OBJECOES_VALIDAS:
                raise ValueError(f"objecao_invalida:{tag}")
            if tag not in out:
                out.append(tag)
        return out

    @field_validator("declaracao_verdade")
    @classmethod
    def _vl_declaracao(cls, v: bool) -> bool:
        if v is not True:
            raise ValueError("declaracao_verdade_obrigatoria")
        return v

    @field_validator("pontos_positivos", "pontos_negativos", "sugestoes", "objecoes_detalhes")
    @classmethod
    def _vl_textos(cls, v: Optional[str]) -> Optional[str]:
        return _strip_or_none(v)


class FeedbackSaida(BaseModel):
    id: int
    visit_id: int
    property_id: int
    agency_id: Optional[int] = None
    construtora_id: int
    politica: FeedbackPolicy
    status: FeedbackStatus
    cliente_nome: str
    corretor_nome: Optional[str] = None
    imovel_titulo: Optional[str] = None
    data_visita: Optional[datetime] = None

    duracao_minutos: Optional[int] = None
    qualificacao_lead: Optional[QualificacaoLead] = None
    poder_decisao: Optional[PoderDecisao] = None
    prazo_compra: Optional[str] = None
    orcamento_disponivel: Optional[float] = None
    observacoes_corretor: Optional[str] = None
    proximos_passos: Optional[str] = None
    necessita_followup: bool = False
    data_followup: Optional[datetime] = None
    score_lead: Optional[int] = None

    nps_cliente: Optional[int] = None
    avaliacao_localizacao: Optional[int] = None
    avaliacao_acabamento: Optional[int] = None
    avaliacao_layout: Optional[int] = None
    avaliacao_custo_beneficio: Optional[int] = None
    avaliacao_atendimento: Optional[int] = None
    interesse_compra: Optional[InteresseCompra] = None
    objecoes: Optional[List[str]] = None

    pdf_url: Optional[str] = None
    pdf_gerado_em: Optional[datetime] = None
    documento_hash: Optional[str] = None
    created_at: datetime
    feedback_corretor_em: Optional[datetime] = None
    feedback_cliente_em: Optional[datetime] = None
    completo_em: Optional[datetime] = None
    arquivado_em: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SubmissaoSecaoIn(BaseModel):
    """Corpo das submissões de seção: ``dados`` é validado pelo serviço.

    ``assinatura`` aceita o objeto completo ou apenas a imagem (data URL).
    """

    dados: dict[str, Any]
    assinatura: Optional[Union[AssinaturaIn, str]] = None


# ===== Agenda da imobiliária =====
class DisponibilidadeIn(BaseModel):
    dia_semana: int = Field(ge=0, le=6)
    hora_inicio: time
    hora_fim: time
    duracao_slot_minutos: int = Field(default=60, ge=15, le=240)
    ativo: bool = True

    @field_validator("hora_fim")
    @classmethod
    def _vl_hora_fim(cls, v: time, info: ValidationInfo) -> time:
        inicio = info.data.get("hora_inicio")
        if inicio is not None and v <= inicio:
            raise ValueError("hora_fim_invalida")
        return v


class DisponibilidadeSaida(BaseModel):
    id: int
    agency_id: int
    dia_semana: int
    hora_inicio: time
    hora_fim: time
    duracao_slot_minutos: int
    ativo: bool

    model_config = ConfigDict(from_attributes=True)


class BloqueioIn(BaseModel):
    data_inicio: datetime
    data_fim: datetime
    motivo: Optional[str] = None

    @field_validator("data_fim")
    @classmethod
    def _vl_data_fim(cls, v: datetime, info: ValidationInfo) -> datetime:
        inicio = info.data.get("data_inicio")
        if inicio is not None and to_naive_utc(v) < to_naive_utc(inicio):
            raise ValueError("bloqueio_intervalo_invalido")
        return v

    @field_validator("motivo")
    @classmethod
    def _vl_motivo(cls, v: Optional[str]) -> Optional[str]:
        return _strip_or_none(v)


class BloqueioSaida(BaseModel):
    id: int
    agency_id: int
    data_inicio: datetime
    data_fim: datetime
    motivo: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
