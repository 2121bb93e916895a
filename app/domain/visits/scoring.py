"""
Score de qualificação do lead (0 a 100) a partir da avaliação do corretor.

Funções puras: sem acesso a banco nem efeitos colaterais.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional, Type, TypeVar

from app.domain.visits.errors import ValidationError
from app.domain.visits.models import PoderDecisao, PrazoCompra, QualificacaoLead

E = TypeVar("E", bound=Enum)

SCORE_MAX = 100

PONTOS_QUALIFICACAO = {
    QualificacaoLead.quente: 40,
    QualificacaoLead.morno: 25,
    QualificacaoLead.frio: 10,
}

PONTOS_PODER_DECISAO = {
    PoderDecisao.total: 25,
    PoderDecisao.parcial: 15,
    PoderDecisao.nenhum: 5,
}

PONTOS_PRAZO = {
    PrazoCompra.ate_3_meses: 25,
    PrazoCompra.de_3_a_6_meses: 20,
    PrazoCompra.de_6_a_12_meses: 15,
    PrazoCompra.acima_12_meses: 10,
    PrazoCompra.indefinido: 5,
}

BONUS_ORCAMENTO = 10


def _coerce(enum_cls: Type[E], value: Any, field: str) -> E:
    if value is None:
        raise ValidationError(f"{field} é obrigatório", code=f"{field}_obrigatorio")
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(
            f"valor inválido para {field}: {value!r}",
            code=f"{field}_invalido",
            details={"field": field, "allowed": [m.value for m in enum_cls]},
        )


def _coerce_orcamento(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"valor inválido para orcamento_disponivel: {value!r}",
            code="orcamento_disponivel_invalido",
            details={"field": "orcamento_disponivel"},
        )


def calcular_score_lead(
    qualificacao_lead: Any,
    poder_decisao: Any,
    prazo_compra: Any,
    orcamento_disponivel: Optional[float] = None,
) -> int:
    qualificacao = _coerce(QualificacaoLead, qualificacao_lead, "qualificacao_lead")
    poder = _coerce(PoderDecisao, poder_decisao, "poder_decisao")
    prazo = _coerce(PrazoCompra, prazo_compra, "prazo_compra")
    orcamento_disponivel = _coerce_orcamento(orcamento_disponivel)

    score = PONTOS_QUALIFICACAO[qualificacao] + PONTOS_PODER_DECISAO[poder] + PONTOS_PRAZO[prazo]
    if orcamento_disponivel is not None and orcamento_disponivel > 0:
        score += BONUS_ORCAMENTO
    return min(score, SCORE_MAX)


def score(agent_data: Any) -> int:
    """Score a partir da seção do corretor (modelo pydantic ou dict)."""
    if isinstance(agent_data, Mapping):
        get = agent_data.get
    else:
        def get(key: str) -> Any:
            return getattr(agent_data, key, None)
    return calcular_score_lead(
        get("qualificacao_lead"),
        get("poder_decisao"),
        get("prazo_compra"),
        get("orcamento_disponivel"),
    )


def classificar_nps(nps: int) -> str:
    if not 0 <= int(nps) <= 10:
        raise ValidationError("NPS deve estar entre 0 e 10", code="nps_fora_do_intervalo")
    if nps <= 6:
        return "detrator"
    if nps <= 8:
        return "neutro"
    return "promotor"
