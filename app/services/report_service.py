"""
Geração do relatório de feedback de visita (HTML assinado por hash).

Regenerável: sobrescreve o arquivo e recalcula o hash a partir das duas seções.
"""
from __future__ import annotations

import hashlib
import json
from datetime import datetime
from html import escape
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from app.core.config import settings
from app.domain.visits.errors import InvalidStateError, NotFoundError
from app.domain.visits.models import VisitFeedback
from app.domain.visits.scoring import classificar_nps

log = structlog.get_logger()

CAMPOS_CORRETOR = (
    "duracao_minutos",
    "qualificacao_lead",
    "poder_decisao",
    "poder_decisao_detalhes",
    "prazo_compra",
    "orcamento_disponivel",
    "forma_pagamento_pretendida",
    "observacoes_corretor",
    "proximos_passos",
    "necessita_followup",
    "data_followup",
    "score_lead",
    "assinatura_corretor",
    "assinatura_corretor_data",
)

CAMPOS_CLIENTE = (
    "nps_cliente",
    "avaliacao_localizacao",
    "avaliacao_acabamento",
    "avaliacao_layout",
    "avaliacao_custo_beneficio",
    "avaliacao_atendimento",
    "pontos_positivos",
    "pontos_negativos",
    "sugestoes",
    "interesse_compra",
    "objecoes",
    "objecoes_detalhes",
    "assinatura_cliente",
    "assinatura_cliente_data",
)

PRAZO_LABELS = {
    "0-3_meses": "0 a 3 meses",
    "3-6_meses": "3 a 6 meses",
    "6-12_meses": "6 a 12 meses",
    "acima_12_meses": "Acima de 12 meses",
    "indefinido": "Indefinido",
}

INTERESSE_LABELS = {
    "muito_interessado": "Muito interessado",
    "interessado": "Interessado",
    "pouco_interessado": "Pouco interessado",
    "sem_interesse": "Sem interesse",
}


def _plain(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def snapshot(fb: VisitFeedback) -> Dict[str, Any]:
    """Conteúdo canônico do documento (base do hash)."""
    data: Dict[str, Any] = {
        "feedback_id": fb.id,
        "visit_id": fb.visit_id,
        "property_id": fb.property_id,
        "cliente_nome": fb.cliente_nome,
        "corretor_nome": fb.corretor_nome,
        "data_visita": _plain(fb.data_visita),
    }
    for campo in CAMPOS_CORRETOR + CAMPOS_CLIENTE:
        data[campo] = _plain(getattr(fb, campo))
    return data


def compute_document_hash(fb: VisitFeedback) -> str:
    canonical = json.dumps(snapshot(fb), sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _stars(rating: Optional[int]) -> str:
    if not rating:
        return "-"
    return "★" * int(rating) + "☆" * (5 - int(rating))


def _fmt_dt(value: Optional[datetime]) -> str:
    return value.strftime("%d/%m/%Y %H:%M") if value else "-"


def _fmt_brl(value: Optional[float]) -> str:
    if value is None:
        return "-"
    return f"R$ {value:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")


def render_report_html(fb: VisitFeedback, document_hash: str) -> str:
    nps = fb.nps_cliente
    nps_txt = f"{nps} ({classificar_nps(nps)})" if nps is not None else "-"
    qual = _plain(fb.qualificacao_lead) or "-"
    poder = _plain(fb.poder_decisao) or "-"
    interesse = INTERESSE_LABELS.get(_plain(fb.interesse_compra) or "", "-")
    rows = [
        ("Imóvel", fb.imovel_titulo or "-"),
        ("Cliente", fb.cliente_nome),
        ("Corretor", fb.corretor_nome or "-"),
        ("Data da visita", _fmt_dt(fb.data_visita)),
        ("Duração (min)", fb.duracao_minutos if fb.duracao_minutos is not None else "-"),
        ("Qualificação", qual),
        ("Poder de decisão", poder),
        ("Prazo de compra", PRAZO_LABELS.get(fb.prazo_compra or "", "-")),
        ("Orçamento", _fmt_brl(fb.orcamento_disponivel)),
        ("Score do lead", f"{fb.score_lead}/100" if fb.score_lead is not None else "-"),
        ("NPS", nps_txt),
        ("Localização", _stars(fb.avaliacao_localizacao)),
        ("Acabamento", _stars(fb.avaliacao_acabamento)),
        ("Layout", _stars(fb.avaliacao_layout)),
        ("Custo-benefício", _stars(fb.avaliacao_custo_beneficio)),
        ("Atendimento", _stars(fb.avaliacao_atendimento)),
        ("Interesse de compra", interesse),
        ("Objeções", ", ".join(fb.objecoes or []) or "-"),
        ("Pontos positivos", fb.pontos_positivos or "-"),
        ("Pontos negativos", fb.pontos_negativos or "-"),
        ("Observações do corretor", fb.observacoes_corretor or "-"),
        ("Próximos passos", fb.proximos_passos or "-"),
        ("Assinatura do corretor", _fmt_dt(fb.assinatura_corretor_data)),
        ("Assinatura do cliente", _fmt_dt(fb.assinatura_cliente_data)),
    ]
    body = "".join(
        f"<tr><td><strong>{escape(str(label))}</strong></td><td>{escape(str(value))}</td></tr>" for label, value in rows
    )
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>Relatório de visita #{fb.id}</title></head><body>"
        f"<h1>Relatório de Feedback de Visita</h1><table>{body}</table>"
        f"<div class=\"hash\">Hash SHA-256: {document_hash}</div>"
        "</body></html>"
    )


class ReportService:
    def __init__(self, *, reports_dir: Optional[str] = None, public_base_url: Optional[str] = None):
        self.reports_dir = Path(reports_dir or settings.REPORTS_DIR)
        self.public_base_url = (public_base_url or settings.PUBLIC_BASE_URL).rstrip("/")

    def generate_report(self, db: Session, feedback_id: int) -> Tuple[str, datetime]:
        fb = db.get(VisitFeedback, feedback_id)
        if fb is None:
            raise NotFoundError("feedback não encontrado", code="feedback_not_found")
        if not (fb.has_agent_section and fb.has_client_section):
            raise InvalidStateError("feedback ainda não está completo", code="feedback_incompleto")

        document_hash = compute_document_hash(fb)
        html = render_report_html(fb, document_hash)

        self.reports_dir.mkdir(parents=True, exist_ok=True)
        filename = f"feedback_{fb.id}.html"
        (self.reports_dir / filename).write_text(html, encoding="utf-8")

        generated_at = datetime.utcnow()
        url = f"{self.public_base_url}/static/relatorios/{filename}"
        fb.pdf_url = url
        fb.pdf_gerado_em = generated_at
        fb.documento_hash = document_hash
        db.add(fb)
        db.commit()

        log.info("feedback_report_generated", feedback_id=fb.id, url=url, documento_hash=document_hash)
        return url, generated_at
