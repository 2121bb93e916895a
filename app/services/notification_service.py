"""
Serviço para envio de notificações (email) do ciclo de visitas e feedbacks.
"""
from __future__ import annotations

from html import escape
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import httpx
import structlog

from app.core.config import settings

log = structlog.get_logger()


class EmailProvider(Protocol):
    def send_email(self, to: str, subject: str, html: str) -> dict: ...


class NoopProvider:
    """Apenas registra o envio (dev/test)."""

    def send_email(self, to: str, subject: str, html: str) -> dict:
        log.info("email_noop_sent", to=to, subject=subject)
        return {"status": "noop"}


class ResendProvider:
    def __init__(self, api_key: str, api_base: str, sender: str, timeout: float):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.sender = sender
        self.timeout = timeout

    def send_email(self, to: str, subject: str, html: str) -> dict:
        resp = httpx.post(
            f"{self.api_base}/emails",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={"from": self.sender, "to": [to], "subject": subject, "html": html},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()


def get_provider() -> EmailProvider:
    name = (settings.NOTIFY_PROVIDER or "noop").strip().lower()
    if name == "resend":
        if not settings.RESEND_API_KEY:
            raise RuntimeError("RESEND_API_KEY ausente")
        return ResendProvider(
            api_key=settings.RESEND_API_KEY,
            api_base=settings.RESEND_API_BASE,
            sender=settings.NOTIFY_FROM,
            timeout=float(settings.NOTIFY_TIMEOUT_SECONDS),
        )
    return NoopProvider()


# ===== Templates =====
def _p(payload: Dict[str, Any], key: str, default: str = "") -> str:
    value = payload.get(key)
    return escape(str(value)) if value not in (None, "") else default


def _wrap(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"></head>"
        "<body style=\"font-family:'Segoe UI',sans-serif;background:#f5f5f5;\">"
        f"<div style=\"max-width:600px;margin:0 auto;padding:20px;background:white;\"><h2>{title}</h2>{body}</div>"
        "</body></html>"
    )


def _visit_confirmed(p: Dict[str, Any]) -> Tuple[str, str]:
    imovel = _p(p, "imovel_titulo", "o imóvel")
    body = (
        f"<p>Olá <strong>{_p(p, 'cliente_nome')}</strong>,</p>"
        f"<p>Sua visita ao <strong>{imovel}</strong> está confirmada para <strong>{_p(p, 'data_confirmada')}</strong>.</p>"
        f"<p>Corretor responsável: {_p(p, 'corretor_nome', 'a definir')}</p>"
    )
    return f"✅ Visita confirmada - {imovel}", _wrap("Visita confirmada", body)


def _visit_cancelled(p: Dict[str, Any]) -> Tuple[str, str]:
    imovel = _p(p, "imovel_titulo", "o imóvel")
    body = (
        f"<p>Olá <strong>{_p(p, 'cliente_nome')}</strong>,</p>"
        f"<p>Sua visita ao <strong>{imovel}</strong> foi cancelada.</p>"
        f"<p>Motivo: {_p(p, 'motivo')}</p>"
    )
    return f"Visita cancelada - {imovel}", _wrap("Visita cancelada", body)


def _visit_reminder(p: Dict[str, Any]) -> Tuple[str, str]:
    imovel = _p(p, "imovel_titulo", "o imóvel")
    body = (
        f"<p>Olá <strong>{_p(p, 'cliente_nome')}</strong>,</p>"
        f"<p>Lembrete: sua visita ao <strong>{imovel}</strong> acontece em <strong>{_p(p, 'data_confirmada')}</strong>.</p>"
    )
    return f"🔔 Lembrete: visita amanhã - {imovel}", _wrap("Lembrete de visita", body)


def _feedback_request(p: Dict[str, Any]) -> Tuple[str, str]:
    imovel = _p(p, "imovel_titulo", "o imóvel")
    link = _p(p, "link")
    body = (
        f"<p>Olá <strong>{_p(p, 'cliente_nome')}</strong>,</p>"
        f"<p>Obrigado por visitar o <strong>{imovel}</strong> com {_p(p, 'corretor_nome', 'nosso corretor')}.</p>"
        f"<p>Conte como foi a visita: <a href=\"{link}\">{link}</a></p>"
    )
    return f"Avalie sua visita ao {imovel}", _wrap("Como foi sua visita?", body)


def _feedback_agent_turn(p: Dict[str, Any]) -> Tuple[str, str]:
    imovel = _p(p, "imovel_titulo", "o imóvel")
    body = (
        f"<p>O cliente <strong>{_p(p, 'cliente_nome')}</strong> avaliou a visita ao <strong>{imovel}</strong>.</p>"
        f"<p>Interesse: {_p(p, 'interesse_compra', 'N/A')}</p>"
        "<p>Acesse o painel para completar a avaliação do corretor.</p>"
    )
    return f"📩 Novo feedback recebido - {_p(p, 'cliente_nome')} - {imovel}", _wrap("Sua vez de avaliar", body)


def _feedback_followup_client(p: Dict[str, Any]) -> Tuple[str, str]:
    imovel = _p(p, "imovel_titulo", "o imóvel")
    link = _p(p, "link")
    body = (
        f"<p>Olá <strong>{_p(p, 'cliente_nome')}</strong>,</p>"
        f"<p>Notamos que você ainda não avaliou sua visita ao <strong>{imovel}</strong>.</p>"
        f"<p>Leva menos de 2 minutos: <a href=\"{link}\">{link}</a></p>"
    )
    return f"🔔 Lembrete: avalie sua visita ao {imovel}", _wrap("Lembrete de avaliação", body)


def _feedback_followup_agent(p: Dict[str, Any]) -> Tuple[str, str]:
    imovel = _p(p, "imovel_titulo", "o imóvel")
    body = (
        f"<p>A avaliação do corretor da visita de <strong>{_p(p, 'cliente_nome')}</strong> "
        f"ao <strong>{imovel}</strong> está pendente há mais de 24h.</p>"
    )
    return f"🔔 Feedback pendente - {imovel}", _wrap("Feedback pendente", body)


def _feedback_completed_client(p: Dict[str, Any]) -> Tuple[str, str]:
    imovel = _p(p, "imovel_titulo", "o imóvel")
    body = (
        f"<p>Olá <strong>{_p(p, 'cliente_nome')}</strong>,</p>"
        f"<p>Recebemos sua avaliação da visita ao <strong>{imovel}</strong>. Obrigado!</p>"
    )
    return f"✅ Feedback recebido - {imovel}", _wrap("Feedback recebido", body)


def _feedback_completed_agency(p: Dict[str, Any]) -> Tuple[str, str]:
    imovel = _p(p, "imovel_titulo", "o imóvel")
    body = (
        f"<p>Feedback completo da visita de <strong>{_p(p, 'cliente_nome')}</strong> ao <strong>{imovel}</strong>.</p>"
        "<table>"
        f"<tr><td><strong>NPS:</strong></td><td>{_p(p, 'nps_cliente', '-')} ({_p(p, 'nps_classificacao', '-')})</td></tr>"
        f"<tr><td><strong>Interesse:</strong></td><td>{_p(p, 'interesse_compra', '-')}</td></tr>"
        f"<tr><td><strong>Score:</strong></td><td>{_p(p, 'score_lead', '-')}/100</td></tr>"
        "</table>"
    )
    return f"📊 Feedback de visita - {_p(p, 'cliente_nome')} - {imovel}", _wrap("Feedback completo", body)


TEMPLATES: Dict[str, Callable[[Dict[str, Any]], Tuple[str, str]]] = {
    "visit_confirmed": _visit_confirmed,
    "visit_cancelled": _visit_cancelled,
    "visit_reminder": _visit_reminder,
    "feedback_request": _feedback_request,
    "feedback_agent_turn": _feedback_agent_turn,
    "feedback_followup_client": _feedback_followup_client,
    "feedback_followup_agent": _feedback_followup_agent,
    "feedback_completed_client": _feedback_completed_client,
    "feedback_completed_agency": _feedback_completed_agency,
}


def render(template: str, payload: Dict[str, Any]) -> Tuple[str, str]:
    try:
        renderer = TEMPLATES[template]
    except KeyError:
        raise ValueError(f"unknown_template:{template}")
    return renderer(payload or {})


class NotificationService:
    """Serviço para enviar notificações sobre visitas e feedbacks."""

    def __init__(self, provider: Optional[EmailProvider] = None):
        self.provider = provider or get_provider()

    def notify(self, template: str, recipient_email: str, payload: Dict[str, Any]) -> bool:
        """
        Renderiza o template e envia ao destinatário.

        Returns:
            True se enviado com sucesso, False em falha (já registrada em log)
        """
        if not recipient_email:
            log.warning("notification_without_recipient", template=template)
            return False
        subject, html = render(template, payload)
        try:
            self.provider.send_email(recipient_email, subject, html)
        except (httpx.HTTPError, RuntimeError) as e:
            log.warning("notification_send_error", template=template, to=recipient_email, error=str(e))
            return False
        log.info("notification_sent", template=template, to=recipient_email)
        return True
