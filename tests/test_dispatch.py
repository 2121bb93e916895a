from pathlib import Path

import httpx
import pytest
from sqlalchemy import select

from app.domain.visits.errors import DependencyError, NotFoundError
from app.domain.visits.models import DispatchOutbox, FeedbackStatus, OutboxKind, OutboxStatus
from app.services import notification_service
from app.services.dispatch_service import OutboxDispatcher, commit_with_outbox, deliver_outbox, pending_outbox_ids
from app.services.notification_service import NotificationService, ResendProvider, render
from app.services.report_service import ReportService, compute_document_hash

ASSINATURA = {"imagem": "data:image/png;base64,AAAA"}


class RecordingProvider:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def send_email(self, to, subject, html):
        if self.fail:
            raise httpx.ConnectError("provider offline")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return {"id": "msg_1"}


def _rows(db, **filters):
    stmt = select(DispatchOutbox).order_by(DispatchOutbox.id)
    for k, v in filters.items():
        stmt = stmt.where(getattr(DispatchOutbox, k) == v)
    return db.execute(stmt).scalars().all()


@pytest.fixture
def completo(feedback_factory, feedbacks, dados_corretor, dados_cliente):
    fb = feedback_factory()
    feedbacks.submit_agent_section(fb.id, dados_corretor(), ASSINATURA)
    return feedbacks.submit_client_section(fb.id, dados_cliente(), ASSINATURA)


def test_entrega_notificacao_marca_enviada_uma_vez(visita_confirmada, db_session):
    visit = visita_confirmada()
    row = _rows(db_session, visit_id=visit.id)[0]
    provider = RecordingProvider()
    notifier = NotificationService(provider=provider)

    assert deliver_outbox(db_session, row.id, notifier=notifier) == OutboxStatus.sent
    assert deliver_outbox(db_session, row.id, notifier=notifier) == OutboxStatus.sent

    assert len(provider.sent) == 1
    assert provider.sent[0]["to"] == "maria@exemplo.com"
    assert "Residencial Jardins" in provider.sent[0]["subject"]
    db_session.refresh(row)
    assert row.attempts == 1
    assert row.sent_at is not None


def test_falha_de_entrega_reagenda_e_depois_marca_failed(completo, db_session, feedbacks):
    row = _rows(db_session, feedback_id=completo.id, template="feedback_completed_client")[0]
    notifier = NotificationService(provider=RecordingProvider(fail=True))

    with pytest.raises(DependencyError):
        deliver_outbox(db_session, row.id, notifier=notifier)
    db_session.refresh(row)
    assert row.status == OutboxStatus.pending
    assert row.attempts == 1
    assert row.last_error

    assert deliver_outbox(db_session, row.id, notifier=notifier, final_attempt=True) == OutboxStatus.failed
    db_session.refresh(row)
    assert row.status == OutboxStatus.failed
    assert row.attempts == 2
    assert row.id not in pending_outbox_ids(db_session)
    # falha de entrega não mexe no feedback
    assert feedbacks.get_feedback(completo.id).status == FeedbackStatus.completo


def test_entrega_do_relatorio_grava_arquivo_e_hash(completo, db_session, tmp_path, feedbacks):
    row = _rows(db_session, feedback_id=completo.id, kind=OutboxKind.report)[0]
    reporter = ReportService(reports_dir=str(tmp_path), public_base_url="https://app.exemplo.com/")

    assert deliver_outbox(db_session, row.id, reporter=reporter) == OutboxStatus.sent

    fb = feedbacks.get_feedback(completo.id)
    arquivo = Path(tmp_path) / f"feedback_{fb.id}.html"
    assert arquivo.exists()
    assert fb.pdf_url == f"https://app.exemplo.com/static/relatorios/feedback_{fb.id}.html"
    assert fb.pdf_gerado_em is not None
    assert len(fb.documento_hash) == 64
    assert fb.documento_hash in arquivo.read_text(encoding="utf-8")

    primeiro_hash = fb.documento_hash
    reporter.generate_report(db_session, fb.id)
    assert feedbacks.get_feedback(fb.id).documento_hash == primeiro_hash


def test_hash_muda_quando_conteudo_muda(completo):
    original = compute_document_hash(completo)
    completo.nps_cliente = 2
    assert compute_document_hash(completo) != original


def test_relatorio_de_feedback_incompleto_ou_inexistente(feedback_factory, db_session, tmp_path):
    from app.domain.visits.errors import InvalidStateError

    reporter = ReportService(reports_dir=str(tmp_path))
    fb = feedback_factory()
    with pytest.raises(InvalidStateError):
        reporter.generate_report(db_session, fb.id)
    with pytest.raises(NotFoundError):
        reporter.generate_report(db_session, 999)


def test_falha_ao_enfileirar_nao_desfaz_transicao(visits, visita_payload, db_session):
    def broker_fora(_outbox_id):
        raise ConnectionError("redis offline")

    visits.dispatcher = OutboxDispatcher(enqueue=broker_fora)
    visit = visits.propose_visit(visita_payload())
    confirmed = visits.confirm_visit(visit.id, visit.opcao_data_1)

    assert confirmed.status.value == "confirmed"
    row = _rows(db_session, visit_id=visit.id)[0]
    assert row.status == OutboxStatus.pending
    assert pending_outbox_ids(db_session) == [row.id]


def test_destinatario_ausente_nao_gera_linha(db_session, dispatcher):
    row = dispatcher.stage_notification(
        db_session, template="visit_reminder", recipient_role="cliente", recipient_email=None, key="k1"
    )
    assert row is None
    commit_with_outbox(db_session, dispatcher, [row], "noop")
    assert dispatcher.published == []


def test_templates_escapam_html():
    subject, html = render("visit_cancelled", {"cliente_nome": "<b>Ana</b>", "motivo": "chuva & vento"})
    assert "&lt;b&gt;Ana&lt;/b&gt;" in html
    assert "chuva &amp; vento" in html
    assert "Visita cancelada" in subject


def test_template_desconhecido():
    with pytest.raises(ValueError):
        render("nao_existe", {})


def test_notify_sem_destinatario_ou_com_erro_retorna_false():
    assert NotificationService(provider=RecordingProvider()).notify("visit_reminder", "", {}) is False
    assert NotificationService(provider=RecordingProvider(fail=True)).notify("visit_reminder", "a@b.com", {}) is False


def test_resend_provider_envia_via_http(monkeypatch):
    captured = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        captured.update(url=url, headers=headers, json=json, timeout=timeout)
        return httpx.Response(200, json={"id": "re_123"}, request=httpx.Request("POST", url))

    monkeypatch.setattr(notification_service.httpx, "post", fake_post)
    provider = ResendProvider(api_key="re_key", api_base="https://api.resend.com/", sender="no@x.com", timeout=3.0)

    assert provider.send_email("ana@exemplo.com", "Oi", "<p>oi</p>") == {"id": "re_123"}
    assert captured["url"] == "https://api.resend.com/emails"
    assert captured["headers"]["Authorization"] == "Bearer re_key"
    assert captured["json"]["to"] == ["ana@exemplo.com"]
    assert captured["timeout"] == 3.0


def test_resend_provider_erro_http_vira_false(monkeypatch):
    def fake_post(url, headers=None, json=None, timeout=None):
        return httpx.Response(500, json={"error": "boom"}, request=httpx.Request("POST", url))

    monkeypatch.setattr(notification_service.httpx, "post", fake_post)
    provider = ResendProvider(api_key="k", api_base="https://api.resend.com", sender="no@x.com", timeout=1.0)
    assert NotificationService(provider=provider).notify("visit_reminder", "ana@exemplo.com", {}) is False
