from datetime import timedelta

from sqlalchemy import select

from app.domain.visits.models import DispatchOutbox, OutboxKind, OutboxStatus
from app.services.sweep_service import send_feedback_followups, send_visit_reminders

ASSINATURA = {"imagem": "data:image/png;base64,AAAA"}


def _templates(db):
    return [r.template for r in db.execute(select(DispatchOutbox).order_by(DispatchOutbox.id)).scalars().all()]


def _confirmar_em(visits, visita_payload, quando):
    visit = visits.propose_visit(visita_payload(opcao_data_1=quando, opcao_data_2=quando + timedelta(hours=3)))
    return visits.confirm_visit(visit.id, quando)


def test_lembrete_enviado_uma_vez_na_janela_de_24h(visits, visita_payload, db_session, dispatcher, clock):
    dentro = _confirmar_em(visits, visita_payload, clock() + timedelta(hours=24, minutes=30))
    fora = _confirmar_em(visits, visita_payload, clock() + timedelta(hours=26))

    assert send_visit_reminders(db_session, dispatcher, now=clock()) == 1
    assert send_visit_reminders(db_session, dispatcher, now=clock()) == 0

    assert visits.get_visit(dentro.id).lembrete_24h_enviado is True
    assert visits.get_visit(fora.id).lembrete_24h_enviado is False
    assert _templates(db_session).count("visit_reminder") == 1


def test_remarcacao_reabilita_lembrete(visits, visita_payload, db_session, dispatcher, clock):
    visit = _confirmar_em(visits, visita_payload, clock() + timedelta(hours=24, minutes=10))
    send_visit_reminders(db_session, dispatcher, now=clock())

    novo = clock() + timedelta(days=3)
    visits.reschedule_visit(visit.id, novo, novo + timedelta(hours=2))
    visits.confirm_visit(visit.id, novo)

    assert send_visit_reminders(db_session, dispatcher, now=novo - timedelta(hours=24, minutes=5)) == 1
    assert _templates(db_session).count("visit_reminder") == 2


def test_remarcar_para_o_mesmo_horario_gera_novo_lembrete(visits, visita_payload, db_session, dispatcher, clock):
    quando = clock() + timedelta(hours=24, minutes=30)
    visit = _confirmar_em(visits, visita_payload, quando)
    assert send_visit_reminders(db_session, dispatcher, now=clock()) == 1

    visits.reschedule_visit(visit.id, quando, quando + timedelta(hours=2))
    visits.confirm_visit(visit.id, quando)

    assert send_visit_reminders(db_session, dispatcher, now=clock()) == 1
    assert _templates(db_session).count("visit_reminder") == 2
    assert _templates(db_session).count("visit_confirmed") == 2
    assert visits.get_visit(visit.id).reagendamentos == 1


def test_falha_em_uma_visita_nao_interrompe_a_varredura(visits, visita_payload, db_session, dispatcher, clock):
    primeira = _confirmar_em(visits, visita_payload, clock() + timedelta(hours=24, minutes=10))
    segunda = _confirmar_em(visits, visita_payload, clock() + timedelta(hours=24, minutes=40))
    # chave do lembrete da primeira já ocupada: o commit dela falha
    db_session.add(
        DispatchOutbox(
            kind=OutboxKind.notify,
            template="visit_reminder",
            payload={},
            status=OutboxStatus.sent,
            attempts=1,
            idempotency_key=f"visit:{primeira.id}:reminder:0",
        )
    )
    db_session.commit()

    assert send_visit_reminders(db_session, dispatcher, now=clock()) == 1
    assert visits.get_visit(primeira.id).lembrete_24h_enviado is False
    assert visits.get_visit(segunda.id).lembrete_24h_enviado is True


def test_followup_do_cliente_apos_24h(feedback_factory, feedbacks, dados_corretor, db_session, dispatcher, clock):
    fb = feedback_factory()
    clock.advance(hours=3)
    feedbacks.submit_agent_section(fb.id, dados_corretor(), ASSINATURA)

    cedo = send_feedback_followups(db_session, dispatcher, now=clock() + timedelta(hours=23))
    assert cedo == {"cliente": 0, "corretor": 0}

    depois = send_feedback_followups(db_session, dispatcher, now=clock() + timedelta(hours=25))
    assert depois == {"cliente": 1, "corretor": 0}
    assert send_feedback_followups(db_session, dispatcher, now=clock() + timedelta(hours=48))["cliente"] == 0

    row = db_session.execute(
        select(DispatchOutbox).where(DispatchOutbox.template == "feedback_followup_client")
    ).scalar_one()
    assert row.payload["link"].endswith(fb.token_acesso_cliente)
    assert feedbacks.get_feedback(fb.id).followup_enviado_cliente is True


def test_followup_do_corretor_apos_24h(feedback_factory, feedbacks, db_session, dispatcher, clock):
    fb = feedback_factory()

    result = send_feedback_followups(db_session, dispatcher, now=clock() + timedelta(hours=25))

    assert result == {"cliente": 0, "corretor": 1}
    row = db_session.execute(
        select(DispatchOutbox).where(DispatchOutbox.template == "feedback_followup_agent")
    ).scalar_one()
    assert row.recipient_email == "carlos@imobiliaria.com"
    assert feedbacks.get_feedback(fb.id).followup_enviado_corretor is True


def test_feedback_completo_ou_arquivado_nao_recebe_followup(feedback_factory, feedbacks, db_session, dispatcher, clock):
    fb = feedback_factory()
    feedbacks.archive(fb.id)

    assert send_feedback_followups(db_session, dispatcher, now=clock() + timedelta(days=3)) == {
        "cliente": 0,
        "corretor": 0,
    }
