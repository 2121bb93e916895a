"""
Duas sessões sobre o mesmo banco simulam requisições concorrentes: a sessão B
lê o registro antes da sessão A commitar, então passa na checagem de status
com dados antigos e só perde no UPDATE condicional.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from app.domain.visits.errors import InvalidStateError
from app.domain.visits.models import DispatchOutbox, FeedbackStatus, OutboxKind, VisitFeedback, VisitStatus
from app.repositories.db import Base
from app.services.dispatch_service import OutboxDispatcher
from app.services.feedback_service import FeedbackService
from app.services.visit_service import VisitService

NOW = datetime(2030, 1, 10, 12, 0, 0)
ASSINATURA = {"imagem": "data:image/png;base64,AAAA"}


@pytest.fixture
def sessions(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'concorrencia.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    a, b = Session(), Session()
    try:
        yield a, b
    finally:
        a.close()
        b.close()
        engine.dispose()


def _services(db, cls):
    return cls(db=db, dispatcher=OutboxDispatcher(enqueue=lambda _id: None), now=lambda: NOW)


def _visita_confirmada(svc: VisitService):
    visit = svc.propose_visit(
        {
            "property_id": 1,
            "construtora_id": 1,
            "cliente_nome": "Ana",
            "cliente_email": "ana@exemplo.com",
            "opcao_data_1": NOW + timedelta(days=1),
            "opcao_data_2": NOW + timedelta(days=2),
        }
    )
    return svc.confirm_visit(visit.id, visit.opcao_data_1, corretor={"nome": "Beto", "email": "beto@imob.com"})


def test_realizar_concorrente_cria_um_unico_feedback(sessions):
    db_a, db_b = sessions
    visits_a, visits_b = _services(db_a, VisitService), _services(db_b, VisitService)
    visit_id = _visita_confirmada(visits_a).id

    assert visits_b.get_visit(visit_id).status == VisitStatus.confirmed
    visits_a.realize_visit(visit_id)

    with pytest.raises(InvalidStateError):
        visits_b.realize_visit(visit_id)

    total = db_b.execute(select(func.count(VisitFeedback.id)).where(VisitFeedback.visit_id == visit_id)).scalar_one()
    assert total == 1
    assert visits_b.get_visit(visit_id).status == VisitStatus.realized


def test_confirmar_e_cancelar_concorrentes(sessions):
    db_a, db_b = sessions
    visits_a, visits_b = _services(db_a, VisitService), _services(db_b, VisitService)
    visit = visits_a.propose_visit(
        {
            "property_id": 1,
            "construtora_id": 1,
            "cliente_nome": "Ana",
            "cliente_email": "ana@exemplo.com",
            "opcao_data_1": NOW + timedelta(days=1),
            "opcao_data_2": NOW + timedelta(days=2),
        }
    )
    slot = visit.opcao_data_1

    assert visits_b.get_visit(visit.id).status == VisitStatus.pending
    visits_a.cancel_visit(visit.id, "cliente desistiu")

    with pytest.raises(InvalidStateError) as exc:
        visits_b.confirm_visit(visit.id, slot)
    assert exc.value.code == "visit_cancelled"
    v = visits_b.get_visit(visit.id)
    assert v.confirmed_at is None
    assert v.realized_at is None


@pytest.mark.parametrize("via_token", [False, True])
def test_envio_concorrente_do_cliente(sessions, via_token):
    db_a, db_b = sessions
    visits_a = _services(db_a, VisitService)
    fb_a, fb_b = _services(db_a, FeedbackService), _services(db_b, FeedbackService)

    visit = _visita_confirmada(visits_a)
    fb = visits_a.realize_visit(visit.id)
    fb_a.submit_agent_section(
        fb.id,
        {
            "duracao_minutos": 30,
            "qualificacao_lead": "morno",
            "poder_decisao": "parcial",
            "prazo_compra": "6-12_meses",
            "observacoes_corretor": "Visita tranquila, cliente atento.",
        },
        ASSINATURA,
    )
    token = fb_a.get_feedback(fb.id).token_acesso_cliente
    cliente = {
        "nps_cliente": 8,
        "avaliacao_localizacao": 4,
        "avaliacao_acabamento": 4,
        "avaliacao_layout": 4,
        "avaliacao_custo_beneficio": 4,
        "avaliacao_atendimento": 4,
        "interesse_compra": "interessado",
        "declaracao_verdade": True,
    }

    # B já carregou o feedback em aguardando_cliente
    assert fb_b.get_by_token(token).status == FeedbackStatus.aguardando_cliente
    assert fb_a.submit_client_section(fb.id, cliente, ASSINATURA).status == FeedbackStatus.completo

    with pytest.raises(InvalidStateError):
        if via_token:
            fb_b.submit_client_section_by_token(token, dict(cliente, nps_cliente=1), ASSINATURA)
        else:
            fb_b.submit_client_section(fb.id, dict(cliente, nps_cliente=1), ASSINATURA)

    final = fb_b.get_feedback(fb.id)
    assert final.status == FeedbackStatus.completo
    assert final.nps_cliente == 8
    reports = db_b.execute(
        select(func.count(DispatchOutbox.id)).where(
            DispatchOutbox.feedback_id == fb.id, DispatchOutbox.kind == OutboxKind.report
        )
    ).scalar_one()
    assert reports == 1


def test_envio_concorrente_do_corretor(sessions):
    db_a, db_b = sessions
    visits_a = _services(db_a, VisitService)
    fb_a, fb_b = _services(db_a, FeedbackService), _services(db_b, FeedbackService)

    visit = _visita_confirmada(visits_a)
    fb = visits_a.realize_visit(visit.id, policy="agent_first")
    vencedor = {
        "duracao_minutos": 50,
        "qualificacao_lead": "quente",
        "poder_decisao": "total",
        "prazo_compra": "0-3_meses",
        "orcamento_disponivel": 400000,
        "observacoes_corretor": "Cliente decidido, pediu proposta.",
    }
    perdedor = {
        "duracao_minutos": 20,
        "qualificacao_lead": "frio",
        "poder_decisao": "nenhum",
        "prazo_compra": "indefinido",
        "observacoes_corretor": "Cliente só olhando, sem pressa.",
    }

    # B já carregou o feedback em aguardando_corretor
    assert fb_b.get_feedback(fb.id).status == FeedbackStatus.aguardando_corretor
    assert fb_a.submit_agent_section(fb.id, vencedor, ASSINATURA).score_lead == 100

    with pytest.raises(InvalidStateError):
        fb_b.submit_agent_section(fb.id, perdedor, ASSINATURA)

    final = fb_b.get_feedback(fb.id)
    assert final.status == FeedbackStatus.aguardando_cliente
    assert final.score_lead == 100
    assert final.observacoes_corretor == "Cliente decidido, pediu proposta."
    pedidos = db_b.execute(
        select(func.count(DispatchOutbox.id)).where(
            DispatchOutbox.feedback_id == fb.id, DispatchOutbox.template == "feedback_request"
        )
    ).scalar_one()
    assert pedidos == 1
