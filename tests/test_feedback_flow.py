import itertools

import pytest
from sqlalchemy import select

from app.domain.visits.errors import InvalidStateError, NotFoundError, ValidationError
from app.domain.visits.models import DispatchOutbox, FeedbackStatus, OutboxKind
from app.domain.visits.scoring import calcular_score_lead

ASSINATURA = {"imagem": "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAE=", "device": "tablet"}


def _outbox(db, feedback_id):
    return db.execute(
        select(DispatchOutbox).where(DispatchOutbox.feedback_id == feedback_id).order_by(DispatchOutbox.id)
    ).scalars().all()


def _reports(db, feedback_id):
    return [r for r in _outbox(db, feedback_id) if r.kind == OutboxKind.report]


def test_fluxo_completo_agent_first(feedback_factory, feedbacks, dados_corretor, dados_cliente, db_session, clock):
    fb = feedback_factory()
    assert fb.status == FeedbackStatus.aguardando_corretor
    assert feedbacks.get_public_view(fb.token_acesso_cliente)["view"] == "aguardando_corretor"

    clock.advance(hours=1)
    fb = feedbacks.submit_agent_section(fb.id, dados_corretor(), ASSINATURA)
    assert fb.status == FeedbackStatus.aguardando_cliente
    assert fb.score_lead == 100
    assert fb.prazo_compra == "0-3_meses"
    assert fb.assinatura_corretor_device == "tablet"
    convite = _outbox(db_session, fb.id)[-1]
    assert convite.template == "feedback_request"
    assert convite.recipient_email == "maria@exemplo.com"
    assert convite.payload["corretor_nome"] == "Carlos Corretor"
    assert feedbacks.get_public_view(fb.token_acesso_cliente)["view"] == "formulario"

    clock.advance(hours=2)
    fb = feedbacks.submit_client_section_by_token(fb.token_acesso_cliente, dados_cliente(), ASSINATURA)
    assert fb.status == FeedbackStatus.completo
    assert fb.completo_em == clock()
    assert fb.assinatura_corretor and fb.assinatura_cliente
    assert fb.nps_cliente == 9
    assert feedbacks.get_public_view(fb.token_acesso_cliente)["view"] == "obrigado"

    assert len(_reports(db_session, fb.id)) == 1
    templates = [r.template for r in _outbox(db_session, fb.id) if r.kind == OutboxKind.notify]
    assert templates == ["feedback_request", "feedback_completed_client", "feedback_completed_agency"]
    resumo = _outbox(db_session, fb.id)[-1]
    assert resumo.recipient_email == "contato@imobiliaria.com"
    assert resumo.payload["nps_classificacao"] == "promotor"
    assert resumo.payload["score_lead"] == 100
    assert resumo.payload["interesse_compra"] == "muito_interessado"


def test_fluxo_completo_client_first(feedback_factory, feedbacks, dados_corretor, dados_cliente, db_session):
    fb = feedback_factory(policy="client_first")
    assert fb.status == FeedbackStatus.aguardando_cliente
    assert feedbacks.get_public_view(fb.token_acesso_cliente)["view"] == "formulario"

    fb = feedbacks.submit_client_section(fb.id, dados_cliente(nps_cliente=5), ASSINATURA)
    assert fb.status == FeedbackStatus.aguardando_corretor
    aviso = _outbox(db_session, fb.id)[-1]
    assert aviso.template == "feedback_agent_turn"
    assert aviso.recipient_email == "carlos@imobiliaria.com"
    assert feedbacks.get_public_view(fb.token_acesso_cliente)["view"] == "aguardando_corretor"

    fb = feedbacks.submit_agent_section(fb.id, dados_corretor(qualificacao_lead="frio"), ASSINATURA)
    assert fb.status == FeedbackStatus.completo
    assert fb.score_lead == 70
    assert len(_reports(db_session, fb.id)) == 1
    assert _outbox(db_session, fb.id)[-1].payload["nps_classificacao"] == "detrator"


def test_sem_email_da_imobiliaria_nao_gera_resumo(feedback_factory, feedbacks, dados_corretor, dados_cliente, db_session):
    fb = feedback_factory(agency_email=None)
    feedbacks.submit_agent_section(fb.id, dados_corretor(), ASSINATURA)
    feedbacks.submit_client_section(fb.id, dados_cliente(), ASSINATURA)

    templates = [r.template for r in _outbox(db_session, fb.id)]
    assert "feedback_completed_agency" not in templates
    assert len(_reports(db_session, fb.id)) == 1


@pytest.mark.parametrize(
    "q,p,prazo,orcamento",
    list(itertools.product(["quente", "morno", "frio"], ["total", "parcial", "nenhum"],
                           ["0-3_meses", "3-6_meses", "6-12_meses", "acima_12_meses", "indefinido"],
                           [None, 120000.0])),
)
def test_score_gravado_segue_a_formula(feedback_factory, feedbacks, dados_corretor, q, p, prazo, orcamento):
    fb = feedback_factory()
    dados = dados_corretor(qualificacao_lead=q, poder_decisao=p, prazo_compra=prazo, orcamento_disponivel=orcamento)

    fb = feedbacks.submit_agent_section(fb.id, dados, ASSINATURA)

    assert fb.score_lead == calcular_score_lead(q, p, prazo, orcamento)


@pytest.mark.parametrize("nps", [-1, 11])
def test_nps_fora_do_intervalo_rejeitado(feedback_factory, feedbacks, dados_cliente, nps):
    fb = feedback_factory(policy="client_first")
    with pytest.raises(ValidationError) as exc:
        feedbacks.submit_client_section(fb.id, dados_cliente(nps_cliente=nps), ASSINATURA)
    assert exc.value.code == "nps_cliente_invalido"
    assert feedbacks.get_feedback(fb.id).status == FeedbackStatus.aguardando_cliente


@pytest.mark.parametrize("nps", [0, 10])
def test_nps_nos_limites_aceito(feedback_factory, feedbacks, dados_cliente, nps):
    fb = feedback_factory(policy="client_first")
    fb = feedbacks.submit_client_section(fb.id, dados_cliente(nps_cliente=nps), ASSINATURA)
    assert fb.nps_cliente == nps


@pytest.mark.parametrize("assinatura", [None, "   ", {"imagem": ""}])
def test_assinatura_obrigatoria(feedback_factory, feedbacks, dados_corretor, assinatura):
    fb = feedback_factory()
    with pytest.raises(ValidationError) as exc:
        feedbacks.submit_agent_section(fb.id, dados_corretor(), assinatura)
    assert exc.value.code == "assinatura_obrigatoria"
    assert feedbacks.get_feedback(fb.id).feedback_corretor_em is None


def test_observacoes_curtas_rejeitadas(feedback_factory, feedbacks, dados_corretor):
    fb = feedback_factory()
    with pytest.raises(ValidationError) as exc:
        feedbacks.submit_agent_section(fb.id, dados_corretor(observacoes_corretor="ok"), ASSINATURA)
    assert exc.value.code == "observacoes_corretor_curta"
    assert exc.value.details[0]["field"] == "observacoes_corretor"


def test_duracao_fora_do_intervalo(feedback_factory, feedbacks, dados_corretor):
    fb = feedback_factory()
    with pytest.raises(ValidationError):
        feedbacks.submit_agent_section(fb.id, dados_corretor(duracao_minutos=481), ASSINATURA)


def test_declaracao_de_verdade_obrigatoria(feedback_factory, feedbacks, dados_cliente):
    fb = feedback_factory(policy="client_first")
    with pytest.raises(ValidationError) as exc:
        feedbacks.submit_client_section(fb.id, dados_cliente(declaracao_verdade=False), ASSINATURA)
    assert exc.value.code == "declaracao_verdade_obrigatoria"


def test_objecoes_validadas_e_sem_repeticao(feedback_factory, feedbacks, dados_cliente):
    fb = feedback_factory(policy="client_first")
    with pytest.raises(ValidationError) as exc:
        feedbacks.submit_client_section(fb.id, dados_cliente(objecoes=["vizinhanca"]), ASSINATURA)
    assert exc.value.code == "objecao_invalida:vizinhanca"

    fb = feedbacks.submit_client_section(
        fb.id, dados_cliente(objecoes=["preco_alto", "layout", "preco_alto"]), ASSINATURA
    )
    assert fb.objecoes == ["preco_alto", "layout"]


def test_reenvio_da_secao_do_corretor_proibido(feedback_factory, feedbacks, dados_corretor):
    fb = feedback_factory()
    feedbacks.submit_agent_section(fb.id, dados_corretor(), ASSINATURA)
    with pytest.raises(InvalidStateError):
        feedbacks.submit_agent_section(fb.id, dados_corretor(qualificacao_lead="frio"), ASSINATURA)
    assert feedbacks.get_feedback(fb.id).qualificacao_lead.value == "quente"


def test_cliente_nao_envia_antes_do_corretor_em_agent_first(feedback_factory, feedbacks, dados_cliente):
    fb = feedback_factory()
    with pytest.raises(InvalidStateError):
        feedbacks.submit_client_section(fb.id, dados_cliente(), ASSINATURA)
    with pytest.raises(NotFoundError):
        feedbacks.submit_client_section_by_token(fb.token_acesso_cliente, dados_cliente(), ASSINATURA)


def test_token_desconhecido_ou_consumido(feedback_factory, feedbacks, dados_corretor, dados_cliente):
    with pytest.raises(NotFoundError):
        feedbacks.get_public_view("nao-existe")

    fb = feedback_factory()
    feedbacks.submit_agent_section(fb.id, dados_corretor(), ASSINATURA)
    feedbacks.submit_client_section_by_token(fb.token_acesso_cliente, dados_cliente(), ASSINATURA)

    with pytest.raises(NotFoundError) as exc:
        feedbacks.submit_client_section_by_token(fb.token_acesso_cliente, dados_cliente(nps_cliente=0), ASSINATURA)
    assert exc.value.code == "token_not_found"
    assert feedbacks.get_feedback(fb.id).nps_cliente == 9


def test_arquivar_de_qualquer_estado_nao_arquivado(feedback_factory, feedbacks, dados_corretor, dados_cliente):
    pendente = feedback_factory()
    arquivado = feedbacks.archive(pendente.id)
    assert arquivado.status == FeedbackStatus.arquivado
    assert arquivado.arquivado_em is not None
    assert feedbacks.get_public_view(arquivado.token_acesso_cliente)["view"] == "obrigado"

    with pytest.raises(InvalidStateError) as exc:
        feedbacks.archive(pendente.id)
    assert exc.value.code == "feedback_arquivado"

    completo = feedback_factory()
    feedbacks.submit_agent_section(completo.id, dados_corretor(), ASSINATURA)
    feedbacks.submit_client_section(completo.id, dados_cliente(), ASSINATURA)
    assert feedbacks.archive(completo.id).status == FeedbackStatus.arquivado


def test_arquivado_nao_aceita_secoes(feedback_factory, feedbacks, dados_corretor):
    fb = feedback_factory()
    feedbacks.archive(fb.id)
    with pytest.raises(InvalidStateError):
        feedbacks.submit_agent_section(fb.id, dados_corretor(), ASSINATURA)


def test_regenerar_relatorio(feedback_factory, feedbacks, dados_corretor, dados_cliente, db_session, clock):
    fb = feedback_factory()
    with pytest.raises(InvalidStateError):
        feedbacks.request_report_regeneration(fb.id)

    feedbacks.submit_agent_section(fb.id, dados_corretor(), ASSINATURA)
    feedbacks.submit_client_section(fb.id, dados_cliente(), ASSINATURA)
    clock.advance(days=1)
    row = feedbacks.request_report_regeneration(fb.id)

    assert row.kind == OutboxKind.report
    reports = _reports(db_session, fb.id)
    assert len(reports) == 2
    assert len({r.idempotency_key for r in reports}) == 2


def test_listar_feedbacks(feedback_factory, feedbacks, dados_corretor):
    a = feedback_factory()
    b = feedback_factory()
    feedbacks.submit_agent_section(b.id, dados_corretor(), ASSINATURA)

    assert [f.id for f in feedbacks.list_feedbacks(status=FeedbackStatus.aguardando_corretor)] == [a.id]
    assert [f.id for f in feedbacks.list_feedbacks(score_min=90)] == [b.id]
    assert {f.id for f in feedbacks.list_feedbacks(agency_id=7)} == {a.id, b.id}
    with pytest.raises(NotFoundError):
        feedbacks.get_feedback(12345)
