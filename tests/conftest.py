import os
import sys
import tempfile
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Garantir ambiente de testes previsível
os.environ["APP_ENV"] = "test"
os.environ["NOTIFY_PROVIDER"] = "noop"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite:///:memory:")
os.environ.setdefault("REPORTS_DIR", tempfile.mkdtemp(prefix="relatorios_"))

# Ensure the project root (which contains the 'app' package) is on sys.path
THIS_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(THIS_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from app.main import app
from app.api.deps import get_db as deps_get_db, get_dispatcher as deps_get_dispatcher
from app.repositories.db import Base
from app.services.dispatch_service import OutboxDispatcher
from app.services.feedback_service import FeedbackService
from app.services.visit_service import VisitService

NOW = datetime(2030, 1, 10, 12, 0, 0)
ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}
ASSINATURA = {"imagem": "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAE=", "device": "tablet"}
CORRETOR = {"nome": "Carlos Corretor", "email": "carlos@imobiliaria.com"}


class RecordingDispatcher(OutboxDispatcher):
    """Guarda os ids publicados em vez de enfileirar no celery."""

    def __init__(self):
        self.published = []
        super().__init__(enqueue=self.published.append)


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(scope="function")
def db_session():
    """Cria uma sessão de banco de dados em memória para cada função de teste."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def visits(db_session, dispatcher, clock):
    return VisitService(db=db_session, dispatcher=dispatcher, now=clock)


@pytest.fixture
def feedbacks(db_session, dispatcher, clock):
    return FeedbackService(db=db_session, dispatcher=dispatcher, now=clock)


@pytest.fixture
def visita_payload(clock):
    def _make(**over):
        data = {
            "lead_id": 10,
            "property_id": 3,
            "agency_id": 7,
            "construtora_id": 1,
            "cliente_nome": "Maria Souza",
            "cliente_email": "maria@exemplo.com",
            "cliente_telefone": "(11) 99999-0000",
            "imovel_titulo": "Residencial Jardins - Apto 82",
            "agency_email": "contato@imobiliaria.com",
            "opcao_data_1": clock() + timedelta(days=2),
            "opcao_data_2": clock() + timedelta(days=3),
        }
        data.update(over)
        return data

    return _make


@pytest.fixture
def dados_corretor():
    def _make(**over):
        data = {
            "duracao_minutos": 45,
            "qualificacao_lead": "quente",
            "poder_decisao": "total",
            "prazo_compra": "0-3_meses",
            "orcamento_disponivel": 500000,
            "forma_pagamento_pretendida": "financiamento",
            "observacoes_corretor": "Cliente gostou muito da planta e da varanda.",
            "proximos_passos": "Enviar simulação de financiamento",
        }
        data.update(over)
        return data

    return _make


@pytest.fixture
def dados_cliente():
    def _make(**over):
        data = {
            "nps_cliente": 9,
            "avaliacao_localizacao": 5,
            "avaliacao_acabamento": 4,
            "avaliacao_layout": 4,
            "avaliacao_custo_beneficio": 3,
            "avaliacao_atendimento": 5,
            "pontos_positivos": "Localização",
            "interesse_compra": "muito_interessado",
            "objecoes": ["preco_alto"],
            "declaracao_verdade": True,
        }
        data.update(over)
        return data

    return _make


@pytest.fixture
def visita_confirmada(visits, visita_payload):
    """Fábrica: visita proposta e confirmada na primeira opção."""

    def _make(**over):
        visit = visits.propose_visit(visita_payload(**over))
        return visits.confirm_visit(visit.id, visit.opcao_data_1, corretor=CORRETOR)

    return _make


@pytest.fixture
def feedback_factory(visits, visita_confirmada):
    """Fábrica: visita realizada com a política pedida; devolve o feedback."""

    def _make(policy="agent_first", **over):
        visit = visita_confirmada(**over)
        return visits.realize_visit(visit.id, policy=policy)

    return _make


@pytest.fixture(scope="function")
def client(db_session, dispatcher):
    """Cria um TestClient que usa a sessão de banco de dados do teste."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[deps_get_db] = override_get_db
    app.dependency_overrides[deps_get_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    del app.dependency_overrides[deps_get_db]
    del app.dependency_overrides[deps_get_dispatcher]
