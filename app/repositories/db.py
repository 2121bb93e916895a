from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session
from sqlalchemy.pool import StaticPool
from app.core.config import settings


class Base(DeclarativeBase):
    pass


DATABASE_URL = settings.effective_database_url

# Ajuste para SQLite em desenvolvimento: evitar erro de threads do SQLite
kwargs = {"pool_pre_ping": True}
if DATABASE_URL.startswith("sqlite"):
    kwargs["connect_args"] = {"check_same_thread": False}
    # Em memória, garantir que a mesma conexão seja usada em todas as sessoes
    if DATABASE_URL == "sqlite:///:memory:":
        kwargs["poolclass"] = StaticPool

engine = create_engine(DATABASE_URL, **kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def db_session() -> Iterator[Session]:
    """Sessão fora do ciclo de request (workers, scripts)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
