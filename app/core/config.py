from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_ENV: str = "dev"

    # Banco de dados (DATABASE_URL_OVERRIDE tem precedência, usado em testes)
    DATABASE_URL: str = "sqlite:///./dev.db"
    DATABASE_URL_OVERRIDE: str | None = None

    # Celery / outbox
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str | None = None
    CELERY_ALWAYS_EAGER: bool = False
    OUTBOX_MAX_RETRIES: int = 5

    # Capacidade administrativa (arquivar, regenerar relatório, sweeps)
    ADMIN_API_KEY: str | None = None

    # Notificações
    NOTIFY_PROVIDER: str = "noop"  # noop | resend
    RESEND_API_KEY: str | None = None
    RESEND_API_BASE: str = "https://api.resend.com"
    NOTIFY_FROM: str = "Feedback <noreply@exemplo.com.br>"
    NOTIFY_TIMEOUT_SECONDS: float = 10.0

    # Relatórios e links públicos
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    REPORTS_DIR: str = "uploads/relatorios"

    # agent_first | client_first
    FEEDBACK_POLICY_DEFAULT: str = "agent_first"

    @property
    def effective_database_url(self) -> str:
        return (self.DATABASE_URL_OVERRIDE or "").strip() or self.DATABASE_URL


settings = Settings()
