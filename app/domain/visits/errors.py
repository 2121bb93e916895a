"""
Erros de domínio do ciclo de visitas e feedbacks.

Cada erro carrega um ``code`` estável (para o cliente da API) e uma
mensagem legível em português.
"""
from __future__ import annotations

from typing import Any


class VisitDomainError(Exception):
    code = "domain_error"

    def __init__(self, message: str, *, code: str | None = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_payload(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(VisitDomainError):
    """Dados do chamador violam restrições de campo."""

    code = "validation_error"


class InvalidStateError(VisitDomainError):
    """Operação não permitida no status atual do registro."""

    code = "invalid_state"


class NotFoundError(VisitDomainError):
    code = "not_found"


class DependencyError(VisitDomainError):
    """Falha transitória do banco ou de um colaborador externo."""

    code = "dependency_error"

    def __init__(self, message: str = "Serviço temporariamente indisponível. Tente novamente.", **kwargs: Any):
        super().__init__(message, **kwargs)
