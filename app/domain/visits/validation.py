from __future__ import annotations

from typing import Any, Dict, List, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.domain.visits.errors import ValidationError

M = TypeVar("M", bound=BaseModel)


def error_code(err: Dict[str, Any]) -> str:
    field = ".".join(str(p) for p in err.get("loc") or ()) or "dados"
    if err.get("type") == "value_error":
        ctx_error = (err.get("ctx") or {}).get("error")
        if ctx_error is not None and str(ctx_error):
            return str(ctx_error)
    if err.get("type") == "missing":
        return f"{field}_obrigatorio"
    return f"{field}_invalido"


def errors_to_details(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    return [
        {"field": ".".join(str(p) for p in e.get("loc") or ()), "error": error_code(e)}
        for e in exc.errors()
    ]


def parse_model(model_cls: Type[M], data: Any) -> M:
    """Valida ``data`` contra o schema, convertendo erros para ValidationError de domínio."""
    if isinstance(data, model_cls):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    if data is None:
        data = {}
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        details = errors_to_details(e)
        first = details[0]["error"] if details else "dados_invalidos"
        raise ValidationError(f"dados inválidos: {first}", code=first, details=details)
