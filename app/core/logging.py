import logging
import re
import sys
import structlog
from typing import Any, Mapping


SENSITIVE_KEYS = {
    "authorization",
    "x-admin-key",
    "token",
    "access_token",
    "token_acesso_cliente",
    "secret",
    "signature",
    "assinatura",
    "assinatura_corretor",
    "assinatura_cliente",
    "resend_api_key",
}

# CPF: 11 dígitos (com ou sem máscara). Ex.: 123.456.789-09 ou 12345678909
_CPF_RE = re.compile(r"(?<!\d)(\d{3})[\.\s-]?(\d{3})[\.\s-]?(\d{3})[\.\s-]?(\d{2})(?!\d)")


def _mask(value: str) -> str:
    if not isinstance(value, str):
        return "***"
    if len(value) <= 8:
        return "***"
    return value[:2] + "***" + value[-2:]


def _mask_cpf_text(text: str) -> str:
    # Mantém apenas os 2 últimos dígitos
    return _CPF_RE.sub(lambda m: "***-**-**-" + m.group(4), text)


def _redact_mapping(d: Mapping[str, Any]) -> dict:
    out = {}
    for k, v in d.items():
        lk = str(k).lower()
        if lk in SENSITIVE_KEYS:
            out[k] = _mask(str(v))
        elif isinstance(v, Mapping):
            out[k] = _redact_mapping(v)
        elif isinstance(v, str):
            out[k] = _mask_cpf_text(v)
        else:
            out[k] = v
    return out


def redact_processor(logger, method_name, event_dict):  # type: ignore[no-untyped-def]
    return _redact_mapping(event_dict)


def configure_logging(level: int = logging.INFO) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_processor,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
