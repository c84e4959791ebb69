"""
Structured JSON logging for the sync engine.

One JSON object per line. Each line carries the correlation id of the request
or timer run that produced it and, while a tenant is bound, that tenant's id,
so a whole reconciliation run can be followed with a single filter.
"""
import json
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
tenant_id_ctx: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)

# Record attributes (logger.info(..., extra={...})) copied into the line
EXTRA_FIELDS = ("tenant_id", "board_id", "card_id", "lead_id", "action", "source")

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx")


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: str) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


@contextmanager
def sync_log_context(tenant_id, correlation_id: Optional[str] = None) -> Iterator[str]:
    """
    Bind a tenant (and a correlation id, fresh unless given) for one run.

    Restores the previous values on exit so nested or sequential runs in the
    same task do not leak ids into each other.
    """
    cid = correlation_id or get_correlation_id() or generate_correlation_id()
    cid_token = correlation_id_ctx.set(cid)
    tenant_token = tenant_id_ctx.set(str(tenant_id) if tenant_id is not None else None)
    try:
        yield cid
    finally:
        tenant_id_ctx.reset(tenant_token)
        correlation_id_ctx.reset(cid_token)


class StructuredJsonFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "correlation_id": get_correlation_id(),
            "module": record.name,
            "message": record.getMessage(),
        }

        bound_tenant = tenant_id_ctx.get()
        if bound_tenant is not None:
            entry["tenant_id"] = bound_tenant

        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """Install a single JSON stdout handler on the root logger. Call once at startup."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredJsonFormatter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
