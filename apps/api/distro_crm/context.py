from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token

# Request-scoped identifiers picked up by logging, audit, events and spans.
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
refresh_run_id_var: ContextVar[str | None] = ContextVar("refresh_run_id", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def get_refresh_run_id() -> str | None:
    return refresh_run_id_var.get()


@contextmanager
def bind_refresh_run_id(run_id: str) -> Iterator[str]:
    token = refresh_run_id_var.set(run_id)
    try:
        yield run_id
    finally:
        refresh_run_id_var.reset(token)
