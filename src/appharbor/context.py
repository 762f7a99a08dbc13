"""
Request-scoped tenant and acting user.

Set once per request by the context middleware; services read it through
get_request_context() or receive the ids explicitly.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator, Optional


tenant_id_var: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)


@dataclass(frozen=True)
class RequestContext:
    tenant_id: Optional[str]
    user_id: Optional[str]


def get_request_context() -> RequestContext:
    return RequestContext(tenant_id=tenant_id_var.get(), user_id=user_id_var.get())


@contextmanager
def bind_request_context(
    tenant_id: Optional[str], user_id: Optional[str] = None
) -> Iterator[RequestContext]:
    """Bind tenant/user for the enclosed block, restoring the outer values on exit."""
    tenant_token = tenant_id_var.set(tenant_id)
    user_token = user_id_var.set(user_id)
    try:
        yield RequestContext(tenant_id=tenant_id, user_id=user_id)
    finally:
        user_id_var.reset(user_token)
        tenant_id_var.reset(tenant_token)
