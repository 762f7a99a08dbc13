"""
MCP Action Service
In-process dispatcher for MCP actions with validation, audit logging and
idempotency support.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from appharbor.app_registry.mcp_registry_service import (
    McpActionRegistryService,
    best_effort,
)
from appharbor.app_registry.models import McpActionLog, McpActionRegistryEntry


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class McpContext:
    tenant_id: str
    user_id: Optional[str] = None
    # Bound by McpActionService.execute when left unset
    session: Optional[Session] = field(default=None, compare=False, repr=False)


# Handler signature: (context, payload) -> JSON-serializable result
McpHandler = Callable[[McpContext, Dict[str, Any]], Any]

_handlers: Dict[str, McpHandler] = {}


def register_handler(name: str, handler: McpHandler) -> None:
    _handlers[name] = handler
    logger.debug("Registered MCP action handler: %s", name)


def mcp_action(name: str):
    """Decorator registering a function as the handler for `name`."""

    def decorator(func: McpHandler) -> McpHandler:
        register_handler(name, func)
        return func

    return decorator


def get_handler(name: str) -> Optional[McpHandler]:
    return _handlers.get(name)


def registered_actions() -> List[str]:
    return sorted(_handlers)


def _error(code: str, message: str) -> Dict[str, Any]:
    return {"ok": False, "error": {"code": code, "message": message}}


class McpActionService:
    def __init__(self, session: Session):
        self.session = session
        self.registry = McpActionRegistryService(session)

    def execute(
        self,
        action: str,
        payload: Dict[str, Any],
        context: McpContext,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Returns {"ok": True, "data": ...} or {"ok": False, "error": {code, message}}."""
        started = time.monotonic()
        if context.session is None:
            context = replace(context, session=self.session)

        if idempotency_key:
            previous = self._find_success(context.tenant_id, action, idempotency_key)
            if previous is not None:
                logger.info("Returning cached result for idempotency key %s", idempotency_key)
                return {"ok": True, "data": previous.result, "cached": True}

        handler = get_handler(action)
        if handler is None:
            message = f"Action '{action}' not found"
            self._log(context, action, payload, None, "error", started, message, idempotency_key)
            return _error("ACTION_NOT_FOUND", message)

        entry = self._resolve_entry(context.tenant_id, action)
        if entry is False:
            message = f"Action '{action}' is not enabled for tenant"
            self._log(context, action, payload, None, "error", started, message, idempotency_key)
            return _error("ACTION_NOT_FOUND", message)

        if entry is not None:
            valid, errors = self.registry.validate_payload(entry, payload)
            if not valid:
                message = ", ".join(errors)
                self._log(context, action, payload, None, "error", started, message, idempotency_key)
                return _error("VALIDATION_ERROR", message)

        try:
            with self.session.begin_nested():
                result = handler(context, payload)
        except Exception as exc:
            logger.error("MCP action '%s' failed: %s", action, exc)
            self._log(context, action, payload, None, "error", started, str(exc), idempotency_key)
            return _error("ACTION_FAILED", str(exc))

        self._log(context, action, payload, result, "success", started, None, idempotency_key)
        return {"ok": True, "data": result}

    def _resolve_entry(self, tenant_id: str, action: str):
        """
        Registry entry carrying the input schema.
        None when the action is not tenant-registered (built-in handler),
        False when it is registered but every version is disabled.
        """
        entry = self.registry.get_action(tenant_id, action)
        if entry is not None:
            return entry
        known = (
            self.session.query(McpActionRegistryEntry.id)
            .filter_by(tenant_id=tenant_id, fq_action=action)
            .first()
        )
        return False if known else None

    def _find_success(
        self, tenant_id: str, action: str, idempotency_key: str
    ) -> Optional[McpActionLog]:
        return (
            self.session.query(McpActionLog)
            .filter_by(
                tenant_id=tenant_id,
                action=action,
                idempotency_key=idempotency_key,
                status="success",
            )
            .order_by(McpActionLog.created_at.desc())
            .first()
        )

    def _log(
        self,
        context: McpContext,
        action: str,
        payload: Any,
        result: Any,
        status: str,
        started: float,
        error: Optional[str],
        idempotency_key: Optional[str],
    ) -> None:
        duration_ms = int((time.monotonic() - started) * 1000)

        def _write() -> None:
            self.session.add(
                McpActionLog(
                    id=str(uuid.uuid4()),
                    tenant_id=context.tenant_id,
                    user_id=context.user_id,
                    action=action,
                    payload=payload,
                    result=result,
                    status=status,
                    duration_ms=duration_ms,
                    error=error,
                    idempotency_key=idempotency_key,
                )
            )
            self.session.flush()

        best_effort(self.session, "MCP audit log", _write)
