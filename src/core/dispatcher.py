"""Despacho de acciones del usuario (intents) hacia el servidor.

Por qué separar intent y request:
- El intent es lo que el usuario escribió (puede ser inválido).
- La request es el body ya validado; solo si existe se toca la red.
"""

from __future__ import annotations

import structlog
from pydantic import ValidationError

from core.domain.actions import ActionIntent, ActionResult
from core.domain.models import ErrorKind, Fail, Ok, RequestOutcome
from core.session import SessionManager

logger = structlog.get_logger()


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        msg = str(err.get("msg", "invalid value")).removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "invalid input"


class ActionDispatcher:
    """Sin estado propio: todo pasa por la sesión inyectada."""

    def __init__(self, session: SessionManager) -> None:
        self._session = session

    async def dispatch(self, intent: ActionIntent) -> RequestOutcome[ActionResult]:
        try:
            request = intent.to_request()
        except ValidationError as exc:
            message = _validation_message(exc)
            logger.info("intent_rejected", intent=intent.name, error=message)
            return Fail.of(ErrorKind.VALIDATION, f"{intent.name}: {message}")
        except ValueError as exc:
            logger.info("intent_rejected", intent=intent.name, error=str(exc))
            return Fail.of(ErrorKind.VALIDATION, f"{intent.name}: {exc}")

        outcome = await self._session.call(intent.operation, request)
        if isinstance(outcome, Fail):
            return outcome

        logger.info("intent_dispatched", intent=intent.name, op=intent.operation.name)
        return Ok(ActionResult(intent=intent.name, operation=intent.operation.name, data=outcome.value))
