"""Function-call handling for the realtime model.

Every function call is answered with a `function_call_output` followed by a
`response.create`, whether or not the handler accepted the arguments, so the
model never waits on a call that will not be answered.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from relay.errors import ToolArgumentsError, UnknownToolError
from relay.schemas import OutcomeArguments
from relay.session import CallSession

if TYPE_CHECKING:  # pragma: no cover
    from integrations.openai_realtime import FunctionCallArgumentsDone, RealtimeModelTransport

LOGGER = logging.getLogger(__name__)

OUTCOME_TOOL_NAME = "registrar_resultado_chamada"

ToolHandler = Callable[[str, CallSession], dict[str, Any]]


def register_call_outcome(arguments: str, session: CallSession) -> dict[str, Any]:
    try:
        parsed = OutcomeArguments.model_validate_json(arguments)
    except ValidationError as exc:
        raise ToolArgumentsError(f"Invalid {OUTCOME_TOOL_NAME} arguments: {exc.errors()[0]['msg']}") from exc

    session.record_outcome(parsed.to_outcome())
    LOGGER.info(
        "Call outcome registered: call=%s resultado=%s observacoes=%s",
        session.call_id,
        parsed.resultado.value,
        parsed.observacoes,
    )
    return {"status": "sucesso", "mensagem": "Resultado registrado com sucesso"}


class ToolCallDispatcher:
    """Routes completed function calls to registered handlers."""

    def __init__(
        self,
        model: RealtimeModelTransport,
        handlers: Mapping[str, ToolHandler] | None = None,
    ) -> None:
        self._model = model
        if handlers is None:
            handlers = {OUTCOME_TOOL_NAME: register_call_outcome}
        self._handlers: dict[str, ToolHandler] = dict(handlers)

    async def dispatch(self, call: FunctionCallArgumentsDone, session: CallSession) -> bool:
        """Run the handler for `call` and resume the model turn. Returns True on success."""

        try:
            handler = self._handlers.get(call.name)
            if handler is None:
                raise UnknownToolError(f"Tool {call.name!r} is not registered")
            result = handler(call.arguments, session)
            accepted = True
        except (ToolArgumentsError, UnknownToolError) as exc:
            LOGGER.warning("Function call %s (call_id=%s) rejected: %s", call.name, call.call_id, exc.detail)
            result = {"status": "erro", "mensagem": exc.detail}
            accepted = False

        if call.call_id:
            await self._model.send_function_output(call.call_id, result)
        else:
            LOGGER.warning("Function call %s has no call_id; skipping function_call_output", call.name)
        await self._model.create_response()
        return accepted
