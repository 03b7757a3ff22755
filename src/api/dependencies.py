"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

from config.settings import get_settings

if TYPE_CHECKING:  # pragma: no cover
    from integrations.openai_realtime import Connector
    from outcomes.recorder import OutcomeRecorder
    from prompts.loader import CallScript


@lru_cache(maxsize=1)
def _script_factory() -> CallScript:
    from prompts.loader import load_call_script

    return load_call_script(get_settings())


@lru_cache(maxsize=1)
def _recorder_factory() -> OutcomeRecorder:
    from outcomes.recorder import OutcomeRecorder

    return OutcomeRecorder.from_settings(get_settings())


def get_call_script() -> CallScript:
    return _script_factory()


def get_outcome_recorder() -> OutcomeRecorder:
    return _recorder_factory()


def get_model_connector() -> Connector | None:
    # None selects websockets.connect.
    return None
