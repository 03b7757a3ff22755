"""Domain-specific exceptions for relay operations.

These exceptions are safe to import from API layers without opening any transport.
"""

from __future__ import annotations


class RelayError(Exception):
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class MissingCredentialError(RelayError):
    default_detail = "OPENAI_API_KEY is not configured."


class MalformedFrameError(RelayError):
    default_detail = "Frame could not be decoded."


class ModelTransportError(RelayError):
    default_detail = "Realtime model transport failed."


class ToolArgumentsError(RelayError):
    default_detail = "Tool call arguments are invalid."


class UnknownToolError(RelayError):
    default_detail = "Tool is not registered."
