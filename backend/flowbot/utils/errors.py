# /flowbot/utils/errors.py

from typing import List, Optional


class FlowbotError(Exception):
    """Base class for errors raised by the flow core."""


class FlowDefinitionError(FlowbotError):
    """A raw flow definition could not be turned into a FlowDefinition."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class UnknownFlowError(FlowbotError):
    """A flow key was requested that the registry does not know."""


class CircuitOpenError(FlowbotError):
    """Raised when a call is blocked by an open circuit breaker."""
