"""Error types raised by depgov."""

from typing import Optional


class DepgovError(Exception):
    """Base class for all depgov errors."""


class PolicyValidationError(DepgovError, ValueError):
    """A policy, rule, condition or action is structurally invalid."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class NotFoundError(DepgovError, KeyError):
    """A record looked up by id does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class PolicyNotFoundError(NotFoundError):
    pass


class TemplateNotFoundError(NotFoundError):
    pass


class AssessmentNotFoundError(NotFoundError):
    pass


class ViolationNotFoundError(NotFoundError):
    pass


class ExceptionNotFoundError(NotFoundError):
    pass


class DuplicateRecordError(DepgovError):
    """A record with the same id already exists in an insert-only store."""


class UnsupportedOperationError(DepgovError, NotImplementedError):
    """The operation is recognised but deliberately not supported."""


class ActionExecutionError(DepgovError):
    """An enforcement action could not be carried out."""


class InvalidTransitionError(DepgovError, ValueError):
    """A violation status change is not allowed from its current status."""
