"""Error taxonomy shared by the services and turned into envelopes in main.py."""

from typing import Optional


class ReliefError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ReliefError):
    """Malformed or missing input. Nothing is persisted."""

    status_code = 400


class SelfAcceptError(ValidationError):
    def __init__(self, message: str = "Cannot accept your own request"):
        super().__init__(message)


class NotAuthorized(ReliefError):
    """Actor is not a participant allowed to perform the action."""

    status_code = 403


class NotFound(ReliefError):
    status_code = 404


class InvalidTransition(ReliefError):
    """Action is not legal in the request's current status."""

    status_code = 409

    def __init__(self, message: str, required: Optional[str] = None):
        super().__init__(message)
        self.required = required


class Conflict(ReliefError):
    """Lost a race, e.g. accepting a request someone else just claimed."""

    status_code = 409


class NotAvailable(ReliefError):
    status_code = 400
