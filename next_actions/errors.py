"""Error taxonomy for the NBA engine. The HTTP layer maps these onto 4xx responses."""


class NextActionError(Exception):
    """Base class for validation and state errors raised by the engine."""

    error_code = "next_action_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnknownScopeError(NextActionError):
    error_code = "unknown_scope"


class NextActionNotFoundError(NextActionError):
    error_code = "not_found"


class InvalidActionKeyError(NextActionError):
    error_code = "invalid_action"


class InvalidPayloadError(NextActionError):
    error_code = "invalid_payload"


class InvalidTransitionError(NextActionError):
    error_code = "invalid_state"
