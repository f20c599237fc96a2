"""Error taxonomy shared by the session engine and the HTTP layer."""


class LiveQuizError(Exception):
    """Base class for errors surfaced to hosts and participants."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LiveQuizError):
    """A session code, quiz, question or participant does not resolve."""

    status_code = 404


class ForbiddenError(LiveQuizError):
    """The caller does not own the quiz or session it is acting on."""

    status_code = 403


class ValidationError(LiveQuizError):
    """Input rejected before any write reaches the store."""

    status_code = 422


class InvalidTransitionError(LiveQuizError):
    """A host or participant action that the current phase does not allow."""

    status_code = 409


class StaleReferenceError(LiveQuizError):
    """The session or participant was closed or deleted under the caller."""

    status_code = 410


class StoreError(LiveQuizError):
    """A persistence call failed; the caller may retry the same action."""

    status_code = 503


class ConflictError(StoreError):
    """A write violated a uniqueness or integrity constraint."""

    status_code = 409
