"""Exceptions raised by the game session core."""


class TriviaError(Exception):
    """Base class for every error raised by the trivia core."""


class ValidationError(TriviaError):
    """Input rejected before any store interaction. Nothing was changed."""


class InvalidTransition(ValidationError):
    """The requested state machine transition does not exist from the current state."""


class SubmissionLocked(ValidationError):
    """The team client already submitted, timed out or was rejected for this question."""


class StoreUnavailable(TriviaError):
    """The shared store could not be reached or failed mid-operation."""


class TransactionConflict(TriviaError):
    """A store transaction lost a race on a uniqueness constraint."""
