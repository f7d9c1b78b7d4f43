"""Typed failures of scorer actions.

Every scorer action failure is a MatchActionError, so the UI can catch one
type and show a message. Store errors underneath are chained as the cause.
"""


class MatchActionError(Exception):
    """Base exception for a scorer action that could not be carried out."""


class MatchNotActiveError(MatchActionError):
    """The match is not loaded, or already has a winner."""


class NoCurrentTurnError(MatchActionError):
    """No player is at the oche, or there is nothing to undo."""


class ThrowNotFoundError(MatchActionError):
    """The throw addressed by an edit or delete does not exist."""


class ThrowPersistenceError(MatchActionError):
    """A throw could not be written; the optimistic dart has been rolled back.

    Attributes:
        segment: Label of the dart that was rolled back.

    """

    def __init__(self, segment: str, message: str) -> None:
        self.segment = segment
        super().__init__(f"could not save {segment}: {message}")
