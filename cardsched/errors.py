"""
Exceptions raised by cardsched operations.
"""


class CardschedError(Exception):
    """Base exception for all cardsched errors."""
    pass


class NotFoundError(CardschedError):
    """Raised when a card, group or entry does not exist."""
    pass


class ValidationError(CardschedError):
    """Raised when an input value is out of range or malformed."""
    pass


class ConflictError(CardschedError):
    """Raised when a record with the same key already exists."""
    pass


class InvalidTransitionError(CardschedError):
    """Raised when a card or drill entry cannot move to the requested state."""
    pass
