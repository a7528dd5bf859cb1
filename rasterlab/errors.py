"""Exceptions raised to callers of the editing core."""


class InvalidInputError(ValueError):
    """Input was rejected; the document keeps its previous state."""


class UnknownOperatorError(InvalidInputError):
    """An operator tag outside the closed operator set."""
