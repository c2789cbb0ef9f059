"""Error taxonomy for the round engine and stats store."""


class GlowRoutesError(Exception):
    """Base class for everything the engine raises on purpose."""


class InvalidState(GlowRoutesError):
    """A session or input violates the current game state."""


class InvalidInputIndex(InvalidState):
    """Input points outside the generated challenge (bad tap, lane, position)."""


class InvalidTransition(InvalidState):
    """Action arrived in a phase that does not accept it."""


class PersistenceError(GlowRoutesError):
    """Stats could not be read from or written to storage."""
