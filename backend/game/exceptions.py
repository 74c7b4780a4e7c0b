class GameError(Exception):
    """Base class for turn and registry failures."""


class NotFound(GameError):
    pass


class NoDrawer(NotFound):
    """No active session currently holds the turn."""


class Conflict(GameError):
    pass


class InvalidGuess(GameError):
    """A guess or word is None, empty or blank."""


class IntegrityViolation(GameError):
    """Shared game state is inconsistent; the offending connection must go."""


class WordGenerationFailed(IntegrityViolation):
    pass


class StorageError(IntegrityViolation):
    """The durable store rejected a write the game state depends on."""
