"""Exception types raised by the retro core."""


class RetroError(Exception):
    """Base class for recoverable retro errors."""


class ConfigurationError(RetroError):
    """Raised when configuration is invalid or cannot be loaded."""


class LockError(RetroError):
    """Raised when the lockfile is held by a live process (interactive mode)."""


class BackendError(RetroError):
    """Raised when the AI backend call fails, times out or returns garbage."""


class GenerationError(RetroError):
    """Raised when generated artifact content is unusable (retryable)."""


class ForgeError(RetroError):
    """Raised when a git or forge operation fails."""


class IngestError(RetroError):
    """Raised when session discovery fails as a whole."""


class ReviewInputError(RetroError):
    """Raised for malformed review selections. Nothing is mutated."""
