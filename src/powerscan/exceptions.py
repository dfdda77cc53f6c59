"""
Exceptions raised by the power device scanner.

Only UsageError ends a run. Everything else is absorbed at the smallest
unit of work (one backend, one configuration value) and logged.
"""


class PowerscanError(Exception):
    """Base class for scanner errors."""


class UsageError(PowerscanError):
    """Malformed or contradictory command-line input."""


class EngineUnavailableError(PowerscanError):
    """A scan engine was invoked while its support library is missing."""

    def __init__(self, backend: str, library: str):
        self.backend = backend
        self.library = library
        super().__init__(f"{backend} scan requires the '{library}' library")
