"""Exception taxonomy for the completer.

None of these escape a run: the API client converts them into failed
``APIResult`` values, and the controller logs anything else at its boundary.
"""


class CompleterError(Exception):
    """Base class for all completer errors."""


class MissingTokenError(CompleterError):
    """No CSRF token on the page or in the session cookies."""

    def __init__(self, message: str = "No CSRF token"):
        super().__init__(message)


class TransportError(CompleterError):
    """Network-level failure while talking to the backend."""


class HttpStatusError(CompleterError):
    """Backend answered with a non-2xx status."""

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


class ModuleNotFound(CompleterError):
    """No module marker at the requested index."""

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"Module {index} not found")


class UnknownCategoryError(CompleterError):
    """Module content category has no completion protocol."""


class AllVariantsExhausted(CompleterError):
    """Every position variant was submitted without server-side progress."""

    def __init__(self, message: str = "All position_data variants failed"):
        super().__init__(message)


class AlreadyRunningError(CompleterError):
    """A run is already in progress on this controller."""

    def __init__(self, message: str = "Already running"):
        super().__init__(message)


class PreconditionError(CompleterError):
    """The controller cannot start a run in its current state."""
