"""
Errors - Exception types and the error record stored in a failed context.
"""

import traceback


class ModuLinkError(Exception):
    """Base class for all modulink exceptions."""


class ChainConfigurationError(ModuLinkError, ValueError):
    """
    A chain or combinator was configured incorrectly.

    These are programmer errors. They are raised immediately instead of being
    recorded in the context.
    """


class ValidationError(ModuLinkError):
    """Raised by validate() when a validator rejects the context."""

    def __init__(self, message="Validation failed"):
        super().__init__(message)
        self.message = message


class LinkResultError(ModuLinkError, TypeError):
    """A link or middleware returned something other than a mapping."""


class ErrorRecord:
    """
    Represents a failure captured during chain execution.
    Stored under the 'error' key of the context instead of being raised.
    """

    __slots__ = ('message', 'name', 'stack', 'exception')

    def __init__(self, message, name='Error', stack=None, exception=None):
        """
        Initialize an ErrorRecord.

        Args:
            message: Human readable error message
            name: Error type name (the exception class name)
            stack: Optional formatted traceback
            exception: Optional original exception object
        """
        self.message = message
        self.name = name
        self.stack = stack
        self.exception = exception

    @staticmethod
    def from_exception(exc):
        """
        Create a record from a raised exception.

        Args:
            exc: The exception instance

        Returns:
            ErrorRecord with message, name and formatted stack
        """
        stack = ''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return ErrorRecord(str(exc), type(exc).__name__, stack=stack, exception=exc)

    def to_dict(self):
        """Return the record as a plain dict (without the exception object)."""
        data = {'message': self.message, 'name': self.name}
        if self.stack is not None:
            data['stack'] = self.stack
        return data

    def __eq__(self, other):
        if not isinstance(other, ErrorRecord):
            return NotImplemented
        return self.message == other.message and self.name == other.name

    def __hash__(self):
        return hash((self.message, self.name))

    def __repr__(self):
        return f"ErrorRecord(name={self.name!r}, message={self.message!r})"

    def __str__(self):
        return f"{self.name}: {self.message}"
