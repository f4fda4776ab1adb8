"""Exceptions related to kude-controller."""

__all__ = [
    "KudeException",
    "InputException",
    "InvalidDurationError",
    "CommandException",
    "GitError",
    "StoreException",
    "ObjectNotFoundError",
    "AlreadyExistsError",
    "ConflictError",
]


class KudeException(Exception):
    """Generic base exception used for this library."""


class InputException(KudeException):
    """Raised when the input files or values are not formatted as expected."""


class InvalidDurationError(InputException):
    """Raised when a duration string cannot be parsed."""


class CommandException(KudeException):
    """Raised when there is a failure running a subcommand."""


class GitError(KudeException):
    """Raised when a git operation on a repository mirror fails."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"git {operation} failed: {message}")
        self.operation = operation
        self.message = message


class StoreException(KudeException):
    """Raised when the object store rejects an operation."""


class ObjectNotFoundError(StoreException):
    """Raised when an object is not found in the store."""


class AlreadyExistsError(StoreException):
    """Raised when creating an object that already exists in the store."""


class ConflictError(StoreException):
    """Raised when a write is based on a stale resource version."""

    def __init__(self, resource_name: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Operation cannot be fulfilled on {resource_name}: the object has been "
            f"modified (resourceVersion {expected} != {actual})"
        )
        self.resource_name = resource_name
        self.expected = expected
        self.actual = actual
