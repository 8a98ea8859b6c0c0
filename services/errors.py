"""
Storage-level exceptions shared by the store adapters and the session service.
"""


class PersistenceError(Exception):
    """Raised when the underlying storage fails to read or write."""


class DuplicateUserError(PersistenceError):
    """Raised when a user with the same email already exists."""
