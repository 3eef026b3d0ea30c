"""
Depot - Error Types

Every failure the depot can report is a DepotError subclass. The message
(str(exc)) is what the command line prints to the user.

Kinds:
    NotFoundError          key absent on fetch
    PasswordRequiredError  encrypted value fetched without a password
    BadPasswordError       AEAD failure (wrong password, tampering, corruption)
    MalformedDataError     base64 or UTF-8 damage in a stored value
    StorageError           any other SQLite failure
    DepotIOError           filesystem trouble opening the database
    UsageError             bad command-line input
"""

from typing import Optional


class DepotError(Exception):
    """Base class for all depot errors."""

    message = "depot error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class NotFoundError(DepotError):
    message = "key not found"


class PasswordRequiredError(DepotError):
    message = "password required but not supplied"


class BadPasswordError(DepotError):
    """
    Authenticated decryption (or encryption) failed.

    Deliberately carries no detail: a GCM tag mismatch cannot tell a wrong
    password from a flipped bit, and we don't try to.
    """

    message = "bad password"


class MalformedDataError(DepotError):
    message = "stored value is malformed"


class StorageError(DepotError):
    message = "storage failure"


class DepotIOError(DepotError):
    message = "cannot open depot"


class UsageError(DepotError):
    message = "invalid usage"
