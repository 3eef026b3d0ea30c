"""
Depot - Key-Value Store with Optional Encryption

Use it as a repository for reminders, trivia, or sensitive information such
as passwords and tokens.

Key Features:
- Local: one SQLite file, no server
- Per-value encryption: AES-256-GCM with a PBKDF2-derived key
- Mixed content: plain notes and secrets under different passwords share a file

Components:
- crypto.py: key derivation and AES-GCM
- store.py: SQLite schema and the Depot class
- errors.py: exception hierarchy
- config.py: database path and password from the environment
- cli.py: command-line interface (uses built-in argparse)

Usage:
    echo "buy milk" | depot stow note
    depot fetch note
    echo "s3cr3t" | depot -s stow token    # prompts for a password
    depot drop token
"""

from .errors import (
    BadPasswordError,
    DepotError,
    DepotIOError,
    MalformedDataError,
    NotFoundError,
    PasswordRequiredError,
    StorageError,
    UsageError,
)
from .store import Depot, PlainRecord, SealedRecord, open_depot

__version__ = "0.1.0"

__all__ = [
    "BadPasswordError",
    "Depot",
    "DepotError",
    "DepotIOError",
    "MalformedDataError",
    "NotFoundError",
    "PasswordRequiredError",
    "PlainRecord",
    "SealedRecord",
    "StorageError",
    "UsageError",
    "open_depot",
]
