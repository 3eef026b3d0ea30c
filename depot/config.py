"""
Depot - Configuration

Where the database lives, where the password comes from, and how loud the
logs are. Everything is read from environment variables; each function takes
an optional mapping so callers (and tests) can pass their own.
"""

import logging
import os
from typing import Mapping, Optional

from .errors import DepotIOError

ENV_PATH = "DEPOT_PATH"
ENV_PASS = "DEPOT_PASS"
ENV_LOG_LEVEL = "DEPOT_LOG_LEVEL"

DB_FILENAME = "depot.db"

logger = logging.getLogger(__name__)


def default_dir(environ: Optional[Mapping[str, str]] = None) -> str:
    """$XDG_CONFIG_HOME/depot, else $HOME/.depot, else ./.depot"""
    env = os.environ if environ is None else environ
    if env.get("XDG_CONFIG_HOME"):
        return os.path.join(env["XDG_CONFIG_HOME"], "depot")
    if env.get("HOME"):
        return os.path.join(env["HOME"], ".depot")
    return os.path.join(".", ".depot")


def choose_path(environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Return the database path.

    DEPOT_PATH wins and is used untouched. Otherwise the default directory
    is created if needed and depot.db inside it is returned.

    Raises:
        DepotIOError: the default directory could not be created
    """
    env = os.environ if environ is None else environ
    if env.get(ENV_PATH):
        return env[ENV_PATH]

    directory = default_dir(env)
    try:
        os.makedirs(directory, exist_ok=True)
    except OSError as exc:
        raise DepotIOError(f"cannot create {directory}: {exc.strerror}") from exc
    logger.debug("using default depot directory %s", directory)
    return os.path.join(directory, DB_FILENAME)


def env_password(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Password from DEPOT_PASS, or None if unset."""
    env = os.environ if environ is None else environ
    return env.get(ENV_PASS)


def log_level(environ: Optional[Mapping[str, str]] = None, verbose: bool = False) -> int:
    """DEBUG when verbose, else DEPOT_LOG_LEVEL, else WARNING."""
    if verbose:
        return logging.DEBUG
    env = os.environ if environ is None else environ
    name = env.get(ENV_LOG_LEVEL, "").upper()
    level = logging.getLevelName(name) if name else logging.WARNING
    return level if isinstance(level, int) else logging.WARNING
