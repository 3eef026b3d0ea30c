"""
Depot - Command-Line Interface

    depot [-nsvh?] <action> <key>

Reads values from stdin, prints fetched values to stdout, and asks for a
password (DEPOT_PASS or a masked prompt) only when one is needed.
"""

import argparse
import getpass
import logging
import sys
from typing import List, Mapping, Optional, TextIO

from . import config
from .errors import BadPasswordError, DepotError, PasswordRequiredError, UsageError
from .store import Depot

ACT_STOW = "stow"
ACT_FETCH = "fetch"
ACT_DROP = "drop"
ACT_HELP = "help"

ACTIONS = (ACT_STOW, ACT_FETCH, ACT_DROP, ACT_HELP)

logger = logging.getLogger(__name__)


def usage() -> str:
    """Return the help message."""
    return "\n".join([
        "Usage: depot [-nsvh?] <action> <key>",
        "",
        "Actions:",
        "    stow        Read a value from stdin and associate it with the given key",
        "    fetch       Print the value associated with the given key to stdout",
        "    drop        Remove the given key from the depot",
        "",
        "Options:",
        "    -n          No newline character will be printed after fetching a value",
        "    -s          The provided value is secret and will be encrypted",
        "    -v          Log debug messages to stderr",
        "    -h, -?      Print this help message and exit",
        "",
        "Environment Variables:",
        "    DEPOT_PATH  Specifies a non-standard path to the depot's database",
        "                (Defaults to $XDG_CONFIG_HOME/depot/depot.db)",
        "    DEPOT_PASS  Specifies the password to be used to encrypt/decrypt values",
        "                (Be careful with this! It is certainly less secure!)",
        "    DEPOT_LOG_LEVEL",
        "                Logging level name, e.g. INFO or DEBUG (default WARNING)",
    ])


class _Parser(argparse.ArgumentParser):
    """ArgumentParser that raises UsageError instead of exiting."""

    def error(self, message):
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog="depot", add_help=False)
    parser.add_argument("-h", "-?", "--help", dest="help", action="store_true")
    parser.add_argument("-n", dest="newline", action="store_false")
    parser.add_argument("-s", dest="secret", action="store_true")
    parser.add_argument("-v", "--verbose", dest="verbose", action="store_true")
    parser.add_argument("words", nargs="*")
    return parser


def parse_args(argv: List[str]) -> argparse.Namespace:
    """
    Parse command-line arguments into action, key, secret, newline, verbose.

    Raises:
        UsageError: missing action/key, extra keys, unknown action or flag
    """
    args = build_parser().parse_intermixed_args(argv)
    words = args.words
    args.action = words[0] if words else None
    args.key = words[1] if len(words) > 1 else None

    if args.help or args.action == ACT_HELP:
        args.action = ACT_HELP
        return args
    if args.action is None:
        raise UsageError("no action specified")
    if args.action not in ACTIONS:
        raise UsageError(f"unrecognized action: {args.action}")
    if args.key is None:
        raise UsageError("no key specified")
    if len(words) > 2:
        raise UsageError("one key at a time")
    return args


def get_password(environ: Optional[Mapping[str, str]] = None) -> str:
    """Password from DEPOT_PASS, else a masked prompt on the terminal."""
    password = config.env_password(environ)
    if password is not None:
        return password
    try:
        return getpass.getpass("PASSWORD: ").strip()
    except EOFError:
        raise BadPasswordError() from None


def read_value(secret: bool, stdin: TextIO) -> str:
    """
    Read the value to stow. Secrets typed at a terminal are not echoed.

    Raises:
        UsageError: value is empty
    """
    if secret and stdin.isatty():
        try:
            val = getpass.getpass("VALUE: ")
        except EOFError:
            val = ""
    else:
        val = stdin.readline()

    val = val.strip()
    if not val:
        raise UsageError("value must be a non-empty string")
    return val


def run(args: argparse.Namespace, depot: Depot, stdin: TextIO, stdout: TextIO,
        environ: Optional[Mapping[str, str]] = None) -> None:
    """Carry out one parsed action against an open depot."""
    if args.action == ACT_STOW:
        val = read_value(args.secret, stdin)
        password = get_password(environ) if args.secret else None
        depot.stow(args.key, val, password)
    elif args.action == ACT_FETCH:
        try:
            val = depot.fetch(args.key)
        except PasswordRequiredError:
            val = depot.fetch(args.key, get_password(environ))
        stdout.write(val + ("\n" if args.newline else ""))
        stdout.flush()
    elif args.action == ACT_DROP:
        depot.drop(args.key)


def _usage_failure(e: UsageError) -> int:
    print(f"depot: {e}", file=sys.stderr)
    print("Try 'depot help' for more information.", file=sys.stderr)
    return 2


def main(argv: Optional[List[str]] = None, stdin: Optional[TextIO] = None,
         stdout: Optional[TextIO] = None,
         environ: Optional[Mapping[str, str]] = None) -> int:
    """Entry point. Returns the process exit status."""
    argv = sys.argv[1:] if argv is None else argv
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    try:
        args = parse_args(argv)
    except UsageError as e:
        return _usage_failure(e)

    logging.basicConfig(
        level=config.log_level(environ, args.verbose),
        format="%(name)s: %(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    if args.action == ACT_HELP:
        stdout.write(usage() + "\n")
        return 0

    try:
        with Depot(config.choose_path(environ)) as depot:
            run(args, depot, stdin, stdout, environ)
    except UsageError as e:
        return _usage_failure(e)
    except DepotError as e:
        logger.debug("%s failed: %r", args.action, e)
        print(f"depot: {e}", file=sys.stderr)
        return 1
    return 0
