"""
Command Executor Module

Maps a decoded Command to its handler, validates arity and options, runs
it against the shared KVStore and returns the encoded reply.

Commands:
    GET key                                  -> $<len> value | $-1
    SET key value [NX|XX] [EX sec|PX ms]     -> +OK | $-1 when NX/XX fails
    DEL key [key ...]                        -> :<removed>
    GETSET key value                         -> $<len> old | $-1
    TYPE key                                 -> +string | +none
    EXISTS key                               -> :1 | :0
    QUIT                                     -> +OK, then the session ends
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from .commands import Command, CommandType, Reply
from .parser import format_response
from ..cache.reaper import ExpirationReaper
from ..cache.store import KVStore

logger = logging.getLogger(__name__)

# Longest accepted SET expiration, in milliseconds
MAX_EXPIRE_MS = 2 ** 63 - 1

_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "v": "\v",
}


def unquote_value(value: str) -> str:
    """
    Strip one level of double-quote quoting from a stored value.

    Values that start with a double quote are replied without their
    surrounding quotes and with backslash escapes resolved, so that the
    bulk length matches the bytes actually sent. A value that is not a
    well-formed quoted string is returned unchanged.

    Examples:
        >>> unquote_value('"hello \\\\"world\\\\""')
        'hello "world"'
        >>> unquote_value('"broken')
        '"broken'
    """
    if len(value) < 2 or not (value.startswith('"') and value.endswith('"')):
        return value

    inner = value[1:-1]
    chars = []
    pos = 0
    while pos < len(inner):
        char = inner[pos]
        if char == '"':
            return value
        if char == "\\":
            escaped = _ESCAPES.get(inner[pos + 1:pos + 2])
            if escaped is None:
                return value
            chars.append(escaped)
            pos += 2
            continue
        chars.append(char)
        pos += 1
    return "".join(chars)


@dataclass
class SetOptions:
    """Parsed trailing options of a SET command."""
    only_if_absent: bool = False
    only_if_present: bool = False
    ttl: Optional[float] = None  # Seconds


class CommandExecutor:
    """
    Executes commands against a KVStore.

    The executor is shared by all sessions; it holds no per-session state.

    Usage:
        executor = CommandExecutor(store, reaper)
        reply, keep_open = executor.execute(command)
        writer.write(reply)
    """

    def __init__(self, store: KVStore, reaper: ExpirationReaper = None):
        """
        Args:
            store: The shared KVStore
            reaper: Schedules per-key deletions for SET with EX/PX. Without
                    one, expired keys are only removed lazily on access.
        """
        self.store = store
        self.reaper = reaper

        self._handlers: Dict[CommandType, Callable[[Command], Reply]] = {
            CommandType.GET: self._get,
            CommandType.SET: self._set,
            CommandType.DEL: self._del,
            CommandType.GETSET: self._getset,
            CommandType.TYPE: self._type,
            CommandType.EXISTS: self._exists,
            CommandType.QUIT: self._quit,
        }

    def execute(self, command: Command) -> Tuple[bytes, bool]:
        """
        Execute a command.

        Returns:
            (encoded reply, keep_session_open)
        """
        reply = self.dispatch(command)
        keep_open = not (command.type == CommandType.QUIT and command.has_valid_arity)
        return format_response(reply), keep_open

    def dispatch(self, command: Command) -> Reply:
        """Run a command and return its Reply."""
        handler = self._handlers.get(command.type)
        if handler is None:
            logger.debug(f"Command not supported: {command.name}")
            return Reply.unknown_command(command.name)

        if not command.has_valid_arity:
            return Reply.wrong_arity(command.name)

        logger.debug(f"Handle {command.type.name}")
        return handler(command)

    def _bulk_value(self, value: Optional[str]) -> Reply:
        if value is None:
            return Reply.null_bulk()
        return Reply.bulk(unquote_value(value))

    def _get(self, command: Command) -> Reply:
        return self._bulk_value(self.store.get(command.args[1]))

    def _parse_set_options(self, args) -> Tuple[Optional[SetOptions], Optional[Reply]]:
        """
        Parse SET options: an optional NX/XX right after the value, then an
        optional EX <seconds> or PX <milliseconds>.

        Returns:
            (options, None) on success, (None, error reply) otherwise
        """
        options = SetOptions()
        pos = 3

        if pos < len(args):
            condition = args[pos].upper()
            if condition == "NX":
                options.only_if_absent = True
                pos += 1
            elif condition == "XX":
                options.only_if_present = True
                pos += 1

        if pos < len(args):
            unit = args[pos].upper()
            if unit not in ("EX", "PX"):
                return None, Reply.error("expiration option is not valid")
            if pos + 2 != len(args):
                return None, Reply.error("syntax error")

            raw = args[pos + 1]
            digits = raw[1:] if raw.startswith("-") else raw
            if not (digits.isascii() and digits.isdigit()):
                return None, Reply.error("value is not an integer or out of range")
            limit = MAX_EXPIRE_MS // 1000 if unit == "EX" else MAX_EXPIRE_MS
            # int() refuses very long digit strings, so reject on length first
            amount = int(raw) if len(digits) <= len(str(limit)) else limit + 1
            if amount <= 0 or amount > limit:
                return None, Reply.error("invalid expire time in 'set' command")

            options.ttl = amount if unit == "EX" else amount / 1000.0

        return options, None

    def _set(self, command: Command) -> Reply:
        key, value = command.args[1], command.args[2]
        options, error = self._parse_set_options(command.args)
        if error is not None:
            return error

        expire_at = time.time() + options.ttl if options.ttl is not None else None
        generation = self.store.set(
            key,
            value,
            only_if_absent=options.only_if_absent,
            only_if_present=options.only_if_present,
            expire_at=expire_at,
        )
        if generation is None:
            return Reply.null_bulk()

        if options.ttl is not None and self.reaper is not None:
            self.reaper.schedule_deletion(key, options.ttl, generation)

        return Reply.ok()

    def _del(self, command: Command) -> Reply:
        removed = sum(1 for key in command.args[1:] if self.store.delete(key))
        return Reply.integer(removed)

    def _getset(self, command: Command) -> Reply:
        return self._bulk_value(self.store.getset(command.args[1], command.args[2]))

    def _type(self, command: Command) -> Reply:
        # Strings are the only data type
        return Reply.status("string" if self.store.exists(command.args[1]) else "none")

    def _exists(self, command: Command) -> Reply:
        return Reply.integer(1 if self.store.exists(command.args[1]) else 0)

    def _quit(self, command: Command) -> Reply:
        return Reply.ok()
