"""
Protocol Command and Reply Definitions

This module defines the data structures for decoded commands and the
replies sent back to clients.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, List, Optional, Tuple, Union


class CommandType(Enum):
    """Enumeration of supported command types."""
    GET = auto()
    SET = auto()
    DEL = auto()
    GETSET = auto()
    TYPE = auto()
    EXISTS = auto()
    QUIT = auto()
    UNKNOWN = auto()

    @classmethod
    def from_name(cls, name: str) -> "CommandType":
        """Look up a command type by (case-insensitive) name."""
        try:
            command_type = cls[name.upper()]
        except KeyError:
            return cls.UNKNOWN
        return command_type

    @property
    def arity(self) -> Tuple[int, Optional[int]]:
        """(min, max) argument count including the command name; max None = unbounded."""
        return ARITY[self]


ARITY = {
    CommandType.GET: (2, 2),
    CommandType.SET: (3, 6),
    CommandType.DEL: (2, None),
    CommandType.GETSET: (3, 3),
    CommandType.TYPE: (2, 2),
    CommandType.EXISTS: (2, 2),
    CommandType.QUIT: (1, 1),
    CommandType.UNKNOWN: (0, None),
}


@dataclass
class Command:
    """
    Represents a decoded command.

    Attributes:
        args: Ordered arguments; the first one is the command name
        peer: Opaque handle of the client connection that sent the command
    """
    args: List[str]
    peer: Any = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        """Validate command after initialization."""
        if not self.args:
            raise ValueError("a command needs at least one argument")
        self.args = [str(arg) for arg in self.args]

    @property
    def name(self) -> str:
        """The command name as sent by the client."""
        return self.args[0]

    @property
    def type(self) -> CommandType:
        return CommandType.from_name(self.name)

    @property
    def has_valid_arity(self) -> bool:
        """Check the argument count against the command's arity."""
        low, high = self.type.arity
        if len(self.args) < low:
            return False
        return high is None or len(self.args) <= high


class ReplyType(Enum):
    """Reply kinds, valued by their wire prefix."""
    STATUS = "+"
    ERROR = "-"
    INTEGER = ":"
    BULK = "$"


@dataclass
class Reply:
    """
    Represents a protocol reply.

    Attributes:
        type: STATUS, ERROR, INTEGER or BULK
        value: Status text, error message, integer, or bulk payload
               (None for the null bulk string)
    """
    type: ReplyType
    value: Union[str, int, None] = None

    @classmethod
    def status(cls, text: str) -> "Reply":
        """Create a simple status reply."""
        return cls(type=ReplyType.STATUS, value=text)

    @classmethod
    def ok(cls) -> "Reply":
        """Create the '+OK' reply."""
        return cls.status("OK")

    @classmethod
    def error(cls, message: str) -> "Reply":
        """Create an '-ERR <message>' reply."""
        # Error replies are single lines; client text may carry CR or LF
        message = message.replace("\r", " ").replace("\n", " ")
        return cls(type=ReplyType.ERROR, value=f"ERR {message}")

    @classmethod
    def integer(cls, number: int) -> "Reply":
        """Create an integer reply."""
        return cls(type=ReplyType.INTEGER, value=int(number))

    @classmethod
    def bulk(cls, payload: str) -> "Reply":
        """Create a bulk string reply."""
        return cls(type=ReplyType.BULK, value=payload)

    @classmethod
    def null_bulk(cls) -> "Reply":
        """Create the null bulk string reply ('$-1')."""
        return cls(type=ReplyType.BULK, value=None)

    @classmethod
    def wrong_arity(cls, name: str) -> "Reply":
        return cls.error(f"wrong number of arguments for '{name}' command")

    @classmethod
    def unknown_command(cls, name: str) -> "Reply":
        return cls.error(f"unknown command '{name}'")

    @property
    def is_null(self) -> bool:
        return self.type == ReplyType.BULK and self.value is None
