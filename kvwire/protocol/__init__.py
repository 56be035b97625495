"""Protocol module for kvwire."""

from .commands import Command, CommandType, Reply, ReplyType
from .errors import ConnectionClosedError, MalformedInputError, ProtocolError
from .executor import CommandExecutor
from .parser import ProtocolParser, format_response

__all__ = [
    "Command",
    "CommandType",
    "Reply",
    "ReplyType",
    "ProtocolError",
    "MalformedInputError",
    "ConnectionClosedError",
    "CommandExecutor",
    "ProtocolParser",
    "format_response",
]
