"""
Protocol Errors

Errors raised by the wire decoder. Command-level failures (wrong arity,
unknown command, bad SET options) are not exceptions: the executor turns
them into error replies.
"""


class ProtocolError(Exception):
    """Base class for errors raised while reading a command."""


class MalformedInputError(ProtocolError):
    """
    The request bytes do not form a valid command.

    The stream position cannot be trusted afterwards, so the session
    replies with the message and closes.
    """


class ConnectionClosedError(ProtocolError):
    """The client closed the connection (end of stream)."""
