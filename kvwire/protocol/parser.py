r"""
Protocol Parser Module

This module decodes client requests from a byte stream and formats replies.

Requests come in two encodings, told apart by their first byte:

    Multi-bulk:  *<N>\r\n followed by N elements, each one of
                 $<len>\r\n<payload>\r\n   bulk string
                 :<value>\r\n              integer, kept as a string
                 *<N>\r\n...               nested array, flattened
    Inline:      GET key\r\n               space separated tokens;
                 SET "a b" "say \"hi\""    quoted tokens keep spaces

Replies:
    +OK\r\n   -ERR <message>\r\n   :<n>\r\n   $<len>\r\n<payload>\r\n   $-1\r\n

Counts and lengths are parsed strictly: anything that is not a
non-negative decimal integer is malformed input, and so is a bulk length
above settings.MAX_BULK_LENGTH.
"""

import asyncio
import logging
from asyncio import StreamReader
from typing import Any, List, Optional

from .commands import Command, Reply, ReplyType
from .errors import ConnectionClosedError, MalformedInputError
from ..config.settings import settings

logger = logging.getLogger(__name__)

ENCODING = "utf-8"
# Arbitrary client bytes survive a decode/encode round trip
ENCODING_ERRORS = "surrogateescape"

CRLF = b"\r\n"
MAX_NESTING = 32


def decode_text(data: bytes) -> str:
    return data.decode(ENCODING, ENCODING_ERRORS)


def encode_text(text: str) -> bytes:
    return text.encode(ENCODING, ENCODING_ERRORS)


class ProtocolParser:
    """
    Decoder for one client connection.

    The parser owns the connection's StreamReader for the whole session and
    returns one Command per read_command() call.

    Usage:
        parser = ProtocolParser(reader, peer=writer)
        while True:
            command = await parser.read_command()
            if command is None:
                continue  # blank line or empty array
            ...
    """

    def __init__(self, reader: StreamReader, peer: Any = None):
        """
        Args:
            reader: Buffered byte stream of the connection
            peer: Opaque connection handle attached to every decoded Command
        """
        self.reader = reader
        self.peer = peer

    async def read_command(self) -> Optional[Command]:
        """
        Read and decode the next command from the stream.

        Returns:
            The decoded Command, or None if the request carried no arguments
            (blank inline line, empty array); the caller should read again.

        Raises:
            ConnectionClosedError: the stream ended
            MalformedInputError: the request cannot be decoded
        """
        marker = await self._read_exactly(1)

        if marker == b"*":
            args = await self._read_array(depth=1)
            logger.debug(f"Decoded multi-bulk request with {len(args)} arguments")
        else:
            if marker == b"\n":
                line = b""
            else:
                line = marker + await self._read_line()
            args = self.tokenize_inline(decode_text(line.rstrip(b"\r")))
            logger.debug(f"Decoded inline request: {args!r}")

        if not args:
            return None
        return Command(args=args, peer=self.peer)

    async def _read_exactly(self, count: int) -> bytes:
        try:
            return await self.reader.readexactly(count)
        except asyncio.IncompleteReadError as exc:
            raise ConnectionClosedError("connection closed by client") from exc

    async def _read_line(self) -> bytes:
        """Read up to and including the next newline; return the line without its terminator."""
        try:
            line = await self.reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as exc:
            raise ConnectionClosedError("connection closed by client") from exc
        except asyncio.LimitOverrunError as exc:
            raise MalformedInputError("Protocol error: too big request line") from exc

        line = line[:-1]
        if line.endswith(b"\r"):
            line = line[:-1]
        return line

    @staticmethod
    def _parse_length(raw: bytes, message: str) -> int:
        # More digits than any accepted count or length
        if not raw.isdigit() or len(raw) > 18:
            raise MalformedInputError(f"Protocol error: {message}")
        return int(raw)

    async def _read_array(self, depth: int) -> List[str]:
        """Decode the elements of a multi-bulk array whose '*' marker was already consumed."""
        if depth > MAX_NESTING:
            raise MalformedInputError("Protocol error: too many nested arrays")

        count = self._parse_length(await self._read_line(), "invalid multibulk length")
        args: List[str] = []

        for _ in range(count):
            marker = await self._read_exactly(1)

            if marker == b":":
                args.append(decode_text(await self._read_line()))
            elif marker == b"$":
                args.append(await self._read_bulk())
            elif marker == b"*":
                # Nested arrays are flattened into the enclosing command
                args.extend(await self._read_array(depth + 1))
            else:
                raise MalformedInputError(
                    f"Protocol error: expected '$', ':' or '*', got '{decode_text(marker)}'"
                )

        return args

    async def _read_bulk(self) -> str:
        length = self._parse_length(await self._read_line(), "invalid bulk length")
        if length > settings.MAX_BULK_LENGTH:
            raise MalformedInputError("Protocol error: invalid bulk length")
        payload = await self._read_exactly(length)
        # The declared length is authoritative; anything left before the
        # terminator is dropped.
        trailing = await self._read_line()
        if trailing:
            logger.debug(f"Discarded {len(trailing)} bytes after bulk payload")
        return decode_text(payload)

    @staticmethod
    def tokenize_inline(line: str) -> List[str]:
        """
        Split an inline request into arguments.

        Tokens are separated by spaces; runs of spaces produce no empty
        arguments. A token starting with a double quote extends to the next
        unescaped double quote, keeping spaces, and \\" inside it stands
        for a literal quote.

        Examples:
            >>> ProtocolParser.tokenize_inline('SET "a b" 1')
            ['SET', 'a b', '1']

        Raises:
            MalformedInputError: a quoted token is never closed
        """
        args: List[str] = []
        pos = 0
        end = len(line)

        while pos < end:
            char = line[pos]
            if char == " ":
                pos += 1
                continue

            if char == '"':
                pos += 1
                chunks = []
                while pos < end and line[pos] != '"':
                    if line[pos] == "\\" and line[pos + 1:pos + 2] == '"':
                        chunks.append('"')
                        pos += 2
                    else:
                        chunks.append(line[pos])
                        pos += 1
                if pos >= end:
                    raise MalformedInputError("unbalanced quotes in request")
                pos += 1
                args.append("".join(chunks))
                continue

            stop = line.find(" ", pos)
            if stop == -1:
                stop = end
            args.append(line[pos:stop])
            pos = stop

        return args


def format_response(reply: Reply) -> bytes:
    """
    Format a Reply into its wire representation.

    Examples:
        >>> format_response(Reply.ok())
        b'+OK\\r\\n'
        >>> format_response(Reply.bulk("hello"))
        b'$5\\r\\nhello\\r\\n'
        >>> format_response(Reply.null_bulk())
        b'$-1\\r\\n'
    """
    prefix = reply.type.value.encode()

    if reply.type == ReplyType.BULK:
        if reply.value is None:
            return b"$-1" + CRLF
        payload = encode_text(reply.value)
        return prefix + str(len(payload)).encode() + CRLF + payload + CRLF

    return prefix + encode_text(str(reply.value)) + CRLF
