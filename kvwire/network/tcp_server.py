"""
Async TCP Server Module

This module implements the asynchronous TCP server for kvwire.

Each accepted connection becomes one session: a coroutine that decodes a
command, executes it, writes the full reply and only then reads the next
command. The KVStore and the ExpirationReaper are shared by all sessions
and outlive them.
"""

import asyncio
import logging
from asyncio import StreamReader, StreamWriter
from typing import Optional, Set

from ..cache.reaper import ExpirationReaper
from ..cache.store import KVStore
from ..config.settings import settings
from ..protocol.commands import Reply
from ..protocol.errors import ConnectionClosedError, MalformedInputError
from ..protocol.executor import CommandExecutor
from ..protocol.parser import ProtocolParser, format_response

logger = logging.getLogger(__name__)


class KVServer:
    """
    Asynchronous TCP server for the kvwire service.

    Features:
    - Non-blocking I/O with asyncio, one task per client connection
    - Inline and multi-bulk requests on the same connection
    - Shared KVStore with background expiration
    - Graceful error handling and connection cleanup

    Usage:
        server = KVServer(host='0.0.0.0', port=6380)
        await server.start()  # Runs forever

    Attributes:
        host: Server bind address (e.g., '0.0.0.0')
        port: Server port number (e.g., 6380)
        store: The KVStore instance shared by all connections
        reaper: The ExpirationReaper sweeping the store
        executor: The CommandExecutor shared by all connections
    """

    def __init__(
            self,
            host: str = None,
            port: int = None,
            store: KVStore = None,
            reaper_interval: float = None,
    ):
        """
        Initialize the server.

        Args:
            host: Bind address (default from settings)
            port: Port number (default from settings)
            store: KVStore instance (creates new one if not provided)
            reaper_interval: Seconds between expiration sweeps (default from settings)
        """
        self.host = host if host is not None else settings.HOST
        self.port = port if port is not None else settings.PORT
        self.store = store if store is not None else KVStore()
        self.reaper = ExpirationReaper(self.store, interval=reaper_interval)
        self.executor = CommandExecutor(self.store, self.reaper)

        # Server state
        self._server: Optional[asyncio.Server] = None
        self._running = False
        self._connection_count = 0
        self._total_requests = 0
        self._clients: Set[StreamWriter] = set()

    async def handle_client(
            self,
            reader: StreamReader,
            writer: StreamWriter
    ) -> None:
        """
        Handle a single client connection.

        Protocol flow:
            1. Decode a command with the session's ProtocolParser
            2. Execute it with the shared CommandExecutor
            3. Write and drain the reply
            4. Repeat until QUIT, end of stream or malformed input

        Malformed input gets an error reply before the connection is
        closed; a closed or reset connection ends the session silently.
        """
        addr = writer.get_extra_info('peername')
        self._connection_count += 1
        logger.debug(f"Client connected: {addr}")

        self._clients.add(writer)
        parser = ProtocolParser(reader, peer=writer)

        try:
            while True:
                try:
                    command = await parser.read_command()
                except ConnectionClosedError:
                    logger.debug(f"Client disconnected: {addr}")
                    break
                except MalformedInputError as exc:
                    logger.warning(f"Malformed request from {addr}: {exc}")
                    writer.write(format_response(Reply.error(str(exc))))
                    await writer.drain()
                    break

                if command is None:
                    continue

                self._total_requests += 1
                logger.debug(f"Command received from {addr}: {command.args!r}")

                reply, keep_open = self.executor.execute(command)
                writer.write(reply)
                await writer.drain()

                if not keep_open:
                    logger.debug(f"Client requested quit: {addr}")
                    break

        except (ConnectionResetError, BrokenPipeError):
            logger.debug(f"Connection reset by client: {addr}")
        except Exception as exc:  # Log unexpected errors but keep server alive
            logger.exception(f"Error handling client {addr}: {exc}")
        finally:
            self._clients.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError) as exc:
                logger.debug(f"Error closing connection {addr}: {exc}")
            logger.debug(f"Closed connection {addr}")

    async def start(self) -> None:
        """
        Start the server and begin accepting connections.

        Starts the expiration reaper, then serves forever (or until
        cancelled). Call it from asyncio.run() or an existing event loop.

        Example:
            server = KVServer(port=6380)
            asyncio.run(server.start())
        """
        if self._running:
            return

        self._server = await asyncio.start_server(
            self.handle_client,
            self.host,
            self.port,
            limit=settings.READ_BUFFER_SIZE,
        )
        self._running = True
        self.reaper.start()

        addrs = ', '.join(str(sock.getsockname()) for sock in self._server.sockets or [])
        logger.info(f"Listening on {addrs}")

        try:
            async with self._server:
                await self._server.serve_forever()
        except asyncio.CancelledError:
            # Expected during shutdown/fixture cleanup
            logger.debug("Server start cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        """
        Stop the server gracefully.

        Closes the listener, stops the reaper and waits for shutdown.
        """
        await self.reaper.stop()

        if self._server is None:
            return

        self._server.close()
        for writer in list(self._clients):
            writer.close()
        try:
            await self._server.wait_closed()
        finally:
            self._server = None
            self._running = False

    def is_running(self) -> bool:
        """Check if the server is currently running."""
        return self._running

    def get_stats(self) -> dict:
        """
        Get server statistics.

        Returns:
            Dictionary with server stats including connection counts,
            request counts, and store statistics.
        """
        return {
            "running": self._running,
            "host": self.host,
            "port": self.port,
            "total_connections": self._connection_count,
            "total_requests": self._total_requests,
            "reaped_keys": self.reaper.total_reaped,
            "store_stats": self.store.get_stats(),
        }


async def run_server(host: str = None, port: int = None) -> None:
    """
    Convenience function to create and run the server.

    Usage:
        asyncio.run(run_server(port=6380))
    """
    server = KVServer(host=host, port=port)

    try:
        await server.start()
    except asyncio.CancelledError:
        logger.info("Server shutdown requested")
    finally:
        await server.stop()
