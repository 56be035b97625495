"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import asyncio
import socket
import pytest
import pytest_asyncio
from contextlib import closing
from typing import AsyncGenerator

from kvwire.cache.reaper import ExpirationReaper
from kvwire.cache.store import KVStore
from kvwire.protocol.executor import CommandExecutor
from kvwire.network.tcp_server import KVServer


def find_free_port() -> int:
    """Find an available port for testing."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(('', 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


def encode_command(*args: str) -> bytes:
    """Encode arguments as a multi-bulk request."""
    out = [f"*{len(args)}\r\n".encode()]
    for arg in args:
        data = arg.encode()
        out.append(f"${len(data)}\r\n".encode() + data + b"\r\n")
    return b"".join(out)


def make_reader(data: bytes) -> asyncio.StreamReader:
    """Create a StreamReader pre-fed with data and closed at its end."""
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def store() -> KVStore:
    """Create a fresh KVStore instance."""
    return KVStore()


@pytest.fixture
def reaper(store: KVStore) -> ExpirationReaper:
    """Create a reaper over the store fixture with a short sweep interval."""
    return ExpirationReaper(store, interval=0.1)


@pytest.fixture
def executor(store: KVStore, reaper: ExpirationReaper) -> CommandExecutor:
    """Create a CommandExecutor over the store fixture."""
    return CommandExecutor(store, reaper)


# ============================================================================
# Server Fixtures
# ============================================================================

@pytest.fixture
def server_port() -> int:
    """Get a free port for server testing."""
    return find_free_port()


@pytest_asyncio.fixture
async def server(server_port: int) -> AsyncGenerator[KVServer, None]:
    """
    Create and start a server instance for testing.

    This fixture:
    1. Creates a KVServer on a random free port
    2. Starts it in a background task
    3. Yields the server for testing
    4. Cleans up after the test
    """
    srv = KVServer(host='127.0.0.1', port=server_port, reaper_interval=0.2)

    # Start server in background task
    server_task = asyncio.create_task(srv.start())

    # Wait for server to be ready
    await asyncio.sleep(0.1)

    yield srv

    # Cleanup
    await srv.stop()
    server_task.cancel()
    try:
        await server_task
    except asyncio.CancelledError:
        pass


# ============================================================================
# Client Fixtures
# ============================================================================

class AsyncClient:
    """
    Helper class for testing server interactions.

    Sends inline or multi-bulk requests and returns complete raw replies.

    Usage:
        async with AsyncClient('127.0.0.1', 6380) as client:
            assert await client.send_command("SET key value") == b"+OK\\r\\n"
            assert await client.send_args("GET", "key") == b"$5\\r\\nvalue\\r\\n"
    """

    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port
        self.reader = None
        self.writer = None

    async def connect(self) -> None:
        """Establish connection to server."""
        self.reader, self.writer = await asyncio.open_connection(
            self.host, self.port
        )

    async def disconnect(self) -> None:
        """Close connection to server."""
        if self.writer:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except Exception:
                pass

    async def send_raw(self, data: bytes) -> bytes:
        """Send raw bytes and return one reply."""
        self.writer.write(data)
        await self.writer.drain()
        return await self.read_reply()

    async def send_command(self, command: str) -> bytes:
        """
        Send an inline command and receive the reply.

        Args:
            command: Command line (CRLF will be added)
        """
        return await self.send_raw(command.encode() + b"\r\n")

    async def send_args(self, *args: str) -> bytes:
        """Send a multi-bulk command and receive the reply."""
        return await self.send_raw(encode_command(*args))

    async def read_reply(self) -> bytes:
        """Read one complete reply, including a bulk payload."""
        header = await self.reader.readline()
        if header.startswith(b"$") and not header.startswith(b"$-1"):
            length = int(header[1:].strip())
            return header + await self.reader.readexactly(length + 2)
        return header

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()


@pytest.fixture
def client_factory(server_port: int):
    """
    Factory fixture to create test clients.

    Usage:
        async def test_something(server, client_factory):
            async with client_factory() as client:
                response = await client.send_command("GET key")
    """
    def factory() -> AsyncClient:
        return AsyncClient('127.0.0.1', server_port)
    return factory


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
