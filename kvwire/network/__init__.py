"""Network module for kvwire."""

from .tcp_server import KVServer, run_server

__all__ = ["KVServer", "run_server"]
