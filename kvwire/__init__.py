"""
kvwire: In-Memory Key-Value Server

A small in-memory key-value server speaking a subset of the Redis wire
protocol (inline and multi-bulk requests), built with Python asyncio.
"""

__version__ = "1.0.0"
