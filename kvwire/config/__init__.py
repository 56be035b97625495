"""Configuration module for kvwire."""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
