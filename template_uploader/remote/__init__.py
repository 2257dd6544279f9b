"""Client for the remote template management service."""

from .client import RemoteClient

__all__ = ["RemoteClient"]
