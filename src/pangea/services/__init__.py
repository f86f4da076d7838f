"""Base classes for Pangea service clients."""

from .base import AsyncServiceBase, ServiceBase

__all__ = ["ServiceBase", "AsyncServiceBase"]
