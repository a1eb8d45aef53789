"""
Supporting services.

- DetailCache: TTL cache for ESI detail lookups
- InformationService: cached ESI alliance/corporation lookups
"""

from .cache import DetailCache
from .information import InformationService

__all__ = ["DetailCache", "InformationService"]
