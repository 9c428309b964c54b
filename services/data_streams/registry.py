"""
Normalizer Registry

Central registry of payload normalizers, keyed by provider name.
"""

from typing import Dict, List, Optional, Type
import logging

from .base import PayloadNormalizer

logger = logging.getLogger(__name__)


class NormalizerRegistry:
    """
    Registry for all payload normalizers.

    Usage:
        @NormalizerRegistry.register
        class TerraNormalizer(PayloadNormalizer):
            ...

        normalizer = NormalizerRegistry.get("TERRA")
    """

    _normalizers: Dict[str, PayloadNormalizer] = {}

    @classmethod
    def register(cls, normalizer_class: Type[PayloadNormalizer]) -> Type[PayloadNormalizer]:
        """Register a normalizer class. Usable as a decorator."""
        instance = normalizer_class()
        provider_name = instance.provider_name

        if provider_name in cls._normalizers:
            logger.warning(f"Overwriting existing normalizer for provider: {provider_name}")

        cls._normalizers[provider_name] = instance
        logger.debug(f"Registered payload normalizer: {provider_name} ({instance.display_name})")

        return normalizer_class

    @classmethod
    def get(cls, provider_name: str) -> Optional[PayloadNormalizer]:
        return cls._normalizers.get(provider_name.upper())

    @classmethod
    def require(cls, provider_name: str) -> PayloadNormalizer:
        normalizer = cls.get(provider_name)
        if normalizer is None:
            raise LookupError(f"No payload normalizer registered for provider: {provider_name}")
        return normalizer

    @classmethod
    def list_providers(cls) -> List[Dict[str, object]]:
        return [
            {
                "provider_name": n.provider_name,
                "display_name": n.display_name,
                "data_types": n.data_types,
            }
            for n in cls._normalizers.values()
        ]
