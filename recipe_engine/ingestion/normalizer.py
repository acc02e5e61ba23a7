"""
Ingredient Normalizer Module
============================

Maps provider-specific ingredient codes to canonical ingredient names.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from sqlalchemy.orm import Session

from recipe_engine.db.repositories import IngredientMappingRepository

logger = logging.getLogger(__name__)


def clean_code(code: str) -> str:
    """Trim whitespace; codes are otherwise compared verbatim."""
    return code.strip()


class IngredientNormalizer(ABC):
    """Canonicalizes provider ingredient codes. Unmapped codes return None."""

    @abstractmethod
    async def normalize(self, provider_id: str, provider_code: str) -> str | None:
        """Canonical name for one code, or None if unmapped."""

    async def normalize_batch(
        self, provider_id: str, provider_codes: list[str]
    ) -> dict[str, str | None]:
        """
        Canonical names for many codes.

        Returns:
            Dict keyed by every (cleaned) input code; unmapped codes map to None.
        """
        result: dict[str, str | None] = {}
        for code in provider_codes:
            cleaned = clean_code(code)
            if cleaned and cleaned not in result:
                result[cleaned] = await self.normalize(provider_id, cleaned)
        return result


class MappingIngredientNormalizer(IngredientNormalizer):
    """Normalizer backed by the ``ingredient_mappings`` table."""

    def __init__(self, session: Session):
        self.session = session
        self._repo = IngredientMappingRepository(session)

    async def normalize(self, provider_id: str, provider_code: str) -> str | None:
        cleaned = clean_code(provider_code)
        if not cleaned:
            return None
        return self._repo.get_mappings(provider_id, [cleaned]).get(cleaned)

    async def normalize_batch(
        self, provider_id: str, provider_codes: list[str]
    ) -> dict[str, str | None]:
        cleaned = list(dict.fromkeys(c for c in (clean_code(p) for p in provider_codes) if c))
        mappings = self._repo.get_mappings(provider_id, cleaned)
        missing = [code for code in cleaned if code not in mappings]
        if missing:
            logger.debug(f"{len(missing)} unmapped ingredient code(s) for '{provider_id}'")
        return {code: mappings.get(code) for code in cleaned}

    def add_mapping(self, provider_id: str, provider_code: str, canonical_name: str) -> None:
        """Create or update a mapping and commit."""
        self._repo.set_mapping(provider_id, clean_code(provider_code), canonical_name.strip())
        self.session.commit()


class DictIngredientNormalizer(IngredientNormalizer):
    """In-memory normalizer: ``{provider_id: {code: canonical_name}}``."""

    def __init__(self, mappings: dict[str, dict[str, str]] | None = None):
        self._mappings = mappings or {}

    async def normalize(self, provider_id: str, provider_code: str) -> str | None:
        return self._mappings.get(provider_id, {}).get(clean_code(provider_code))
