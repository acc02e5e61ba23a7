"""Tests for ingredient normalization."""

import pytest
from sqlalchemy.orm import Session

from recipe_engine.ingestion.normalizer import (
    DictIngredientNormalizer,
    MappingIngredientNormalizer,
    clean_code,
)


class TestCleanCode:
    """Tests for clean_code."""

    def test_trims_only(self) -> None:
        """Test whitespace is trimmed and case is kept."""
        assert clean_code("  Onion-Red ") == "Onion-Red"


class TestMappingIngredientNormalizer:
    """Tests for the database-backed normalizer."""

    @pytest.mark.asyncio
    async def test_normalize(self, session: Session) -> None:
        """Test mapped and unmapped single codes."""
        normalizer = MappingIngredientNormalizer(session)
        normalizer.add_mapping("acme", "ONION", "onion")

        assert await normalizer.normalize("acme", " ONION ") == "onion"
        assert await normalizer.normalize("acme", "GARLIC") is None
        assert await normalizer.normalize("other", "ONION") is None
        assert await normalizer.normalize("acme", "  ") is None

    @pytest.mark.asyncio
    async def test_normalize_batch(self, session: Session) -> None:
        """Test every cleaned code is present, unmapped ones as None."""
        normalizer = MappingIngredientNormalizer(session)
        normalizer.add_mapping("acme", "ONION", "onion")
        normalizer.add_mapping("acme", "GARLIC", "garlic")

        result = await normalizer.normalize_batch("acme", ["ONION", " GARLIC", "XYZ", "ONION", ""])

        assert result == {"ONION": "onion", "GARLIC": "garlic", "XYZ": None}

    @pytest.mark.asyncio
    async def test_add_mapping_updates(self, session: Session) -> None:
        """Test re-adding a code replaces its canonical name."""
        normalizer = MappingIngredientNormalizer(session)
        normalizer.add_mapping("acme", "ONION", "onion")
        normalizer.add_mapping("acme", "ONION", " red onion ")
        assert await normalizer.normalize("acme", "ONION") == "red onion"


class TestDictIngredientNormalizer:
    """Tests for the in-memory normalizer."""

    @pytest.mark.asyncio
    async def test_normalize_batch(self) -> None:
        """Test the default batch implementation."""
        normalizer = DictIngredientNormalizer({"acme": {"ONION": "onion"}})
        result = await normalizer.normalize_batch("acme", ["ONION", "XYZ", "ONION"])
        assert result == {"ONION": "onion", "XYZ": None}

    @pytest.mark.asyncio
    async def test_unknown_provider(self) -> None:
        """Test an unknown provider maps nothing."""
        assert await DictIngredientNormalizer().normalize("nobody", "ONION") is None
