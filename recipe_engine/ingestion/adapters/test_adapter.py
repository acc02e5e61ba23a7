"""
Test Adapter Module
===================

Synthetic discovery and extraction for pipeline validation without network
access.
"""

from __future__ import annotations

import asyncio
from typing import Any

from recipe_engine.core.errors import ExtractionError, OperationCancelledError
from recipe_engine.core.schema import ExtractedRecipe, RecipePreview
from recipe_engine.ingestion.adapters.base import BaseDiscovery, BaseExtractor
from recipe_engine.ingestion.registry import ProviderConfig

BASE_URL = "https://test.recipe-engine.local/recipes"

# Test recipe data covering various shapes (times missing, no image, ...)
TEST_RECIPES: list[dict[str, Any]] = [
    {
        "title": "Lemon Herb Roast Chicken",
        "description": "Whole chicken roasted with lemon, garlic and thyme.",
        "ingredients": ["CHICKEN-WHOLE", "LEMON", "GARLIC", "THYME-FRESH", "OLIVE-OIL"],
        "instructions": [
            "Heat the oven to 220C.",
            "Stuff the chicken with lemon and garlic.",
            "Rub with oil and thyme, then roast for 75 minutes.",
        ],
        "prep": 15,
        "cook": 75,
        "servings": 4,
    },
    {
        "title": "Creamy Mushroom Risotto",
        "description": "Arborio rice slowly cooked with stock, mushrooms and parmesan.",
        "ingredients": ["ARBORIO-RICE", "MUSHROOM-CHESTNUT", "VEG-STOCK", "PARMESAN", "SHALLOT"],
        "instructions": [
            "Soften the shallot and mushrooms.",
            "Toast the rice, then add stock a ladle at a time.",
            "Finish with parmesan.",
        ],
        "prep": 10,
        "cook": 30,
        "servings": 2,
    },
    {
        "title": "Spiced Lentil Soup",
        "description": "",
        "ingredients": ["RED-LENTIL", "ONION", "CUMIN", "VEG-STOCK"],
        "instructions": ["Fry onion and cumin.", "Add lentils and stock, simmer 25 minutes."],
        "prep": 5,
        "cook": 25,
        "servings": 4,
    },
    {
        "title": "Teriyaki Salmon Bowl",
        "description": "Glazed salmon over rice with quick-pickled cucumber.",
        "ingredients": ["SALMON-FILLET", "TERIYAKI-SAUCE", "JASMINE-RICE", "CUCUMBER"],
        "instructions": ["Cook the rice.", "Glaze and grill the salmon.", "Assemble the bowl."],
        "prep": 10,
        "cook": 15,
        "servings": 2,
    },
    {
        "title": "Tomato Basil Pasta",
        "description": "Quick weeknight pasta.",
        "ingredients": ["SPAGHETTI", "TOMATO-CHERRY", "BASIL", "GARLIC"],
        "instructions": ["Boil pasta.", "Blister tomatoes with garlic.", "Toss with basil."],
        "prep": None,
        "cook": None,
        "servings": None,
    },
]


def _recipes_from_config(config: dict[str, Any]) -> list[dict[str, Any]]:
    recipes = config.get("test_recipes") or TEST_RECIPES
    count = config.get("recipe_count")
    if count is not None:
        recipes = [recipes[i % len(recipes)] for i in range(int(count))]
    return list(recipes)


def _index_from_url(url: str) -> int:
    try:
        return int(url.rstrip("/").split("/")[-1])
    except ValueError as e:
        raise ExtractionError(f"Not a test recipe URL: {url}", url=url) from e


class TestDiscovery(BaseDiscovery):
    """Returns one synthetic URL per test recipe."""

    __test__ = False  # not a pytest test class

    DISCOVERY_NAME = "test"
    DISCOVERY_VERSION = "1.0.0"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        super().__init__(config)
        self._recipes = _recipes_from_config(self.config)

    async def discover_recipe_urls(
        self,
        provider: ProviderConfig,
        cancel: asyncio.Event | None = None,
    ) -> list[str]:
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError("Discovery cancelled")
        base_url = self.config.get("base_url", BASE_URL)
        return [f"{base_url}/{i}" for i in range(len(self._recipes))]


class TestExtractor(BaseExtractor):
    """
    Returns synthetic recipe data for URLs ending in a recipe index.

    ``custom_config.fail_indices`` lists indices that raise a permanent
    ``ExtractionError``, to exercise failure handling.
    """

    __test__ = False  # not a pytest test class

    EXTRACTOR_NAME = "test"
    EXTRACTOR_VERSION = "1.0.0"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        super().__init__(config)
        self._recipes = _recipes_from_config(self.config)
        self._fail_indices = {int(i) for i in self.config.get("fail_indices", [])}

    def _lookup(self, url: str) -> dict[str, Any]:
        index = _index_from_url(url)
        if index in self._fail_indices:
            raise ExtractionError(f"Malformed test recipe page: {url}", url=url)
        if not 0 <= index < len(self._recipes):
            raise ExtractionError(f"No test recipe at index {index}", url=url)
        return self._recipes[index]

    async def prefetch(self, url: str) -> RecipePreview | None:
        try:
            data = self._lookup(url)
        except ExtractionError:
            return None
        return RecipePreview(title=data["title"], description=data.get("description", ""))

    async def extract(self, url: str) -> ExtractedRecipe:
        data = self._lookup(url)
        return ExtractedRecipe(
            url=url,
            title=data["title"],
            description=data.get("description", ""),
            ingredient_codes=list(data.get("ingredients", [])),
            instructions=list(data.get("instructions", [])),
            prep_time_minutes=data.get("prep"),
            cook_time_minutes=data.get("cook"),
            servings=data.get("servings"),
        )
