"""Database initialization and persistence layer."""

from recipe_engine.db.engine import (
    get_database_url,
    get_engine,
    get_session,
    init_db,
    reset_engine,
    run_migrations,
)
from recipe_engine.db.models import (
    Base,
    IngredientMappingDB,
    RecipeDB,
    RecipeFingerprintDB,
    SagaStateDB,
)
from recipe_engine.db.repositories import (
    FingerprintRepository,
    IngredientMappingRepository,
    RecipeRepository,
    SagaStateRepository,
)

__all__ = [
    # Engine
    "get_database_url",
    "get_engine",
    "get_session",
    "init_db",
    "reset_engine",
    "run_migrations",
    # Models
    "Base",
    "SagaStateDB",
    "RecipeFingerprintDB",
    "RecipeDB",
    "IngredientMappingDB",
    # Repositories
    "SagaStateRepository",
    "FingerprintRepository",
    "RecipeRepository",
    "IngredientMappingRepository",
]
