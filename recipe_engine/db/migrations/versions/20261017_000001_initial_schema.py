"""Initial schema for the recipe engine.

Revision ID: 0001
Revises:
Create Date: 2026-10-17

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create saga_states table
    op.create_table(
        "saga_states",
        sa.Column("batch_id", sa.String(36), primary_key=True),
        sa.Column("provider_id", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("batch_size", sa.Integer(), nullable=False),
        sa.Column("pending_urls_json", sa.Text(), default="[]"),
        sa.Column("processed_urls_json", sa.Text(), default="[]"),
        sa.Column("failed_urls_json", sa.Text(), default="[]"),
        sa.Column("processed_count", sa.Integer(), default=0),
        sa.Column("skipped_count", sa.Integer(), default=0),
        sa.Column("failed_count", sa.Integer(), default=0),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("deadline", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("partial", sa.Boolean(), default=False),
        sa.Column("completion_reason", sa.String(30), default="not_complete"),
        sa.Column("error_category", sa.String(50), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("concurrency_token", sa.Integer(), nullable=False, default=0),
    )
    op.create_index("ix_saga_states_provider_id", "saga_states", ["provider_id"])
    op.create_index("ix_saga_states_status", "saga_states", ["status"])

    # Create recipe_fingerprints table (append-only)
    op.create_table(
        "recipe_fingerprints",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("fingerprint_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("provider_id", sa.String(100), nullable=False),
        sa.Column("recipe_url", sa.String(2000), nullable=False),
        sa.Column("recipe_id", sa.String(36), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_recipe_fingerprints_provider_url",
        "recipe_fingerprints",
        ["provider_id", "recipe_url"],
    )
    op.create_index("ix_recipe_fingerprints_recipe_id", "recipe_fingerprints", ["recipe_id"])

    # Create recipes table
    op.create_table(
        "recipes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("provider_id", sa.String(100), nullable=False),
        sa.Column("source_url", sa.String(2000), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), default=""),
        sa.Column("ingredients_json", sa.Text(), default="[]"),
        sa.Column("instructions_json", sa.Text(), default="[]"),
        sa.Column("image_url", sa.String(2000), nullable=True),
        sa.Column("prep_time_minutes", sa.Integer(), nullable=True),
        sa.Column("cook_time_minutes", sa.Integer(), nullable=True),
        sa.Column("servings", sa.Integer(), nullable=True),
        sa.Column("fingerprint_hash", sa.String(64), default=""),
        sa.Column("batch_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_recipes_provider_id", "recipes", ["provider_id"])
    op.create_index("ix_recipes_title", "recipes", ["title"])
    op.create_index("ix_recipes_fingerprint_hash", "recipes", ["fingerprint_hash"])
    op.create_index("ix_recipes_batch_id", "recipes", ["batch_id"])

    # Create ingredient_mappings table
    op.create_table(
        "ingredient_mappings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("provider_id", sa.String(100), nullable=False),
        sa.Column("provider_code", sa.String(255), nullable=False),
        sa.Column("canonical_name", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "provider_id", "provider_code", name="uq_ingredient_mappings_provider_code"
        ),
    )
    op.create_index("ix_ingredient_mappings_provider_id", "ingredient_mappings", ["provider_id"])


def downgrade() -> None:
    op.drop_index("ix_ingredient_mappings_provider_id", "ingredient_mappings")
    op.drop_table("ingredient_mappings")

    op.drop_index("ix_recipes_batch_id", "recipes")
    op.drop_index("ix_recipes_fingerprint_hash", "recipes")
    op.drop_index("ix_recipes_title", "recipes")
    op.drop_index("ix_recipes_provider_id", "recipes")
    op.drop_table("recipes")

    op.drop_index("ix_recipe_fingerprints_recipe_id", "recipe_fingerprints")
    op.drop_index("ix_recipe_fingerprints_provider_url", "recipe_fingerprints")
    op.drop_table("recipe_fingerprints")

    op.drop_index("ix_saga_states_status", "saga_states")
    op.drop_index("ix_saga_states_provider_id", "saga_states")
    op.drop_table("saga_states")
