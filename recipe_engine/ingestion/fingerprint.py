"""
Fingerprint Module
==================

Content fingerprints for duplicate detection.

A fingerprint is the SHA-256 of a recipe's normalized URL, title and
description. Fingerprints of persisted recipes are kept in an append-only
ledger and checked before extraction, so a recipe seen through another URL
variant (query string, fragment, letter case) is skipped.
"""

import hashlib
import logging
from urllib.parse import urlsplit, urlunsplit
from uuid import NAMESPACE_URL, UUID, uuid5

from sqlalchemy.orm import Session

from recipe_engine.core.errors import InvalidArgumentError
from recipe_engine.core.schema import RecipeFingerprint
from recipe_engine.db.repositories import FingerprintRepository

logger = logging.getLogger(__name__)

DESCRIPTION_PREFIX_LENGTH = 200
FIELD_SEPARATOR = "\x1f"
_NIL_UUID = UUID(int=0)


def normalize_url(url: str) -> str:
    """Lowercase the URL and drop its query string and fragment."""
    parts = urlsplit(url.strip().lower())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def generate_fingerprint(url: str, title: str | None, description: str | None) -> str:
    """
    Compute a recipe's content fingerprint.

    Args:
        url: Recipe URL; case, query string and fragment are ignored.
        title: Recipe title; surrounding whitespace and case are ignored.
        description: Recipe description; only the first 200 characters
            (after trimming) count, case-insensitively.

    Returns:
        64-character lowercase hex SHA-256 digest.
    """
    normalized_title = (title or "").strip().lower()
    normalized_description = (description or "").strip()[:DESCRIPTION_PREFIX_LENGTH].lower()
    payload = FIELD_SEPARATOR.join((normalize_url(url or ""), normalized_title, normalized_description))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def recipe_id_for(provider_id: str, url: str) -> UUID:
    """Deterministic recipe id, so re-processing a URL targets the same row."""
    return uuid5(NAMESPACE_URL, f"{provider_id}:{normalize_url(url)}")


class FingerprintService:
    """Generates fingerprints and reads/writes the fingerprint ledger."""

    def __init__(self, session: Session):
        self.session = session
        self._repo = FingerprintRepository(session)

    def generate_fingerprint(self, url: str, title: str | None, description: str | None) -> str:
        return generate_fingerprint(url, title, description)

    def is_duplicate(self, fingerprint_hash: str) -> bool:
        """Check whether a fingerprint is already in the ledger."""
        if not fingerprint_hash or not fingerprint_hash.strip():
            raise InvalidArgumentError("fingerprint_hash is required")
        return self._repo.exists(fingerprint_hash)

    def store_fingerprint(
        self,
        fingerprint_hash: str,
        provider_id: str,
        recipe_url: str,
        recipe_id: UUID,
    ) -> bool:
        """
        Append a ledger entry and commit.

        Returns:
            True if stored, False if the hash was already recorded.

        Raises:
            InvalidArgumentError: if any field is empty or the recipe id is nil.
        """
        if not fingerprint_hash or not fingerprint_hash.strip():
            raise InvalidArgumentError("fingerprint_hash is required")
        if not provider_id or not provider_id.strip():
            raise InvalidArgumentError("provider_id is required")
        if not recipe_url or not recipe_url.strip():
            raise InvalidArgumentError("recipe_url is required")
        if recipe_id is None or recipe_id == _NIL_UUID:
            raise InvalidArgumentError("recipe_id is required")

        try:
            fingerprint = RecipeFingerprint(
                fingerprint_hash=fingerprint_hash,
                provider_id=provider_id,
                recipe_url=recipe_url,
                recipe_id=recipe_id,
            )
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e

        stored = self._repo.add(fingerprint)
        if stored:
            self.session.commit()
            logger.debug(f"Stored fingerprint {fingerprint_hash[:12]} for {recipe_url}")
        else:
            logger.info(f"Fingerprint {fingerprint_hash[:12]} already in ledger ({recipe_url})")
        return stored
