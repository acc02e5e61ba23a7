"""Exception hierarchy for the recipe engine.

Engine errors can declare their own retry classification through the
``transient`` and ``category`` class attributes. The error classifier in
``recipe_engine.ingestion.retry`` honours those before falling back to
exception-type rules for third-party errors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from recipe_engine.core.schema import ErrorClassification


class RecipeEngineError(Exception):
    """Base class for all recipe engine errors."""

    # None means "let the classifier decide from the exception type"
    transient: bool | None = None
    category: str = "Unknown"


class ConfigurationError(RecipeEngineError):
    """Raised when a provider configuration is missing, disabled or invalid."""

    transient = False
    category = "Configuration"

    def __init__(self, message: str, provider_id: str | None = None):
        self.provider_id = provider_id
        super().__init__(message)


class NotFoundError(RecipeEngineError):
    """Raised when a requested entity does not exist."""

    transient = False
    category = "NotFound"


class BatchNotFoundError(NotFoundError):
    """Raised when no saga state exists for a batch id."""

    def __init__(self, batch_id: UUID | str):
        self.batch_id = batch_id
        super().__init__(f"Batch '{batch_id}' not found")


class ConcurrencyConflictError(RecipeEngineError):
    """Raised when a saga state write carries a stale concurrency token."""

    transient = False
    category = "ConcurrencyConflict"

    def __init__(self, batch_id: UUID | str, expected_token: int):
        self.batch_id = batch_id
        self.expected_token = expected_token
        super().__init__(
            f"Stale write for batch '{batch_id}': concurrency token {expected_token} "
            "is no longer current"
        )


class InvalidArgumentError(RecipeEngineError, ValueError):
    """Raised when a required argument is empty or malformed."""

    transient = False
    category = "InvalidInput"


class InvalidStateTransitionError(RecipeEngineError):
    """Raised when a saga state transition breaks the state machine rules."""

    transient = False
    category = "LogicError"


class OperationCancelledError(RecipeEngineError):
    """Raised when the cooperative cancellation signal fires."""

    transient = False
    category = "Cancelled"


class DiscoveryError(RecipeEngineError):
    """Raised by discovery collaborators on network or parse failure."""

    category = "Discovery"

    def __init__(
        self,
        message: str,
        provider_id: str,
        root_url: str,
        transient: bool = True,
    ):
        self.provider_id = provider_id
        self.root_url = root_url
        self.transient = transient
        super().__init__(message)


class ExtractionError(RecipeEngineError):
    """Raised by extractors. Network problems are transient, malformed pages are not."""

    def __init__(self, message: str, url: str, transient: bool = False):
        self.url = url
        self.transient = transient
        self.category = "Network" if transient else "MalformedPage"
        super().__init__(message)


class RecipeValidationError(RecipeEngineError):
    """Raised when extracted recipe data is missing required fields."""

    transient = False
    category = "DataValidation"


class ClassifiedError(RecipeEngineError):
    """
    Final error raised by the retry executor.

    Wraps the original exception (also chained as ``__cause__``) together
    with the classification that stopped the retry loop.
    """

    def __init__(
        self,
        original: BaseException,
        classification: ErrorClassification,
        attempts: int,
        operation_name: str = "operation",
    ):
        self.original = original
        self.classification = classification
        self.attempts = attempts
        self.operation_name = operation_name
        self.transient = classification.kind.value == "transient"
        self.category = classification.category
        super().__init__(
            f"{operation_name} failed after {attempts} attempt(s) "
            f"[{classification.kind.value}/{classification.category}]: {original}"
        )
