"""Enums for recipe processing state and error classification."""

from enum import Enum


class SagaStatus(str, Enum):
    """Lifecycle status of a processing saga (one per batch)."""

    DISCOVERING = "discovering"
    FINGERPRINTING = "fingerprinting"
    PROCESSING = "processing"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Completed and failed sagas accept no further writes."""
        return self in (SagaStatus.COMPLETED, SagaStatus.FAILED)


class ErrorKind(str, Enum):
    """Retry classification of a failure."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


class DiscoveryStrategy(str, Enum):
    """How a provider's candidate recipe URLs are found."""

    STATIC = "static"  # configured seed URLs
    SITEMAP = "sitemap"  # sitemap.xml <loc> entries
    TEST = "test"  # synthetic, no network


class BatchCompletionReason(str, Enum):
    """Why a batch stopped."""

    NOT_COMPLETE = "not_complete"
    ALL_URLS_ATTEMPTED = "all_urls_attempted"
    TIME_WINDOW_EXCEEDED = "time_window_exceeded"
    NO_URLS_DISCOVERED = "no_urls_discovered"
    FAILED = "failed"
