"""Recipe Engine - crash-recoverable recipe ingestion pipeline."""

__version__ = "0.1.0"
