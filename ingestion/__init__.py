"""Social platform ingestion engine."""

__version__ = "1.0.0"
