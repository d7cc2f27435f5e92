"""WhatsApp message ingestion and archival service."""

__version__ = "1.0.0"
