"""Feed Reader - delimited feed file ingestion into a message queue."""

__version__ = "0.1.0"
