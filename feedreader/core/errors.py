"""
Feed Reader - Error Types

Typed exceptions raised by the worker and its collaborator adapters.

Taxonomy:
- FileProcessingError: file-level failure (open, read, archive, cache write).
  Caught by the worker loop, reported as a failed file stat, followed by backoff.
- PublishError / QueueRpcNotFound: queue publish failures. Contained per line
  when publishing records, file-level when publishing the summary.
- CacheError: TTL store failures.
- ConfigurationError: invalid settings or feed configuration. Only raised at
  bootstrap; the runner exits on it.
"""

from __future__ import annotations


class FeedReaderError(Exception):
    """Base exception for feed reader errors."""

    pass


class ConfigurationError(FeedReaderError):
    """Raised when settings or a feed configuration cannot be loaded."""

    pass


class FileProcessingError(FeedReaderError):
    """Raised when a selected file cannot be processed to completion."""

    def __init__(self, filename: str, message: str):
        self.filename = filename
        super().__init__(f"Failed to process file '{filename}': {message}")


class PublishError(FeedReaderError):
    """Raised when the queue rejects or fails a publish request."""

    def __init__(self, topic: str, message: str):
        self.topic = topic
        super().__init__(f"Publish to topic '{topic}' failed: {message}")


class QueueRpcNotFound(PublishError):
    """Raised when the queue RPC endpoint is missing."""

    def __init__(self, topic: str):
        super().__init__(topic, "publish_message RPC not found")


class CacheError(FeedReaderError):
    """Raised when the TTL store cannot be read or written."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Cache operation on '{key}' failed: {message}")
