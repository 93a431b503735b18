"""
Feed Reader - Workers

Per-feed file processing: selection, duplicate guard, parsing, rate limiting,
archival, stats reporting and the FeedWorker loop that drives them.

Run all configured feeds via:
    python -m feedreader
"""
