"""
Feed Reader - Collaborator Clients

Adapters for the queue publisher, the dedup TTL store and the telemetry sink.
Workers depend only on the contracts in feedreader.clients.protocols.
"""
