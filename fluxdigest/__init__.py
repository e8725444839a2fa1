"""Self-hosted AI digests for Miniflux subscriptions."""

__version__ = "0.1.0"
