"""Concurrent package/driver staging with resilient retrieval and a shared install manifest."""

__version__ = "0.1.0"
