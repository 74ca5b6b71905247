"""Local chat store, JSON HTTP API and polling client."""

__version__ = "0.1.0"
