"""Airdrop ingestion pipeline: collect, normalize, deduplicate and schedule."""

__version__ = "0.1.0"
