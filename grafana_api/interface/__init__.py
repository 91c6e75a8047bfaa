"""
High-level client.

This module contains the interface a cluster uses:
- GrafanaAPIClient (connect, send stats/logs/errors, remote eval, events)
"""

from .client import GrafanaAPIClient

__all__ = [
    "GrafanaAPIClient",
]
