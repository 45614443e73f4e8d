"""
PolyTracking Watchlist Client

Keeps a local mirror of a user's market subscriptions in sync with the
PolyTracking backend, applying notification toggles optimistically and
refreshing from the server on a fixed interval.
"""

__version__ = "0.1.0"
