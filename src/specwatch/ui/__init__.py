"""
User interface and API module.

Provides the read-only REST API over changelog entries, snapshot comparisons,
change statistics and target health.
"""

__all__ = ["changelog_api", "http_server"]
