"""
specwatch - API change monitoring and notification engine

This package periodically fetches the OpenAPI/Swagger description of
monitored APIs, stores canonical snapshots, diffs consecutive snapshots,
classifies every change by severity and breaking impact, writes an immutable
changelog entry per comparison and fans the entry out to subscribers.

Main modules:
- fetcher: document retrieval and canonicalization
- snapshots: snapshot persistence and retention
- change_monitor: diff engine, severity classifier, changelog writer, poller
- notifications: dispatcher, delivery worker and channel providers
- registry: monitored targets, subscribers and notification preferences
- ui: read-only query API
"""

__version__ = "0.3.0"
__author__ = "specwatch maintainers"

__all__ = ["__version__", "__author__"]
