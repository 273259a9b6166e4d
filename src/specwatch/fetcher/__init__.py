"""
Fetcher module.

Retrieves interface descriptions over HTTP and normalizes them into
canonical documents.
"""

from specwatch.fetcher.fetcher import Fetcher, parse_document, validate_document
from specwatch.fetcher.source import DocumentSource, HttpDocumentSource

__all__ = [
    "Fetcher",
    "parse_document",
    "validate_document",
    "DocumentSource",
    "HttpDocumentSource",
]
