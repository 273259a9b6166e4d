"""
Fetcher - retrieves a target's interface description and canonicalizes it.

Each call is a single attempt; retrying is the poller's job.
"""

import asyncio
import json
import logging
from typing import Any, Iterable

import httpx
import yaml

from specwatch.core.canonical import CanonicalDocument, canonicalize
from specwatch.core.errors import (
    FetchTimeoutError,
    InvalidDocumentError,
    UnreachableError,
)
from specwatch.core.models import MonitoredTarget
from specwatch.fetcher.source import DocumentSource

logger = logging.getLogger(__name__)


def parse_document(raw: bytes, target_id: str = "") -> Any:
    """
    Parse a raw interface description as JSON, falling back to YAML.

    Args:
        raw: Raw document bytes
        target_id: Target identifier used in error messages

    Returns:
        Parsed document

    Raises:
        InvalidDocumentError: If the document is neither valid JSON nor YAML
    """
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise InvalidDocumentError(target_id, "document is not UTF-8 text", e)

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise InvalidDocumentError(target_id, f"document is neither JSON nor YAML: {e}", e)


def validate_document(document: Any, target_id: str = "") -> None:
    """
    Check that a parsed document looks like an OpenAPI/Swagger description.

    Raises:
        InvalidDocumentError: If the document is not an interface description
    """
    if not isinstance(document, dict):
        raise InvalidDocumentError(
            target_id, f"document root must be an object, got {type(document).__name__}"
        )
    if "openapi" not in document and "swagger" not in document:
        raise InvalidDocumentError(target_id, "missing 'openapi' or 'swagger' version field")
    if not isinstance(document.get("paths", {}), dict):
        raise InvalidDocumentError(target_id, "'paths' must be an object")


class Fetcher:
    """
    Retrieves interface descriptions and normalizes them into canonical documents.
    """

    def __init__(
        self,
        source: DocumentSource,
        timeout_seconds: float = 30.0,
        order_significant_fields: Iterable[str] = (),
    ):
        """
        Initialize fetcher.

        Args:
            source: Document source used for retrieval
            timeout_seconds: Deadline for one complete fetch
            order_significant_fields: Array keys whose order is significant
        """
        self.source = source
        self.timeout_seconds = timeout_seconds
        self.order_significant_fields = tuple(order_significant_fields)

    async def fetch(self, target: MonitoredTarget) -> CanonicalDocument:
        """
        Fetch and canonicalize the current description of a target.

        Args:
            target: Target to fetch

        Returns:
            Canonical document

        Raises:
            FetchTimeoutError: If the source did not answer in time
            UnreachableError: On connection errors or error status codes
            InvalidDocumentError: If the document cannot be parsed or validated
        """
        try:
            # The source timeout bounds each phase; wait_for bounds the whole fetch
            raw = await asyncio.wait_for(
                self.source.get(target.url, self.timeout_seconds), self.timeout_seconds
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise FetchTimeoutError(
                target.target_id, f"timed out after {self.timeout_seconds}s fetching {target.url}", e
            )
        except httpx.HTTPStatusError as e:
            raise UnreachableError(
                target.target_id, f"HTTP {e.response.status_code} from {target.url}", e
            )
        except httpx.HTTPError as e:
            raise UnreachableError(target.target_id, f"cannot reach {target.url}: {e}", e)

        document = parse_document(raw, target.target_id)
        validate_document(document, target.target_id)

        canonical = canonicalize(document, self.order_significant_fields)
        logger.debug(f"Fetched {target.target_id}: {len(document.get('paths') or {})} paths")
        return canonical
