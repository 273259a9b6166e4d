"""
Tests for document fetching.
"""

import asyncio
import json

import httpx
import pytest
import yaml

from specwatch.core.canonical import MapNode, canonicalize
from specwatch.core.errors import FetchTimeoutError, InvalidDocumentError, UnreachableError
from specwatch.fetcher import (
    DocumentSource,
    Fetcher,
    HttpDocumentSource,
    parse_document,
    validate_document,
)

from helpers import users_api


def fetch(target, handler, **kwargs):
    source = HttpDocumentSource(transport=httpx.MockTransport(handler))
    fetcher = Fetcher(source, timeout_seconds=5, **kwargs)

    async def run():
        try:
            return await fetcher.fetch(target)
        finally:
            await source.close()

    return asyncio.run(run())


class TestParseDocument:
    """Test raw document parsing."""

    def test_json(self, api_doc):
        assert parse_document(json.dumps(api_doc).encode()) == api_doc

    def test_yaml(self, api_doc):
        assert parse_document(yaml.safe_dump(api_doc).encode()) == api_doc

    def test_invalid(self):
        with pytest.raises(InvalidDocumentError):
            parse_document(b"openapi: [3.0.0", "users")

    def test_not_utf8(self):
        with pytest.raises(InvalidDocumentError):
            parse_document(b"\xff\xfe\xfa", "users")

    def test_validate(self):
        validate_document({"swagger": "2.0", "paths": {}})
        with pytest.raises(InvalidDocumentError):
            validate_document(["openapi"])
        with pytest.raises(InvalidDocumentError):
            validate_document({"info": {}})
        with pytest.raises(InvalidDocumentError) as exc_info:
            validate_document({"openapi": "3.0.0", "paths": []}, "users")
        assert exc_info.value.target_id == "users"
        assert exc_info.value.retryable is False


class TestFetcher:
    """Test fetching over HTTP."""

    def test_fetch_json(self, target, api_doc):
        def handler(request):
            assert str(request.url) == target.url
            assert request.headers["User-Agent"].startswith("specwatch/")
            return httpx.Response(200, json=api_doc)

        document = fetch(target, handler)

        assert isinstance(document, MapNode)
        assert document == canonicalize(users_api())

    def test_fetch_yaml(self, target, api_doc):
        document = fetch(target, lambda request: httpx.Response(200, text=yaml.safe_dump(api_doc)))
        assert document == canonicalize(users_api())

    def test_order_significant_fields(self, target, api_doc):
        api_doc["servers"] = [{"url": "https://a"}, {"url": "https://b"}]

        document = fetch(
            target,
            lambda request: httpx.Response(200, json=api_doc),
            order_significant_fields=["servers"],
        )

        assert document["servers"].ordered is True

    def test_server_error_is_unreachable(self, target):
        with pytest.raises(UnreachableError) as exc_info:
            fetch(target, lambda request: httpx.Response(500))
        assert exc_info.value.retryable is True
        assert "HTTP 500" in str(exc_info.value)

    def test_connection_error_is_unreachable(self, target):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UnreachableError):
            fetch(target, handler)

    def test_timeout(self, target):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(FetchTimeoutError) as exc_info:
            fetch(target, handler)
        assert exc_info.value.reason == "timeout"

    def test_slow_source_hits_overall_deadline(self, target):
        class TricklingSource(DocumentSource):
            """Never finishes: each chunk arrives within any per-read timeout."""

            async def get(self, url, timeout):
                while True:
                    await asyncio.sleep(0.01)

        fetcher = Fetcher(TricklingSource(), timeout_seconds=0.1)

        with pytest.raises(FetchTimeoutError) as exc_info:
            asyncio.run(asyncio.wait_for(fetcher.fetch(target), timeout=5))
        assert exc_info.value.retryable is True

    def test_invalid_document(self, target):
        with pytest.raises(InvalidDocumentError) as exc_info:
            fetch(target, lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        assert exc_info.value.target_id == "users"
