"""Tests for the HTTP API."""

from types import SimpleNamespace
from typing import List
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

import main
from errors import NotFoundError, SourceUnavailableError
from page_extractor import ExtractionResult
from screenshot_validator import ScreenshotValidator, ValidationCache
from store_client import AppRecord

PHONE = ["https://cdn.example.com/s/1_of_2.png", "https://cdn.example.com/s/2_of_2.png"]


@pytest.fixture
def chain(head_check, clock):
    """Stand-in for the process-wide chain with a real validator behind fake HEAD probes."""
    return SimpleNamespace(
        validator=ScreenshotValidator(head_check=head_check, cache=ValidationCache(clock=clock)),
        resolve=AsyncMock(return_value=ExtractionResult(screenshots=PHONE, source="primary")),
    )


@pytest.fixture
def lookup() -> AsyncMock:
    return AsyncMock(return_value=AppRecord(id=123, app_id="com.example.app", title="Example", screenshots=PHONE))


@pytest.fixture
def client(monkeypatch, chain, lookup) -> TestClient:
    monkeypatch.setattr(main, "get_default_chain", lambda: chain)
    monkeypatch.setattr(main, "fetch_app_record", lookup)
    return TestClient(main.app)


class TestService:
    def test_root(self, client: TestClient) -> None:
        assert client.get("/").json() == {"message": "App Screenshot Resolver API is running"}

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "validation_cache_entries": 0}


class TestResolveEndpoint:
    def test_resolves_screenshots(self, client: TestClient, chain, lookup: AsyncMock) -> None:
        response = client.get("/apps/com.example.app/screenshots", params={"country": "gb", "force_refresh": True})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["app_id"] == "123"
        assert data["bundle_id"] == "com.example.app"
        assert data["country"] == "gb"
        assert data["screenshots"] == PHONE
        assert data["source"] == "primary"
        lookup.assert_awaited_once_with("com.example.app", "gb")
        args, kwargs = chain.resolve.await_args
        assert args[1:] == ("123", "gb")
        assert kwargs["force_refresh"] is True
        assert kwargs["skip_validation"] is False
        assert kwargs["max_retries"] == main.MAX_RETRIES

    def test_fill_missing_platforms(self, client: TestClient, chain, monkeypatch) -> None:
        filled = AppRecord(id=123, app_id="com.example.app", title="Example", screenshots=PHONE, tv_screenshots=PHONE)
        fill = AsyncMock(return_value=filled)
        monkeypatch.setattr(main, "fill_missing_platforms", fill)

        client.get("/apps/com.example.app/screenshots")
        fill.assert_not_awaited()

        response = client.get("/apps/com.example.app/screenshots", params={"fill_missing": True})

        assert response.status_code == 200
        assert fill.await_args.args[1:] == ("123", "us")
        assert chain.resolve.await_args.args[0] is filled

    def test_not_found(self, client: TestClient, lookup: AsyncMock) -> None:
        lookup.side_effect = NotFoundError("App not found: 999")
        response = client.get("/apps/999/screenshots")

        assert response.status_code == 404
        assert response.json()["detail"] == "App not found: 999"

    def test_store_unavailable(self, client: TestClient, lookup: AsyncMock) -> None:
        lookup.side_effect = SourceUnavailableError("Lookup API returned HTTP 503", status_code=503)
        assert client.get("/apps/123/screenshots").status_code == 502

    def test_unexpected_error(self, client: TestClient, chain) -> None:
        chain.resolve.side_effect = RuntimeError("boom")
        response = client.get("/apps/123/screenshots")

        assert response.status_code == 500
        assert "boom" in response.json()["detail"]

    def test_max_retries_bounded(self, client: TestClient) -> None:
        assert client.get("/apps/123/screenshots", params={"max_retries": 9}).status_code == 422


class TestListEndpoints:
    def test_analyze(self, client: TestClient, sequence_urls: List[str]) -> None:
        response = client.post("/analyze", json={"urls": sequence_urls, "platform": "phone"})

        assert response.status_code == 200
        assert response.json()["strategy"] == "respect_sequence"

    def test_deduplicate(self, client: TestClient, sequence_urls: List[str]) -> None:
        data = client.post("/deduplicate", json={"urls": sequence_urls}).json()

        assert data["input_count"] == 4
        assert data["output_count"] == 3
        assert data["screenshots"][0] == "a/1_of_3_new.jpg"

    def test_filter(self, client: TestClient) -> None:
        urls = ["a/3_of_3.jpg", "a/1_of_3.jpg", "a/2_of_3.jpg"]
        data = client.post("/filter", json={"urls": urls}).json()

        assert data["screenshots"] == ["a/1_of_3.jpg", "a/2_of_3.jpg", "a/3_of_3.jpg"]

    def test_missing_urls_rejected(self, client: TestClient) -> None:
        assert client.post("/filter", json={"platform": "phone"}).status_code == 422


class TestValidationEndpoints:
    def test_validate_then_clear(self, client: TestClient, store_urls: List[str]) -> None:
        response = client.post("/validate", json={"app_id": "123", "screenshots": store_urls})

        assert response.status_code == 200
        data = response.json()
        assert data["app_id"] == "123"
        assert data["is_valid"] is True
        assert data["issues"] == []
        assert client.get("/health").json()["validation_cache_entries"] == 1

        cleared = client.delete("/validation-cache").json()

        assert cleared == {"status": "cleared", "entries_removed": 1}
        assert client.get("/health").json()["validation_cache_entries"] == 0

    def test_validate_reports_issues(self, client: TestClient, head_check) -> None:
        head_check.statuses["https://apps.apple.com/us/app/id123"] = 404
        data = client.post("/validate", json={"app_id": "123", "screenshots": PHONE}).json()

        assert data["is_valid"] is False
        assert data["issues"] == ["app_not_found"]
